"""
Tests for QuizBot message dispatch against mocked Discord objects.
"""
import unittest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import discord

from kanjiquiz.bot import QuizBot, is_bot_channel, parse_command
from kanjiquiz.models import Session
from tests.test_fixtures import MockDiscordObjects, RecordingTransport, async_test

OWNER = 1
PLAYER = 2


class TestCommandParsing(unittest.TestCase):
    """Test cases for prefix parsing and channel checks."""

    def test_parse_command(self):
        self.assertEqual(parse_command("kq!quiz jlpt5 10", "kq!"), ["quiz", "jlpt5", "10"])
        self.assertEqual(parse_command("KQ!Quiz jlpt5", "kq!"), ["quiz", "jlpt5"])
        self.assertIsNone(parse_command("ひ", "kq!"))
        self.assertIsNone(parse_command("kq!", "kq!"))

    def test_bot_channel(self):
        self.assertTrue(is_bot_channel(MockDiscordObjects.create_mock_channel(name="bot-quiz")))
        self.assertTrue(is_bot_channel(MockDiscordObjects.create_mock_channel(name="Bots")))
        self.assertFalse(is_bot_channel(MockDiscordObjects.create_mock_channel(name="general")))
        self.assertTrue(is_bot_channel(Mock(spec=discord.DMChannel)))


class TestQuizBotDispatch(unittest.TestCase):
    """Test cases for QuizBot.on_message."""

    def setUp(self):
        """Set up test fixtures."""
        self.bot = QuizBot({'bot': {'owner_id': OWNER}})
        self.bot.quiz_controller = Mock()
        self.bot.quiz_controller.start_quiz.return_value = {'success': True}
        self.bot.quiz_controller.start_scramble.return_value = {'success': True}
        self.bot.quiz_controller.start_gauntlet.return_value = {'success': True}
        self.bot.quiz_controller.stop_quiz.return_value = {'success': True}
        self.bot.transport = RecordingTransport()
        self.bot.renderer = Mock()

    def message(self, content, author_id=PLAYER, channel_name="bot-quiz", bot=False):
        return MockDiscordObjects.create_mock_message(
            content=content,
            channel_id=900,
            author_id=author_id,
            author_name="alice",
            channel_name=channel_name,
            bot=bot,
        )

    async def test_plain_message_is_an_answer(self):
        await self.bot.on_message(self.message("ひ"))
        self.bot.quiz_controller.submit_answer.assert_called_once_with(900, PLAYER, "alice", "ひ")

    async def test_bot_messages_ignored(self):
        await self.bot.on_message(self.message("ひ", bot=True))
        self.bot.quiz_controller.submit_answer.assert_not_called()

    async def test_quiz_command(self):
        await self.bot.on_message(self.message("kq!quiz jlpt5 10"))
        self.bot.quiz_controller.start_quiz.assert_called_once_with(
            900, "jlpt5", max_score="10", pacing=None, multi=False
        )
        self.bot.quiz_controller.submit_answer.assert_not_called()

    async def test_speed_alias(self):
        await self.bot.on_message(self.message("kq!flash jlpt5"))
        self.bot.quiz_controller.start_quiz.assert_called_once_with(
            900, "jlpt5", max_score=None, pacing="flash", multi=False
        )

    async def test_multi_command(self):
        await self.bot.on_message(self.message("kq!multi numbers 5"))
        self.bot.quiz_controller.start_quiz.assert_called_once_with(
            900, "numbers", max_score="5", pacing=None, multi=True
        )

    async def test_quiz_usage(self):
        await self.bot.on_message(self.message("kq!quiz"))
        self.bot.quiz_controller.start_quiz.assert_not_called()
        self.assertIn("Usage", self.bot.transport.texts()[0])

    async def test_quiz_ignored_outside_bot_channel(self):
        await self.bot.on_message(self.message("kq!quiz jlpt5", channel_name="general"))
        self.bot.quiz_controller.start_quiz.assert_not_called()

    async def test_failed_start_reports_message(self):
        self.bot.quiz_controller.start_quiz.return_value = {
            'success': False, 'user_message': "❌ Quiz 'x' not found"
        }
        await self.bot.on_message(self.message("kq!quiz x"))
        self.assertEqual(self.bot.transport.texts(), ["❌ Quiz 'x' not found"])

    async def test_conflicting_start_is_silent(self):
        self.bot.quiz_controller.start_quiz.return_value = {'success': False, 'user_message': None}
        await self.bot.on_message(self.message("kq!quiz jlpt5"))
        self.assertEqual(self.bot.transport.sent, [])

    async def test_scramble_and_gauntlet(self):
        await self.bot.on_message(self.message("kq!scramble Hard"))
        self.bot.quiz_controller.start_scramble.assert_called_once_with(900, difficulty="hard", max_score=None)

        await self.bot.on_message(self.message("kq!gauntlet jlpt5"))
        self.bot.quiz_controller.start_gauntlet.assert_called_once_with(900, PLAYER, "alice", "jlpt5")

    async def test_stop(self):
        await self.bot.on_message(self.message("kq!stop"))
        self.bot.quiz_controller.stop_quiz.assert_called_once_with(900, PLAYER)

    async def test_owner_commands_require_owner(self):
        await self.bot.on_message(self.message("kq!uptime", author_id=PLAYER))
        self.assertEqual(self.bot.transport.sent, [])

        await self.bot.on_message(self.message("kq!uptime", author_id=OWNER))
        self.assertTrue(self.bot.transport.texts()[0].startswith("Uptime:"))

    async def test_ongoing(self):
        session = Session(channel_id=321, mode="scramble", started_at=datetime.now() - timedelta(minutes=3))
        self.bot.quiz_controller.get_ongoing.return_value = [session]

        await self.bot.on_message(self.message("kq!ongoing", author_id=OWNER))

        text = self.bot.transport.texts()[0]
        self.assertIn("<#321> scramble, 3 min", text)

    async def test_output_sets_channel(self):
        self.bot.quiz_controller.set_output_channel.return_value = {'success': True, 'user_message': "✅ ok"}
        await self.bot.on_message(self.message("kq!output", author_id=OWNER))
        self.bot.quiz_controller.set_output_channel.assert_called_once_with(900)

    async def test_draw(self):
        self.bot.renderer.render_text.return_value = b"\x89PNG"
        await self.bot.on_message(self.message("kq!draw 漢字"))
        self.bot.renderer.render_text.assert_called_once_with("漢字")
        self.assertEqual(self.bot.transport.sent, [("image", 900, b"\x89PNG")])

    async def test_draw_failure(self):
        self.bot.renderer.render_text.return_value = b""
        await self.bot.on_message(self.message("kq!draw 漢字", channel_name="general"))
        self.assertEqual(self.bot.transport.texts(), ["Failed to render image."])

    async def test_help_and_list(self):
        self.bot.quiz_controller.get_available_quizzes.return_value = ["jlpt5", "kana"]
        await self.bot.on_message(self.message("kq!help", channel_name="general"))
        await self.bot.on_message(self.message("kq!list", channel_name="general"))

        self.assertEqual(self.bot.transport.cards()[0]["title"], "Kanji Quiz Bot")
        self.assertIn("`jlpt5`", self.bot.transport.texts()[0])

    async def test_unknown_command_ignored(self):
        await self.bot.on_message(self.message("kq!dance"))
        self.assertEqual(self.bot.transport.sent, [])
        self.bot.quiz_controller.submit_answer.assert_not_called()

    async def test_handler_error_is_reported(self):
        self.bot.quiz_controller.start_quiz.side_effect = RuntimeError("boom")
        with self.assertLogs('kanjiquiz.bot', level='ERROR'):
            await self.bot.on_message(self.message("kq!quiz jlpt5"))
        self.assertIn("error occurred", self.bot.transport.texts()[0])


for _name in [n for n in dir(TestQuizBotDispatch) if n.startswith("test_")]:
    setattr(TestQuizBotDispatch, _name, async_test(getattr(TestQuizBotDispatch, _name)))


class TestRunBot(unittest.TestCase):
    """Test cases for run_bot startup handling."""

    async def test_missing_token(self):
        from kanjiquiz import bot as bot_module
        with unittest.mock.patch.dict('os.environ', {}, clear=True):
            with self.assertLogs('kanjiquiz.bot', level='ERROR'):
                await bot_module.run_bot(None, {})

    async def test_login_failure_logged(self):
        from kanjiquiz import bot as bot_module
        with unittest.mock.patch.object(bot_module.QuizBot, 'start', new=AsyncMock(side_effect=discord.LoginFailure())), \
                unittest.mock.patch.object(bot_module.QuizBot, 'close', new=AsyncMock()):
            with self.assertLogs('kanjiquiz.bot', level='ERROR') as logs:
                await bot_module.run_bot("token", {})
        self.assertTrue(any("Invalid bot token" in line for line in logs.output))


TestRunBot.test_missing_token = async_test(TestRunBot.test_missing_token)
TestRunBot.test_login_failure_logged = async_test(TestRunBot.test_login_failure_logged)


if __name__ == '__main__':
    unittest.main()
