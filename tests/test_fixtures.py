"""
Test fixtures and sample data for Kanji Quiz Bot tests.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple
from unittest.mock import Mock, AsyncMock

import discord

from kanjiquiz.models import Card, Deck, DeckType, PacingProfile
from kanjiquiz.transport import ChatTransport


def async_test(coro):
    """Decorator to run async test methods."""
    def wrapper(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self))
        finally:
            loop.close()
    return wrapper


# Pacing with no answer window and no pause between rounds
INSTANT = PacingProfile(name="instant", answer_window_ms=0, round_pause_ms=0)


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def create_sample_cards() -> List[Card]:
        """Create sample cards for testing."""
        return [
            Card("火", ("ひ", "か"), "fire"),
            Card("水", ("みず", "すい"), "water"),
            Card("山", ("やま", "さん"), "mountain"),
            Card("川", ("かわ", "せん")),
            Card("人", ("ひと", "じん", "にん"), "person"),
        ]

    @staticmethod
    def create_sample_deck(cards: List[Card] = None) -> Deck:
        return Deck(
            description="Sample kanji",
            deck_type=DeckType.TEXT,
            cards=list(cards if cards is not None else TestFixtures.create_sample_cards()),
        )

    @staticmethod
    def create_numbered_deck(size: int) -> Deck:
        """Deck whose card i asks "q{i}" and accepts "a{i}"."""
        return Deck(
            description="Numbered",
            cards=[Card(f"q{i}", (f"a{i}",)) for i in range(size)],
        )

    @staticmethod
    def create_valid_quiz_json() -> Dict:
        """Create valid quiz JSON structure."""
        return {
            "description": "JLPT N5 sample",
            "type": "text",
            "timeout": 15,
            "deck": [
                {"question": "火", "answers": ["ひ", "か"], "comment": "fire"},
                {"question": "水", "answers": ["みず"]},
                {"question": "木", "answers": ["き", "もく"], "comment": "tree"},
            ]
        }

    @staticmethod
    def create_duplicate_quiz_json() -> Dict:
        """Quiz JSON with a question listed twice."""
        return {
            "description": "Duplicates",
            "deck": [
                {"question": "日", "answers": ["ひ", "にち"], "comment": "sun"},
                {"question": "月", "answers": ["つき"]},
                {"question": "日", "answers": ["にち", "じつ"], "comment": "day"},
            ]
        }

    @staticmethod
    def create_temp_quiz_files(temp_dir: str) -> Tuple[Path, Path]:
        """
        Write a quiz list and quiz files into a temporary directory.

        Returns:
            (quiz list path, quiz directory)
        """
        quiz_dir = Path(temp_dir) / "quizzes"
        quiz_dir.mkdir()

        with open(quiz_dir / "valid.json", 'w', encoding='utf-8') as f:
            json.dump(TestFixtures.create_valid_quiz_json(), f, ensure_ascii=False)

        with open(quiz_dir / "dups.json", 'w', encoding='utf-8') as f:
            json.dump(TestFixtures.create_duplicate_quiz_json(), f, ensure_ascii=False)

        with open(quiz_dir / "invalid.json", 'w', encoding='utf-8') as f:
            f.write("{ invalid json }")

        with open(quiz_dir / "wrong_shape.json", 'w', encoding='utf-8') as f:
            json.dump({"questions": []}, f)

        quiz_list = Path(temp_dir) / "quizlist.json"
        with open(quiz_list, 'w', encoding='utf-8') as f:
            json.dump({
                "valid": "valid.json",
                "dups": "dups.json",
                "invalid": "invalid.json",
                "wrong_shape": "wrong_shape.json",
                "missing": "missing.json",
            }, f)

        return quiz_list, quiz_dir


class RecordingTransport(ChatTransport):
    """ChatTransport that records everything sent, keyed by kind."""

    def __init__(self):
        self.sent: List[Tuple[str, int, Any]] = []
        self.presence: List[int] = []

    async def send_text(self, channel_id: int, text: str):
        self.sent.append(("text", channel_id, text))

    async def send_image(self, channel_id: int, data: bytes, filename: str = "word.png"):
        self.sent.append(("image", channel_id, data))

    async def send_rich_card(self, channel_id: int, card: Dict[str, Any]):
        self.sent.append(("card", channel_id, card))

    async def edit_text(self, channel_id: int, message_id: int, text: str):
        self.sent.append(("edit", channel_id, text))

    def set_presence(self, count: int) -> None:
        self.presence.append(count)

    def texts(self, channel_id: int = None) -> List[str]:
        return [p for kind, c, p in self.sent if kind == "text" and (channel_id is None or c == channel_id)]

    def cards(self) -> List[Dict[str, Any]]:
        return [p for kind, _, p in self.sent if kind == "card"]

    def prompts(self) -> List[str]:
        """Question announcements sent as bold text."""
        return [t for t in self.texts() if t.startswith("**") and t.endswith("**")]


class FakeClock:
    """Manually advanced clock for timer tests."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_channel(channel_id: int = 12345, name: str = "bot-quiz") -> Mock:
        """Create mock Discord text channel."""
        channel = Mock(spec=discord.TextChannel)
        channel.id = channel_id
        channel.name = name
        channel.send = AsyncMock()
        return channel

    @staticmethod
    def create_mock_message(
        content: str = "Test message",
        channel_id: int = 12345,
        author_id: int = 67890,
        author_name: str = "tester",
        channel_name: str = "bot-quiz",
        bot: bool = False,
    ) -> Mock:
        """Create mock Discord message."""
        message = Mock(spec=discord.Message)
        message.content = content
        message.channel = MockDiscordObjects.create_mock_channel(channel_id, channel_name)
        message.author = Mock()
        message.author.id = author_id
        message.author.display_name = author_name
        message.author.bot = bot
        return message

    @staticmethod
    def create_http_exception(status: int, text: str = "error") -> discord.HTTPException:
        """Create a discord.HTTPException carrying an HTTP status."""
        response = Mock()
        response.status = status
        response.reason = text
        return discord.HTTPException(response, text)


class AsyncTestHelpers:
    """Helper functions for async testing."""

    @staticmethod
    async def run_with_timeout(coro, timeout: float = 5.0):
        """Run coroutine with timeout."""
        return await asyncio.wait_for(coro, timeout=timeout)

    @staticmethod
    async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
        """Poll until predicate() is true; fail the test on timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)
