import discord
from discord.ext import commands
import logging
import os
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DeckSource
from .quiz_controller import QuizController
from .renderer import QuestionRenderer
from .storage import SettingsStore
from .transport import DiscordTransport

logger = logging.getLogger(__name__)

# Commands that start or stop quizzes, only honoured in bot channels and DMs
QUIZ_COMMANDS = {"quiz", "flash", "mad", "fast", "mild", "slow", "multi", "scramble", "gauntlet", "stop"}
SPEED_ALIASES = ("flash", "mad", "fast", "mild", "slow")
OWNER_COMMANDS = {"ongoing", "reload", "output", "uptime"}


def is_bot_channel(channel) -> bool:
    """Quizzes run in DMs and in channels whose name starts with 'bot'."""
    if isinstance(channel, (discord.DMChannel, discord.GroupChannel)):
        return True
    name = getattr(channel, "name", None) or ""
    return name.lower().startswith("bot")


def parse_command(content: str, prefix: str) -> Optional[List[str]]:
    """Split a prefixed message into [command, *args], or None if not a command."""
    if not content.lower().startswith(prefix.lower()):
        return None
    parts = content[len(prefix):].split()
    if not parts:
        return None
    parts[0] = parts[0].lower()
    return parts


class QuizBot(commands.Bot):
    """Discord bot running kanji quizzes"""

    def __init__(self, config=None):
        intents = discord.Intents.default()
        intents.message_content = True  # Answers are plain chat messages

        self.app_config = config or {}
        self.config_manager = ConfigManager()
        self.config_manager.apply_config(self.app_config)

        super().__init__(
            command_prefix=self.config_manager.command_prefix,
            intents=intents,
            help_command=None  # We'll implement our own help command
        )

        self.started_at = datetime.now()
        self.owner_id: Optional[int] = self.config_manager.owner_id

        # Initialize core components in setup_hook
        self.deck_source: Optional[DeckSource] = None
        self.settings: Optional[SettingsStore] = None
        self.renderer: Optional[QuestionRenderer] = None
        self.transport: Optional[DiscordTransport] = None
        self.quiz_controller: Optional[QuizController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.deck_source = DeckSource(
                quiz_directory=self.config_manager.quiz_directory,
                quiz_list_path=self.config_manager.quiz_list_path,
            )
            self.load_quiz_data()

            self.settings = SettingsStore(self.config_manager.storage_path)
            self.settings.load()

            font_paths = self.app_config.get('quiz', {}).get('fonts')
            self.renderer = QuestionRenderer(font_paths=font_paths)
            self.transport = DiscordTransport(self)

            self.quiz_controller = QuizController(
                self.deck_source,
                self.config_manager,
                self.transport,
                renderer=self.renderer,
                settings=self.settings,
            )

            if self.owner_id is None:
                app_info = await self.application_info()
                self.owner_id = app_info.owner.id

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def load_quiz_data(self):
        """Load the quiz list and the scramble dictionary"""
        if not self.deck_source.reload():
            logger.error("Quiz list could not be loaded, no quizzes available")
        quiz_count = len(self.deck_source.list_quiz_ids())
        word_count = self.deck_source.load_dictionary(self.config_manager.dictionary_path)
        logger.info(f"Loaded {quiz_count} quizzes and {word_count} dictionary words")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        print(f"🤖 {self.user} is Ready and Online!")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        await super().close()

    # ------------------------------------------------------------------
    # Message dispatch
    # ------------------------------------------------------------------

    async def on_message(self, message: discord.Message):
        """Dispatch prefixed commands; everything else may be a quiz answer."""
        if message.author.bot or self.quiz_controller is None:
            return

        parts = parse_command(message.content.strip(), self.config_manager.command_prefix)
        if parts is None:
            self.quiz_controller.submit_answer(
                message.channel.id, message.author.id, message.author.display_name, message.content
            )
            return

        await self.handle_command(message, parts[0], parts[1:])

    async def handle_command(self, message: discord.Message, command: str, args: List[str]):
        handler = self._command_handlers().get(command)
        if handler is None:
            return

        if command in QUIZ_COMMANDS and not is_bot_channel(message.channel):
            logger.debug(f"Ignoring '{command}' outside a bot channel ({message.channel.id})")
            return

        if command in OWNER_COMMANDS and message.author.id != self.owner_id:
            logger.info(f"Ignoring owner command '{command}' from {message.author.id}")
            return

        try:
            await handler(message, command, args)
        except Exception as e:
            logger.error(f"Error in {command} command: {e}", exc_info=True)
            await self.send_text(message, "❌ An error occurred while processing your command. Please try again.")

    def _command_handlers(self) -> Dict[str, Callable[[discord.Message, str, List[str]], Awaitable[None]]]:
        handlers = {
            "help": self.handle_help,
            "list": self.handle_list,
            "quiz": self.handle_quiz,
            "multi": self.handle_quiz,
            "scramble": self.handle_scramble,
            "gauntlet": self.handle_gauntlet,
            "stop": self.handle_stop,
            "ongoing": self.handle_ongoing,
            "reload": self.handle_reload,
            "output": self.handle_output,
            "uptime": self.handle_uptime,
            "draw": self.handle_draw,
            "ping": self.handle_ping,
        }
        for alias in SPEED_ALIASES:
            handlers[alias] = self.handle_quiz
        return handlers

    async def send_text(self, message: discord.Message, text: Optional[str]):
        if text:
            await self.transport.send_text(message.channel.id, text)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def handle_help(self, message: discord.Message, command: str, args: List[str]):
        """Handle help command"""
        prefix = self.config_manager.command_prefix
        speeds = "/".join(SPEED_ALIASES)
        difficulties = "|".join(self.config_manager.DIFFICULTIES)
        await self.transport.send_rich_card(message.channel.id, {
            "title": "Kanji Quiz Bot",
            "description": "Type answers in chat. Kana answers may be typed in hiragana or katakana.",
            "fields": [
                ("🎮 Quizzes", (
                    f"`{prefix}quiz <deck> [max]` - Start a quiz, first to max points wins\n"
                    f"`{prefix}{speeds} <deck> [max]` - Quiz with a different answer window\n"
                    f"`{prefix}multi <deck> [max]` - Every answer can be claimed once\n"
                    f"`{prefix}scramble [{difficulties}]` - Unscramble English words\n"
                    f"`{prefix}gauntlet <deck>` - Answer as many as you can in "
                    f"{self.config_manager.gauntlet_duration} seconds\n"
                    f"`{prefix}quiz review` - Replay the cards nobody answered last time\n"
                    f"`{prefix}stop` - Stop the quiz in this channel"
                ), False),
                ("📋 Other", (
                    f"`{prefix}list` - List available quizzes\n"
                    f"`{prefix}draw <text>` - Render text as an image\n"
                    f"`{prefix}ping` - Show latency"
                ), False),
            ],
            "footer": "Quizzes run in channels whose name starts with 'bot' and in DMs",
        })

    async def handle_list(self, message: discord.Message, command: str, args: List[str]):
        quizzes = self.quiz_controller.get_available_quizzes()
        if not quizzes:
            await self.send_text(message, "No quizzes available.")
            return
        await self.send_text(message, "Available quizzes: " + ", ".join(f"`{q}`" for q in quizzes))

    async def handle_quiz(self, message: discord.Message, command: str, args: List[str]):
        """Handle quiz, multi and the speed aliases"""
        if not args:
            await self.send_text(message, f"Usage: `{self.config_manager.command_prefix}{command} <deck> [max]`")
            return

        multi = command == "multi"
        pacing = None if command in ("quiz", "multi") else command
        result = self.quiz_controller.start_quiz(
            message.channel.id,
            args[0],
            max_score=args[1] if len(args) > 1 else None,
            pacing=pacing,
            multi=multi,
        )
        if not result['success']:
            await self.send_text(message, result.get('user_message'))

    async def handle_scramble(self, message: discord.Message, command: str, args: List[str]):
        result = self.quiz_controller.start_scramble(
            message.channel.id,
            difficulty=args[0].lower() if args else None,
            max_score=args[1] if len(args) > 1 else None,
        )
        if not result['success']:
            await self.send_text(message, result.get('user_message'))

    async def handle_gauntlet(self, message: discord.Message, command: str, args: List[str]):
        if not args:
            await self.send_text(message, f"Usage: `{self.config_manager.command_prefix}gauntlet <deck>`")
            return

        result = self.quiz_controller.start_gauntlet(
            message.channel.id, message.author.id, message.author.display_name, args[0]
        )
        if not result['success']:
            await self.send_text(message, result.get('user_message'))

    async def handle_stop(self, message: discord.Message, command: str, args: List[str]):
        result = self.quiz_controller.stop_quiz(message.channel.id, message.author.id)
        if not result['success']:
            await self.send_text(message, result.get('user_message'))

    async def handle_ongoing(self, message: discord.Message, command: str, args: List[str]):
        sessions = self.quiz_controller.get_ongoing()
        if not sessions:
            await self.send_text(message, "No quizzes running.")
            return

        now = datetime.now()
        lines = [f"Ongoing quizzes: {len(sessions)}"]
        for session in sessions:
            minutes = int((now - session.started_at).total_seconds() // 60)
            lines.append(f"<#{session.channel_id}> {session.mode}, {minutes} min")
        await self.send_text(message, "\n".join(lines))

    async def handle_reload(self, message: discord.Message, command: str, args: List[str]):
        result = self.quiz_controller.reload()
        await self.send_text(message, result.get('user_message'))

    async def handle_output(self, message: discord.Message, command: str, args: List[str]):
        result = self.quiz_controller.set_output_channel(message.channel.id)
        await self.send_text(message, result.get('user_message'))

    async def handle_uptime(self, message: discord.Message, command: str, args: List[str]):
        uptime = datetime.now() - self.started_at
        hours, remainder = divmod(int(uptime.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        await self.send_text(message, f"Uptime: {hours}h {minutes}m {seconds}s")

    async def handle_draw(self, message: discord.Message, command: str, args: List[str]):
        text = " ".join(args)
        image = self.renderer.render_text(text) if text else b""
        if not image:
            await self.send_text(message, "Failed to render image.")
            return
        await self.transport.send_image(message.channel.id, image, "draw.png")

    async def handle_ping(self, message: discord.Message, command: str, args: List[str]):
        await self.send_text(message, f"Latency: **{round(self.latency * 1000)}ms**")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    # Fall back to environment variable if no token provided
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Kanji Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.PrivilegedIntentsRequired:
        logger.error("Message content intent is not enabled for this bot in the Developer Portal")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
