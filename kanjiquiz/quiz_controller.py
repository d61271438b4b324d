"""
Quiz session controller for the Kanji Quiz Bot.
Starts quiz runs as background tasks, routes answers and stop requests to them,
and reports results in a form the bot can show to users.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Coroutine, Deque, Dict, List, Optional, Set

from .config_manager import ConfigManager
from .data_manager import REVIEW_QUIZ_ID, DeckSource, ReviewStore
from .models import AnswerEvent, Session
from .quiz_engine import OUTPUT_CHANNEL_KEY, QuizEngine
from .renderer import QuestionRenderer
from .session_registry import AnswerRouter, SessionRegistry
from .storage import SettingsStore
from .transport import ChatTransport

MAX_SESSION_ERRORS = 20


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when attempting to start a quiz in a channel that already has one."""
    pass


class QuizNotFoundError(QuizControllerError):
    """Raised when the requested quiz is not in the quiz list."""
    pass


class QuizController:
    """
    Orchestrates quiz runs across Discord channels.

    Each started quiz runs as its own asyncio task. The controller keeps a
    reference to every task until it finishes and never lets a task failure
    escape into the event loop unlogged.
    """

    def __init__(
        self,
        deck_source: DeckSource,
        config_manager: ConfigManager,
        transport: ChatTransport,
        renderer: Optional[QuestionRenderer] = None,
        settings: Optional[SettingsStore] = None,
    ):
        """
        Initialize the quiz controller.

        Args:
            deck_source: Loads quiz decks and the scramble dictionary
            config_manager: Timeouts, pacing and difficulty tables
            transport: Sends messages to chat channels
            renderer: Optional question image renderer
            settings: Optional persistent settings (gauntlet output channel)
        """
        self.logger = logging.getLogger(__name__)
        self.deck_source = deck_source
        self.config_manager = config_manager
        self.transport = transport
        self.settings = settings

        self.registry = SessionRegistry(presence_callback=getattr(transport, "set_presence", None))
        self.router = AnswerRouter()
        self.reviews = ReviewStore()
        self.engine = QuizEngine(
            registry=self.registry,
            router=self.router,
            deck_source=deck_source,
            transport=transport,
            renderer=renderer,
            reviews=self.reviews,
            settings=settings,
            round_timeout=config_manager.round_timeout,
            scramble_timeout=config_manager.scramble_timeout,
            gauntlet_duration=config_manager.gauntlet_duration,
            timeout_limit=config_manager.timeout_limit,
        )

        self._tasks: Set[asyncio.Task] = set()
        # Most recent errors per channel
        self._session_errors: Dict[int, Deque[str]] = {}

        self.logger.info("QuizController initialized")

    # ------------------------------------------------------------------
    # Starting quizzes
    # ------------------------------------------------------------------

    def start_quiz(
        self,
        channel_id: int,
        quiz_id: str,
        max_score: Optional[str] = None,
        pacing: Optional[str] = None,
        multi: bool = False,
    ) -> Dict[str, Any]:
        """
        Start a standard or multi-answer quiz.

        Args:
            channel_id: Discord channel identifier
            quiz_id: Quiz name from the quiz list, or "review"
            max_score: Optional win score argument as typed by the user
            pacing: Pacing profile name
            multi: Whether every accepted answer can be claimed separately

        Returns:
            Dictionary with operation results and error information
        """
        operation = "start_multi" if multi else "start_quiz"
        try:
            self._ensure_free(channel_id)

            if quiz_id != REVIEW_QUIZ_ID and not self.deck_source.has_quiz(quiz_id):
                raise QuizNotFoundError(f"Quiz '{quiz_id}' not found")

            win = self._win_condition(max_score)
            if 'error' in win:
                return win

            profile = self.config_manager.get_pacing("multi" if multi and not pacing else pacing)
            self._spawn(
                channel_id,
                operation,
                self.engine.run_quiz(channel_id, quiz_id, win['win_condition'], profile, multi=multi),
            )
            return {
                'success': True,
                'message': f"Quiz '{quiz_id}' started in channel {channel_id}",
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, operation)

    def start_scramble(
        self,
        channel_id: int,
        difficulty: Optional[str] = None,
        max_score: Optional[str] = None,
        pacing: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start a word-scramble quiz at the given difficulty."""
        try:
            self._ensure_free(channel_id)

            level = self.config_manager.get_difficulty(difficulty)
            if level is None:
                names = ", ".join(self.config_manager.DIFFICULTIES)
                return {
                    'success': False,
                    'error': f"Unknown difficulty {difficulty!r}",
                    'user_message': f"❌ Unknown difficulty `{difficulty}`. Choose one of: {names}"
                }

            win = self._win_condition(max_score)
            if 'error' in win:
                return win

            self._spawn(
                channel_id,
                "start_scramble",
                self.engine.run_scramble(
                    channel_id, level, win['win_condition'], self.config_manager.get_pacing(pacing)
                ),
            )
            return {
                'success': True,
                'message': f"Scramble ({level[0]}) started in channel {channel_id}",
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "start_scramble")

    def start_gauntlet(self, channel_id: int, player_id: int, player_name: str, quiz_id: str) -> Dict[str, Any]:
        """Start a single-player gauntlet for the requesting player."""
        try:
            self._ensure_free(channel_id)

            if not self.deck_source.has_quiz(quiz_id):
                raise QuizNotFoundError(f"Quiz '{quiz_id}' not found")

            self._spawn(
                channel_id,
                "start_gauntlet",
                self.engine.run_gauntlet(channel_id, player_id, player_name, quiz_id),
            )
            return {
                'success': True,
                'message': f"Gauntlet '{quiz_id}' started for {player_name}",
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "start_gauntlet")

    # ------------------------------------------------------------------
    # Running quizzes
    # ------------------------------------------------------------------

    def submit_answer(self, channel_id: int, player_id: int, player_name: str, text: str) -> bool:
        """
        Pass a chat message to the round open in a channel.

        Returns:
            True if a round was listening and the answer was queued
        """
        return self.router.deliver(channel_id, AnswerEvent(player_id, player_name, text))

    def stop_quiz(self, channel_id: int, requested_by: Optional[int] = None) -> Dict[str, Any]:
        """Ask the quiz running in a channel to stop. It emits its final scoreboard."""
        if not self.router.request_stop(channel_id, requested_by):
            return {
                'success': False,
                'message': "No active quiz to stop in this channel",
                'user_message': "ℹ️ No active quiz found in this channel"
            }

        self.logger.info(
            f"Stop requested for channel {channel_id}",
            extra={
                'event_type': 'stop_requested',
                'channel_id': channel_id,
                'requested_by': requested_by,
                'timestamp': time.time()
            }
        )
        return {
            'success': True,
            'message': "Quiz stop requested",
        }

    def has_active_session(self, channel_id: int) -> bool:
        return self.registry.is_active(channel_id)

    def get_ongoing(self) -> List[Session]:
        """Active sessions, oldest first."""
        return self.registry.summary()

    def get_available_quizzes(self) -> List[str]:
        return self.deck_source.list_quiz_ids()

    def reload(self) -> Dict[str, Any]:
        """Reload the quiz list and the scramble dictionary."""
        if not self.deck_source.reload():
            return {
                'success': False,
                'error': "Quiz list reload failed",
                'user_message': "❌ Failed to reload the quiz list"
            }
        words = self.deck_source.load_dictionary(self.config_manager.dictionary_path)
        quizzes = len(self.deck_source.list_quiz_ids())
        return {
            'success': True,
            'message': f"Reloaded {quizzes} quizzes and {words} dictionary words",
            'user_message': f"✅ Reloaded {quizzes} quizzes"
        }

    def set_output_channel(self, channel_id: int) -> Dict[str, Any]:
        """Set the channel that receives gauntlet results."""
        if self.settings is None:
            return {
                'success': False,
                'error': "No settings store configured",
                'user_message': "❌ Settings storage is not available"
            }
        self.settings.put(OUTPUT_CHANNEL_KEY, str(channel_id))
        return {
            'success': True,
            'message': f"Gauntlet output channel set to {channel_id}",
            'user_message': "✅ Gauntlet results will be posted in this channel"
        }

    async def shutdown(self) -> None:
        """Cancel all running quiz tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info(f"Cancelled {len(tasks)} running quiz tasks")

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_free(self, channel_id: int) -> None:
        if self.registry.is_active(channel_id):
            raise SessionConflictError(f"Quiz already running in channel {channel_id}")

    def _win_condition(self, max_score: Optional[str]) -> Dict[str, Any]:
        return self.config_manager.parse_win_condition(max_score)

    def _spawn(self, channel_id: int, operation: str, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(self._run_guarded(channel_id, operation, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_guarded(self, channel_id: int, operation: str, coro: Coroutine):
        """Await a quiz run, logging any failure instead of losing it in the task."""
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = self._handle_session_error(channel_id, e, operation)
            await self.transport.send_text(channel_id, result['user_message'])
            return None

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log an error and build the result dictionary for it.

        Session conflicts are expected and logged quietly; they carry no user
        message, so a second start in a busy channel is ignored.
        """
        if isinstance(error, SessionConflictError):
            self.logger.debug(f"{operation} ignored for channel {channel_id}: {error}")
            return {
                'success': False,
                'error': str(error),
                'operation': operation,
                'user_message': None
            }

        if isinstance(error, QuizNotFoundError):
            self.logger.info(f"{operation} for channel {channel_id}: {error}")
        else:
            self.logger.error(f"Error in {operation} for channel {channel_id}: {error}", exc_info=True)

        self._session_errors.setdefault(channel_id, deque(maxlen=MAX_SESSION_ERRORS)).append(f"{operation}: {error}")

        return {
            'success': False,
            'error': str(error),
            'operation': operation,
            'user_message': self._get_user_friendly_error_message(error, operation)
        }

    def _get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        if isinstance(error, QuizNotFoundError):
            return f"❌ {error}. Use `{self.config_manager.command_prefix}list` to see available quizzes."
        if "permission" in str(error).lower():
            return "❌ Permission error. Please check bot permissions in this channel."
        return f"❌ An unexpected error occurred during {operation}. Please try again."

    def get_error_summary(self, channel_id: int) -> List[str]:
        return list(self._session_errors.get(channel_id, []))
