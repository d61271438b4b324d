"""
Configuration manager for Kanji Quiz Bot settings and game parameters.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from .models import PacingProfile, WinCondition


class ConfigManager:
    """Manages bot configuration settings and quiz parameters."""

    # Default configuration values
    DEFAULT_COMMAND_PREFIX = "kq!"
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"
    DEFAULT_QUIZ_LIST = "./quizlist.json"
    DEFAULT_DICTIONARY = "./dictionary.txt"
    DEFAULT_STORAGE = "./storage.json"
    DEFAULT_WIN_SCORE = 15
    DEFAULT_PACING = "quiz"
    DEFAULT_DIFFICULTY = "normal"
    DEFAULT_ROUND_TIMEOUT = 20
    DEFAULT_SCRAMBLE_TIMEOUT = 30
    DEFAULT_GAUNTLET_DURATION = 120
    DEFAULT_TIMEOUT_LIMIT = 5

    # Validation limits
    MIN_ROUND_TIMEOUT = 5
    MAX_ROUND_TIMEOUT = 300

    # Answer window / pause between rounds, in milliseconds
    PACING_PROFILES: Dict[str, Tuple[int, int]] = {
        "flash": (250, 500),
        "mad": (0, 5000),
        "fast": (1000, 5000),
        "quiz": (2000, 5000),
        "mild": (3000, 5000),
        "slow": (5000, 5000),
        "multi": (1500, 5000),
    }

    # Scramble word length low/high
    DIFFICULTIES: Dict[str, Tuple[int, int]] = {
        "easy": (3, 5),
        "normal": (3, 7),
        "hard": (4, 9),
        "insane": (5, 9999),
    }

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.command_prefix = self.DEFAULT_COMMAND_PREFIX
        self.quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self.quiz_list_path = self.DEFAULT_QUIZ_LIST
        self.dictionary_path = self.DEFAULT_DICTIONARY
        self.storage_path = self.DEFAULT_STORAGE
        self.owner_id: Optional[int] = None
        self.round_timeout = self.DEFAULT_ROUND_TIMEOUT
        self.scramble_timeout = self.DEFAULT_SCRAMBLE_TIMEOUT
        self.gauntlet_duration = self.DEFAULT_GAUNTLET_DURATION
        self.timeout_limit = self.DEFAULT_TIMEOUT_LIMIT
        self.default_win_score = self.DEFAULT_WIN_SCORE

    def apply_config(self, config: Dict[str, Any]) -> None:
        """
        Apply settings from a parsed config.json.

        Invalid values are logged and the defaults kept.
        """
        bot_config = config.get('bot', {})
        quiz_config = config.get('quiz', {})

        self.command_prefix = bot_config.get('command_prefix', self.command_prefix)
        owner_id = bot_config.get('owner_id')
        if owner_id:
            try:
                self.owner_id = int(owner_id)
            except (TypeError, ValueError):
                self.logger.error(f"Invalid owner_id in config: {owner_id!r}")

        self.quiz_directory = quiz_config.get('quiz_directory', self.quiz_directory)
        self.quiz_list_path = quiz_config.get('quiz_list', self.quiz_list_path)
        self.dictionary_path = quiz_config.get('dictionary', self.dictionary_path)
        self.storage_path = quiz_config.get('storage', self.storage_path)

        if 'round_timeout' in quiz_config:
            result = self.set_round_timeout(quiz_config['round_timeout'])
            if not result['success']:
                self.logger.warning(f"Keeping default round timeout: {result['error']}")

        if 'default_win_score' in quiz_config:
            result = self.parse_win_condition(str(quiz_config['default_win_score']))
            if result['success']:
                self.default_win_score = result['win_condition'].target_score

        self.logger.info("Configuration applied successfully")

    def set_round_timeout(self, seconds: int) -> Dict[str, Any]:
        """
        Set the default round timeout with validation.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            error_msg = f"Round timeout must be an integer, got {type(seconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            }

        if seconds < self.MIN_ROUND_TIMEOUT or seconds > self.MAX_ROUND_TIMEOUT:
            error_msg = (f"Round timeout must be between {self.MIN_ROUND_TIMEOUT} "
                         f"and {self.MAX_ROUND_TIMEOUT} seconds")
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {error_msg}"
            }

        self.round_timeout = seconds
        self.logger.info(f"Round timeout set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Round timeout set to {seconds} seconds",
            'user_message': f"✅ Rounds now last {seconds} seconds"
        }

    def parse_win_condition(self, raw: Optional[str]) -> Dict[str, Any]:
        """
        Parse an optional max-score argument.

        Missing values give the default score; numbers outside [1, 100] are clamped.
        """
        if raw is None or raw == "":
            return {
                'success': True,
                'win_condition': WinCondition(self.default_win_score),
            }

        try:
            value = int(raw)
        except ValueError:
            error_msg = f"Max score must be a number, got {raw!r}"
            self.logger.debug(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ `{raw}` is not a valid max score"
            }

        return {
            'success': True,
            'win_condition': WinCondition(value),
        }

    def get_pacing(self, name: Optional[str] = None) -> PacingProfile:
        """Return the named pacing profile, falling back to the default one."""
        key = name if name in self.PACING_PROFILES else self.DEFAULT_PACING
        window, pause = self.PACING_PROFILES[key]
        return PacingProfile(name=key, answer_window_ms=window, round_pause_ms=pause)

    def pacing_names(self) -> List[str]:
        return list(self.PACING_PROFILES)

    def get_difficulty(self, name: Optional[str] = None) -> Optional[Tuple[str, int, int]]:
        """
        Return (name, low, high) for a scramble difficulty.

        An empty name selects the default; an unknown name returns None.
        """
        if not name:
            name = self.DEFAULT_DIFFICULTY
        if name not in self.DIFFICULTIES:
            return None
        low, high = self.DIFFICULTIES[name]
        return name, low, high
