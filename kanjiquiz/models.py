"""
Core data models for the Kanji Quiz Bot.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from enum import Enum


class DeckType(Enum):
    """Kind of deck a quiz file describes."""
    TEXT = "text"
    IMAGE = "image"
    SCRAMBLE = "scramble"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DeckType":
        for member in cls:
            if member.value == value:
                return member
        return cls.TEXT


class EndReason(Enum):
    """Why a quiz run stopped."""
    COMPLETED = "completed"
    WINNER = "winner"
    STOPPED = "stopped"
    TIMEOUTS = "timeouts"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Card:
    """A single question with its accepted answers."""
    question: str
    answers: Tuple[str, ...]
    comment: str = ""


@dataclass
class Deck:
    """Ordered cards for one quiz run. Drawing a card removes it."""
    description: str = ""
    deck_type: DeckType = DeckType.TEXT
    cards: List[Card] = field(default_factory=list)
    timeout: Optional[int] = None

    def draw(self) -> Optional[Card]:
        if not self.cards:
            return None
        return self.cards.pop(0)

    @property
    def remaining(self) -> int:
        return len(self.cards)

    @property
    def is_empty(self) -> bool:
        return not self.cards

    def __len__(self) -> int:
        return len(self.cards)


@dataclass(frozen=True)
class ScramblePuzzle:
    """One generated word-scramble round."""
    scrambled: str
    word: str
    solutions: Tuple[str, ...]


@dataclass(frozen=True)
class PacingProfile:
    """Answer window after the first correct answer, and the pause between rounds."""
    name: str = "quiz"
    answer_window_ms: int = 2000
    round_pause_ms: int = 5000


@dataclass(frozen=True)
class WinCondition:
    """Score a player must reach to win. Clamped to [1, 100]."""
    target_score: int = 15

    MIN_SCORE = 1
    MAX_SCORE = 100

    def __post_init__(self):
        clamped = max(self.MIN_SCORE, min(self.MAX_SCORE, int(self.target_score)))
        object.__setattr__(self, "target_score", clamped)


@dataclass(frozen=True)
class AnswerEvent:
    """A chat message submitted while a round is open."""
    player_id: int
    player_name: str
    text: str
    received_at: float = 0.0


@dataclass(frozen=True)
class StopSignal:
    """Out-of-band request to stop the quiz in a channel."""
    requested_by: Optional[int] = None


@dataclass
class RoundResult:
    """What happened during one round."""
    number: int
    prompt: str
    answers: Tuple[str, ...]
    comment: str = ""
    scorers: List[int] = field(default_factory=list)
    fastest: Optional[int] = None
    claims: Dict[str, int] = field(default_factory=dict)
    stopped: bool = False

    @property
    def answered(self) -> bool:
        return bool(self.scorers)


@dataclass
class QuizOutcome:
    """Final result of a quiz run, returned by the engine."""
    channel_id: int
    quiz_id: str
    end_reason: EndReason
    scores: Dict[int, int] = field(default_factory=dict)
    winners: List[Tuple[str, int]] = field(default_factory=list)
    participants: List[Tuple[str, int]] = field(default_factory=list)
    rounds_played: int = 0
    missed_cards: List[Card] = field(default_factory=list)


@dataclass
class GauntletResult:
    """Gauntlet time-trial result. Rewards precision superlinearly."""
    player_id: int
    player_name: str
    quiz_id: str
    correct: int = 0
    attempted: int = 0

    @property
    def score(self) -> float:
        if self.attempted == 0:
            return 0.0
        return (self.correct ** 2) / self.attempted


@dataclass
class Session:
    """Represents an active quiz reservation for a Discord channel."""
    channel_id: int
    active: bool = True
    mode: str = "quiz"
    started_at: datetime = field(default_factory=datetime.now)
