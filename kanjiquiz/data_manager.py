"""
Deck source for the Kanji Quiz Bot.
Loads quiz decks from JSON files, shuffles them, and generates word-scramble puzzles.
"""
import json
import logging
import random
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, MutableSequence, Optional, Set, Tuple, TypeVar

from .answers import sorted_chars
from .models import Card, Deck, DeckType, ScramblePuzzle

T = TypeVar("T")

# Process-wide random source; not meant to be repeatable or cryptographic.
_random = random.Random()

SCRAMBLE_REROLLS = 3
REVIEW_QUIZ_ID = "review"


def shuffle(items: MutableSequence[T], rng: random.Random = None) -> MutableSequence[T]:
    """Fisher-Yates shuffle of any mutable sequence, in place."""
    rng = rng or _random
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


class DeckSource:
    """Loads quiz decks listed in the quiz list file."""

    def __init__(
        self,
        quiz_directory: str = "./quizzes/",
        quiz_list_path: str = "./quizlist.json",
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize DeckSource.

        Args:
            quiz_directory: Directory containing quiz JSON files
            quiz_list_path: JSON object mapping quiz ids to file names
            rng: Random source used for shuffling and scrambles
        """
        self.quiz_directory = Path(quiz_directory)
        self.quiz_list_path = Path(quiz_list_path)
        self.logger = logging.getLogger(__name__)
        self._rng = rng or _random
        self._lock = threading.RLock()
        self._quiz_files: Dict[str, str] = {}

        # Scramble dictionary, read-only after load
        self.dictionary: Set[str] = set()
        self._groups: Dict[str, Tuple[str, ...]] = {}

    # ------------------------------------------------------------------
    # Quiz list
    # ------------------------------------------------------------------

    def reload(self) -> bool:
        """
        Re-read the quiz list from disk.

        Returns:
            True if the list was loaded, False if it could not be read
        """
        try:
            with open(self.quiz_list_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            self.logger.error(f"Quiz list not found: {self.quiz_list_path}")
            return False
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in quiz list {self.quiz_list_path}: {e}")
            return False
        except OSError as e:
            self.logger.error(f"Failed to read quiz list {self.quiz_list_path}: {e}")
            return False

        if not isinstance(data, dict):
            self.logger.error("Quiz list must be a JSON object of quiz id to file name")
            return False

        with self._lock:
            self._quiz_files = {str(k).lower(): str(v) for k, v in data.items()}

        self.logger.info(f"Loaded {len(self._quiz_files)} quizzes from {self.quiz_list_path}")
        return True

    def list_quiz_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._quiz_files)

    def has_quiz(self, quiz_id: str) -> bool:
        with self._lock:
            return quiz_id.lower() in self._quiz_files

    def quiz_path(self, quiz_id: str) -> Optional[Path]:
        with self._lock:
            filename = self._quiz_files.get(quiz_id.lower())
        if filename is None:
            return None
        return self.quiz_directory / filename

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    def load(self, quiz_id: str) -> Deck:
        """
        Load and shuffle a deck.

        Unknown ids and missing or corrupt files give an empty Deck rather than
        an exception; callers check `Deck.is_empty`.
        """
        deck = self.read_deck(quiz_id)
        shuffle(deck.cards, self._rng)
        return deck

    def read_deck(self, quiz_id: str) -> Deck:
        """Read a deck in file order without shuffling."""
        path = self.quiz_path(quiz_id)
        if path is None:
            self.logger.warning(f"Unknown quiz id '{quiz_id}'")
            return Deck()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in quiz '{quiz_id}' ({path}): {e}")
            return Deck()
        except OSError as e:
            self.logger.error(f"Failed to read quiz '{quiz_id}' ({path}): {e}")
            return Deck()

        return self.parse_deck(data, quiz_id)

    def parse_deck(self, data, quiz_id: str = "") -> Deck:
        """
        Parse quiz JSON into a Deck.

        Expected structure:
        {
            "description": str,
            "type": "text" | "image" | "scramble",   # optional
            "timeout": int,                          # optional, seconds
            "deck": [
                {"question": str, "answers": [str], "comment": str}
            ]
        }
        """
        if not isinstance(data, dict) or not isinstance(data.get("deck"), list):
            self.logger.error(f"Quiz '{quiz_id}' must be an object with a 'deck' array")
            return Deck()

        cards = []
        for i, entry in enumerate(data["deck"]):
            card = self._parse_card(entry)
            if card is None:
                self.logger.warning(f"Skipping malformed card {i} in quiz '{quiz_id}'")
                continue
            cards.append(card)

        timeout = data.get("timeout")
        if not isinstance(timeout, int) or timeout <= 0:
            timeout = None

        return Deck(
            description=str(data.get("description", "")),
            deck_type=DeckType.parse(data.get("type")),
            cards=cards,
            timeout=timeout,
        )

    @staticmethod
    def _parse_card(entry) -> Optional[Card]:
        if not isinstance(entry, dict):
            return None
        question = entry.get("question")
        answers = entry.get("answers")
        if not isinstance(question, str) or not question:
            return None
        if not isinstance(answers, list):
            return None
        unique = tuple(dict.fromkeys(a for a in answers if isinstance(a, str) and a))
        if not unique:
            return None
        comment = entry.get("comment") or ""
        return Card(question=question, answers=unique, comment=str(comment))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_duplicates(self, deck: Deck) -> Deck:
        """
        Merge cards sharing a question.

        Answers are unioned in first-seen order; distinct comments are joined
        with newlines.
        """
        merged: Dict[str, Tuple[List[str], List[str]]] = {}
        for card in deck.cards:
            if card.question in merged:
                self.logger.info(f"Found duplicate question: {card.question}")
                answers, comments = merged[card.question]
            else:
                answers, comments = [], []
                merged[card.question] = (answers, comments)

            dups = [a for a in card.answers if a in answers]
            if dups:
                self.logger.info(f"Found duplicate answers: {', '.join(dups)}")
            answers.extend(a for a in card.answers if a not in answers)
            if card.comment and card.comment not in comments:
                comments.append(card.comment)

        cards = [
            Card(question=q, answers=tuple(a), comment="\n".join(c))
            for q, (a, c) in merged.items()
        ]
        return Deck(
            description=deck.description,
            deck_type=deck.deck_type,
            cards=cards,
            timeout=deck.timeout,
        )

    def validate_quizzes(self, quiz_ids: List[str], generate_fix: bool = False) -> Dict[str, Deck]:
        """
        Run validation checks on the given quizzes.

        Args:
            quiz_ids: Quizzes to check
            generate_fix: Write a "<file>.fix" copy with duplicates merged

        Returns:
            Dictionary mapping quiz ids to their fixed decks
        """
        fixed_decks = {}
        for quiz_id in quiz_ids:
            self.logger.info(f"[{quiz_id}] running checks...")
            deck = self.read_deck(quiz_id)
            fixed = self.check_duplicates(deck)
            fixed_decks[quiz_id] = fixed

            if generate_fix and not fixed.is_empty:
                path = self.quiz_path(quiz_id)
                if path is None:
                    continue
                fix_path = path.with_name(path.name + ".fix")
                with open(fix_path, "w", encoding="utf-8") as f:
                    json.dump(self.deck_to_json(fixed), f, ensure_ascii=False, indent=4)
                self.logger.info(f"[{quiz_id}] generated fixed file {fix_path}")

        return fixed_decks

    @staticmethod
    def deck_to_json(deck: Deck) -> dict:
        data = {
            "description": deck.description,
            "type": deck.deck_type.value,
            "deck": [
                {
                    "question": c.question,
                    "answers": list(c.answers),
                    **({"comment": c.comment} if c.comment else {}),
                }
                for c in deck.cards
            ],
        }
        if deck.timeout:
            data["timeout"] = deck.timeout
        return data

    # ------------------------------------------------------------------
    # Scramble
    # ------------------------------------------------------------------

    def load_dictionary(self, path: str) -> int:
        """
        Load the scramble word list, one word per line.

        Returns:
            Number of words loaded (0 if the file could not be read)
        """
        words = set()
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    word = line.strip().lower()
                    if word:
                        words.add(word)
        except OSError as e:
            self.logger.error(f"Could not read scramble dictionary {path}: {e}")
            return 0

        self.set_dictionary(words)
        self.logger.info(f"Loaded {len(words)} scramble words from {path}")
        return len(words)

    def set_dictionary(self, words) -> None:
        """Install a word list and group it by letter multiset."""
        groups = defaultdict(list)
        for word in sorted(set(words)):
            groups[sorted_chars(word)].append(word)
        self.dictionary = set(words)
        self._groups = {key: tuple(group) for key, group in groups.items()}

    def next_scramble(self, low: int, high: int) -> Optional[ScramblePuzzle]:
        """
        Generate one scramble puzzle with a word length in [low, high].

        The permutation is re-rolled up to SCRAMBLE_REROLLS times when it
        happens to spell a dictionary word.
        """
        candidates = [key for key in self._groups if low <= len(key) <= high]
        if not candidates:
            return None

        group = self._groups[self._rng.choice(candidates)]
        word = self._rng.choice(group)

        letters = list(word)
        scrambled = word
        for _ in range(SCRAMBLE_REROLLS):
            shuffle(letters, self._rng)
            scrambled = "".join(letters)
            if scrambled not in self.dictionary:
                break

        return ScramblePuzzle(scrambled=scrambled, word=word, solutions=group)


class ReviewStore:
    """Keeps the cards nobody answered in each channel's last quiz."""

    def __init__(self):
        self._lock = threading.Lock()
        self._decks: Dict[int, Deck] = {}

    def put(self, channel_id: int, deck: Deck) -> None:
        with self._lock:
            self._decks[channel_id] = deck

    def take(self, channel_id: int) -> Deck:
        """Remove and return the review deck for a channel, shuffled."""
        with self._lock:
            deck = self._decks.pop(channel_id, None)
        if deck is None:
            return Deck()
        shuffle(deck.cards)
        return deck

    def has_review(self, channel_id: int) -> bool:
        with self._lock:
            return channel_id in self._decks
