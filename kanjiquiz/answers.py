"""
Answer matching for quiz rounds.

Readings are compared after folding katakana into hiragana, so "ヒ" and "ひ"
are the same answer. This is a reading-only equivalence and does not attempt
orthographic matching.
"""
from typing import Iterable, Optional, Set

from .models import ScramblePuzzle

KATAKANA_FIRST = 0x30A1  # ァ
KATAKANA_LAST = 0x30F6   # ヶ
KANA_OFFSET = 0x60


def katakana_to_hiragana(text: str) -> str:
    """Shift every katakana code point in range down to its hiragana equivalent."""
    return "".join(
        chr(ord(ch) - KANA_OFFSET) if KATAKANA_FIRST <= ord(ch) <= KATAKANA_LAST else ch
        for ch in text
    )


def normalize(raw: str) -> str:
    """Normalize a submitted answer or an accepted answer for comparison."""
    return katakana_to_hiragana(raw.strip()).lower()


def sorted_chars(text: str) -> str:
    return "".join(sorted(text))


def matched_answer(submission: str, accepted: Iterable[str]) -> Optional[str]:
    """
    Return the accepted answer a submission matches, or None.

    Candidates are only compared when their length equals the submission's.
    """
    candidate = normalize(submission)
    size = len(candidate)
    for answer in accepted:
        if len(answer) != size:
            continue
        if candidate == answer or candidate == normalize(answer):
            return answer
    return None


def is_correct(submission: str, accepted: Iterable[str]) -> bool:
    return matched_answer(submission, accepted) is not None


def accepted_set(answers: Iterable[str]) -> Set[str]:
    """Build the normalized accepted-answer set for a card."""
    return {normalize(a) for a in answers if a.strip()}


def is_scramble_solution(submission: str, puzzle: ScramblePuzzle, dictionary: Set[str]) -> bool:
    """
    Check a scramble guess.

    Any dictionary word using exactly the puzzle's letters is accepted, not only
    the word the puzzle was generated from.
    """
    guess = submission.strip().lower()
    if len(guess) != len(puzzle.word):
        return False
    if guess not in dictionary:
        return False
    return sorted_chars(guess) == sorted_chars(puzzle.word)
