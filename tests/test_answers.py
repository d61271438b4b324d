"""
Unit tests for answer normalization and matching.
"""
import unittest

from kanjiquiz.answers import (
    accepted_set,
    is_correct,
    is_scramble_solution,
    katakana_to_hiragana,
    matched_answer,
    normalize,
    sorted_chars,
)
from kanjiquiz.models import ScramblePuzzle


class TestNormalize(unittest.TestCase):
    """Test cases for kana folding and normalization."""

    def test_katakana_folds_to_hiragana(self):
        self.assertEqual(katakana_to_hiragana("カタカナ"), "かたかな")
        self.assertEqual(katakana_to_hiragana("ヴァ"), "ゔぁ")

    def test_range_boundaries(self):
        """ァ (U+30A1) and ヶ (U+30F6) are folded, the long vowel mark is not."""
        self.assertEqual(katakana_to_hiragana("ァ"), "ぁ")
        self.assertEqual(katakana_to_hiragana("ヶ"), "ゖ")
        self.assertEqual(katakana_to_hiragana("ー"), "ー")
        self.assertEqual(katakana_to_hiragana("ヷ"), "ヷ")

    def test_non_kana_untouched(self):
        self.assertEqual(katakana_to_hiragana("漢字 abc"), "漢字 abc")

    def test_normalize_trims_and_lowercases(self):
        self.assertEqual(normalize("  ABC\n"), "abc")
        self.assertEqual(normalize(" コーヒー "), "こーひー")

    def test_normalize_is_idempotent(self):
        samples = ["ヒ", "  Mixed カナ Text ", "", "ひらがな", "ÄÖ", "\tタクシー\n"]
        for sample in samples:
            once = normalize(sample)
            self.assertEqual(normalize(once), once, sample)


class TestMatching(unittest.TestCase):
    """Test cases for answer acceptance."""

    def setUp(self):
        self.accepted = accepted_set(["ひ", "か", "  ", "ヒト"])

    def test_accepted_set_normalizes_and_skips_blank(self):
        self.assertEqual(self.accepted, {"ひ", "か", "ひと"})

    def test_exact_and_katakana_answers_match(self):
        self.assertEqual(matched_answer("ひ", self.accepted), "ひ")
        self.assertEqual(matched_answer("ヒ", self.accepted), "ひ")
        self.assertEqual(matched_answer(" ヒト ", self.accepted), "ひと")

    def test_length_mismatch_rejected(self):
        self.assertIsNone(matched_answer("ひひ", self.accepted))
        self.assertFalse(is_correct("", self.accepted))

    def test_wrong_answer_rejected(self):
        self.assertFalse(is_correct("みず", self.accepted))

    def test_latin_answers_case_insensitive(self):
        self.assertTrue(is_correct("FIRE", accepted_set(["fire"])))

    def test_unnormalized_accepted_answers(self):
        """Raw accepted lists still match through normalization."""
        self.assertTrue(is_correct("ひ", ["ヒ"]))


class TestScramble(unittest.TestCase):
    """Test cases for scramble guesses."""

    def setUp(self):
        self.dictionary = {"listen", "silent", "enlist", "tinsel", "cat"}
        self.puzzle = ScramblePuzzle("tnslie", "listen", ("enlist", "listen", "silent", "tinsel"))

    def test_sorted_chars(self):
        self.assertEqual(sorted_chars("listen"), "eilnst")

    def test_any_anagram_in_dictionary_accepted(self):
        for word in ("listen", "silent", "Enlist", " tinsel "):
            self.assertTrue(is_scramble_solution(word, self.puzzle, self.dictionary), word)

    def test_word_outside_dictionary_rejected(self):
        self.assertFalse(is_scramble_solution("inlets", self.puzzle, self.dictionary))

    def test_different_letters_rejected(self):
        self.assertFalse(is_scramble_solution("cat", self.puzzle, self.dictionary))
        self.assertFalse(is_scramble_solution("listens", self.puzzle, self.dictionary))

    def test_solution_acceptance_is_symmetric(self):
        """A guess accepted for one puzzle word is accepted for every word of its group."""
        for word in self.puzzle.solutions:
            puzzle = ScramblePuzzle("x", word, self.puzzle.solutions)
            for guess in self.puzzle.solutions:
                self.assertTrue(is_scramble_solution(guess, puzzle, self.dictionary))


if __name__ == '__main__':
    unittest.main()
