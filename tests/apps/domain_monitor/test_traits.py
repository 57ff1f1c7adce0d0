"""Tests for static domain traits."""

import pytest

from domain_watch.apps.domain_monitor.traits import (
    compute_traits,
    has_balanced_vowels,
    is_palindrome,
    is_pronounceable,
    vowel_ratio,
)


class TestHelpers:
    """Tests for the trait helpers."""

    @pytest.mark.parametrize(
        ("text", "expected"), [("abba", True), ("Race-car", True), ("abc", False), ("", True)]
    )
    def test_is_palindrome(self, text: str, expected: bool) -> None:
        """Ignore case and punctuation."""
        assert is_palindrome(text) is expected

    def test_vowel_ratio(self) -> None:
        """Count only letters."""
        assert vowel_ratio("ab12") == 0.5
        assert vowel_ratio("123") is None

    def test_vowel_ratio_over_every_character(self) -> None:
        """Let digits and hyphens dilute the ratio when asked."""
        assert vowel_ratio("ab12", letters_only=False) == 0.25
        assert vowel_ratio("", letters_only=False) is None

    @pytest.mark.parametrize(
        ("ratio", "expected"),
        [(0.2, True), (0.6, True), (0.19, False), (0.61, False), (None, False)],
    )
    def test_has_balanced_vowels(self, ratio: float | None, expected: bool) -> None:
        """Accept the inclusive 20% to 60% band."""
        assert has_balanced_vowels(ratio) is expected

    def test_is_pronounceable(self) -> None:
        """Accept balanced names and reject consonant runs."""
        assert is_pronounceable("banana") is True
        assert is_pronounceable("xkcd") is False
        assert is_pronounceable("aeiou") is False
        assert is_pronounceable("42") is False


class TestComputeTraits:
    """Tests for compute_traits."""

    def test_features(self) -> None:
        """Derive every feature from the name."""
        traits = compute_traits("my-web3_site.com", token_id="t1")
        assert traits.domain_name == "my-web3_site.com"
        assert traits.token_id == "t1"
        assert traits.length == 16
        assert traits.extension == "com"
        assert traits.has_numbers is True
        assert traits.has_hyphens is True
        assert traits.has_underscores is True
        assert traits.word_count == 4
        assert traits.is_palindrome is False

    def test_palindrome_uses_first_label(self) -> None:
        """Ignore the extension when checking palindromes."""
        traits = compute_traits("level.io")
        assert traits.is_palindrome is True
        assert traits.word_count == 2
        assert traits.character_diversity == len(set("level.io"))
