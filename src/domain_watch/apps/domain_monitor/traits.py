"""Static name features derived once per domain.

Traits depend only on the domain name, so they are computed the first time
a domain is aggregated and never recomputed afterwards.
"""

import re
from dataclasses import dataclass

from domain_watch.apps.domain_monitor.filters import domain_extension

VOWELS = frozenset("aeiou")
CONSONANTS = frozenset("bcdfghjklmnpqrstvwxyz")

MIN_VOWEL_RATIO = 0.2
MAX_VOWEL_RATIO = 0.6
_WORD_SEPARATORS = re.compile(r"[-._]")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class TraitsRecord:
    """Computed name features for one domain.

    Args:
        domain_name: Full domain name.
        token_id: Token id of the event the traits were computed from.
        length: Character length of the full name.
        extension: Suffix after the last dot.
        has_numbers: Whether the name contains a digit.
        has_hyphens: Whether the name contains a hyphen.
        has_underscores: Whether the name contains an underscore.
        word_count: Number of segments split on ``-``, ``.`` and ``_``.
        is_palindrome: Whether the first label is a palindrome.
        is_pronounceable: Whether the vowel ratio looks pronounceable.
        character_diversity: Number of distinct lower-cased characters.

    """

    domain_name: str
    token_id: str | None
    length: int
    extension: str
    has_numbers: bool
    has_hyphens: bool
    has_underscores: bool
    word_count: int
    is_palindrome: bool
    is_pronounceable: bool
    character_diversity: int


def is_palindrome(text: str) -> bool:
    """Return whether ``text`` reads the same reversed, ignoring punctuation."""
    cleaned = _NON_ALNUM.sub("", text.lower())
    return cleaned == cleaned[::-1]


def vowel_ratio(text: str, *, letters_only: bool = True) -> float | None:
    """Return the share of vowels in ``text``.

    Args:
        text: Name or label to inspect.
        letters_only: Divide by vowels plus consonants; otherwise divide by
            every character, so digits and hyphens dilute the ratio.

    Returns:
        The ratio, or ``None`` when the denominator is zero.

    """
    lowered = text.lower()
    vowels = sum(1 for ch in lowered if ch in VOWELS)
    if letters_only:
        total = vowels + sum(1 for ch in lowered if ch in CONSONANTS)
    else:
        total = len(lowered)
    if total == 0:
        return None
    return vowels / total


def has_balanced_vowels(ratio: float | None) -> bool:
    """Return whether a vowel ratio falls in the pronounceable band."""
    return ratio is not None and MIN_VOWEL_RATIO <= ratio <= MAX_VOWEL_RATIO


def is_pronounceable(text: str) -> bool:
    """Return whether the vowel/consonant balance of ``text`` looks speakable.

    A name counts as pronounceable when vowels make up between 20% and 60%
    of its letters.
    """
    return has_balanced_vowels(vowel_ratio(text))


def compute_traits(domain_name: str, token_id: str | None = None) -> TraitsRecord:
    """Compute the static traits of a domain name.

    Args:
        domain_name: Full domain name (e.g. ``crypto.com``).
        token_id: Token id to record alongside the traits.

    Returns:
        The ``TraitsRecord``.

    """
    return TraitsRecord(
        domain_name=domain_name,
        token_id=token_id,
        length=len(domain_name),
        extension=domain_extension(domain_name),
        has_numbers=any(ch.isdigit() for ch in domain_name),
        has_hyphens="-" in domain_name,
        has_underscores="_" in domain_name,
        word_count=len(_WORD_SEPARATORS.split(domain_name)),
        is_palindrome=is_palindrome(domain_name.split(".")[0]),
        is_pronounceable=is_pronounceable(domain_name),
        character_diversity=len(set(domain_name.lower())),
    )
