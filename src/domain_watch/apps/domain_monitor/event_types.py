"""Upstream event type vocabulary.

Event types are open-ended strings; these sets only classify the ones the
analytics and scoring stages care about. Each class carries the full Doma
name plus the short alias some feeds emit. Anything not listed is stored
and dispatched but contributes no price or counter to analytics.
"""

UNKNOWN_EVENT_TYPE = "UNKNOWN"

SALE_TYPES = frozenset({"NAME_TOKEN_SOLD", "SALE"})
LISTING_TYPES = frozenset({"NAME_TOKEN_LISTED", "LISTING"})
OFFER_TYPES = frozenset({"NAME_TOKEN_OFFERED", "OFFER"})
FRACTIONALIZED_TYPES = frozenset({"NAME_TOKEN_FRACTIONALIZED", "FRACTIONALIZED"})

# Only these types contribute prices to volume and extrema.
PRICED_TYPES = SALE_TYPES | LISTING_TYPES | OFFER_TYPES

EXPIRED_TYPES = frozenset({"NAME_TOKEN_BURNED", "NAME_TOKEN_EXPIRED"})
TRANSFER_TYPES = frozenset({"NAME_TOKEN_TRANSFERRED"})
TREND_TYPES = frozenset({"NAME_TOKEN_MINTED", "NAME_TOKENIZATION_REQUESTED"})
LISTING_SIGNAL_TYPES = LISTING_TYPES | {"COMMAND_CREATED"}

KNOWN_EVENT_TYPES: tuple[str, ...] = (
    "NAME_CLAIMED",
    "NAME_TOKENIZED",
    "NAME_TOKENIZATION_REQUESTED",
    "NAME_TOKEN_MINTED",
    "NAME_TOKEN_BURNED",
    "NAME_TOKEN_TRANSFERRED",
    "NAME_TOKEN_LISTED",
    "NAME_TOKEN_UNLISTED",
    "NAME_TOKEN_SOLD",
    "NAME_TOKEN_OFFERED",
    "NAME_TOKEN_OFFER_ACCEPTED",
    "NAME_TOKEN_OFFER_CANCELLED",
    "NAME_TOKEN_EXPIRED",
    "NAME_TOKEN_RENEWED",
    "NAME_TOKEN_FRACTIONALIZED",
    "NAME_TOKEN_DEFRACTIONALIZED",
    "COMMAND_CREATED",
    "COMMAND_UPDATED",
    "COMMAND_SUCCEEDED",
)
