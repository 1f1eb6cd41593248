"""
formkeeper.constants — Shared Constants & Helpers
==================================================

Single source of truth for question types, comparison operators, field
limits and the small parsing helpers shared by the engine and services.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Question types
# ---------------------------------------------------------------------------
QUESTION_TYPE_LABELS: dict[str, str] = {
    "short_text": "Short Text",
    "long_text": "Long Text",
    "multiple_choice": "Multiple Choice",
    "checkboxes": "Checkboxes",
    "dropdown": "Dropdown",
    "number": "Number",
    "email": "Email",
    "url": "URL",
}

TEXT_QUESTION_TYPES: frozenset[str] = frozenset({"short_text", "long_text"})
CHOICE_QUESTION_TYPES: frozenset[str] = frozenset({"multiple_choice", "checkboxes", "dropdown"})

# ---------------------------------------------------------------------------
# Conditional operators & role logic
# ---------------------------------------------------------------------------
OPERATORS: frozenset[str] = frozenset({
    "equals", "not_equals", "contains", "greater_than", "less_than",
})
ROLE_LOGIC_VALUES: frozenset[str] = frozenset({"any", "all", "none"})

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------
MAX_FORM_NAME_LENGTH = 255
MAX_QUESTION_TEXT_LENGTH = 500
MAX_PLACEHOLDER_LENGTH = 200
MAX_TEXT_ANSWER_LENGTH = 5000
MAX_OPTIONS = 25  # Discord select-menu / embed field cap

PIPED_ANSWER_MAX_LENGTH = 100
EMBED_MAX_ANSWERS = 20
EMBED_FIELD_MAX_LENGTH = 1024

SHARE_CODE_LENGTH = 12
STATUS_TOKEN_LENGTH = 32
CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

DEFAULT_INVITE_MAX_AGE = 86400  # 24 hours
DEFAULT_INVITE_MAX_USES = 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def parse_id_list(raw: str | None) -> list[int]:
    """Parse a comma-separated snowflake list such as ``"123, 456"``.

    Blank entries are skipped.  Raises :class:`ValueError` if any entry is
    not an integer, so callers can decide how to treat malformed config.
    """
    if not raw:
        return []
    return [int(part.strip()) for part in raw.split(",") if part.strip()]


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def render_answer(value: object) -> str:
    """Flatten an answer to text; multi-select answers join with ``", "``."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def random_code(rng: random.Random, length: int) -> str:
    """Draw *length* characters from :data:`CODE_ALPHABET` using *rng*."""
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(length))
