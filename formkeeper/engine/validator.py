"""
formkeeper.engine.validator — Form & Question Validation
=========================================================

Structural checks run before forms, questions and options are persisted.
Each validator takes the field mapping about to be written and returns a
list of human-readable errors (empty when valid).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from formkeeper.constants import (
    CHOICE_QUESTION_TYPES,
    MAX_FORM_NAME_LENGTH,
    MAX_OPTIONS,
    MAX_PLACEHOLDER_LENGTH,
    MAX_QUESTION_TEXT_LENGTH,
    MAX_TEXT_ANSWER_LENGTH,
    QUESTION_TYPE_LABELS,
    TEXT_QUESTION_TYPES,
)


def validate_form(fields: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    name = fields.get("name")

    if not name or not str(name).strip():
        errors.append("Form name is required")
    elif len(name) > MAX_FORM_NAME_LENGTH:
        errors.append(f"Form name cannot exceed {MAX_FORM_NAME_LENGTH} characters")

    max_responses = fields.get("max_responses")
    if max_responses is not None and max_responses < 1:
        errors.append("Maximum responses must be at least 1")

    return errors


def validate_question(fields: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    text = fields.get("question_text")
    question_type = fields.get("question_type")

    if not text or not str(text).strip():
        errors.append("Question text is required")
    elif len(text) > MAX_QUESTION_TEXT_LENGTH:
        errors.append(f"Question text cannot exceed {MAX_QUESTION_TEXT_LENGTH} characters")

    if question_type in TEXT_QUESTION_TYPES:
        min_length = fields.get("min_length")
        max_length = fields.get("max_length")
        if min_length is not None and max_length is not None and min_length > max_length:
            errors.append(
                f"Minimum length ({min_length}) cannot be greater than "
                f"maximum length ({max_length})"
            )
        if min_length is not None and min_length < 0:
            errors.append("Minimum length cannot be negative")
        if max_length is not None and max_length < 1:
            errors.append("Maximum length must be at least 1")
        if max_length is not None and max_length > MAX_TEXT_ANSWER_LENGTH:
            errors.append(f"Maximum length cannot exceed {MAX_TEXT_ANSWER_LENGTH} characters")

    if question_type == "number":
        min_value = fields.get("min_value")
        max_value = fields.get("max_value")
        if min_value is not None and max_value is not None and min_value > max_value:
            errors.append(
                f"Minimum value ({min_value}) cannot be greater than "
                f"maximum value ({max_value})"
            )

    placeholder = fields.get("placeholder")
    if placeholder and len(placeholder) > MAX_PLACEHOLDER_LENGTH:
        errors.append(f"Placeholder text cannot exceed {MAX_PLACEHOLDER_LENGTH} characters")

    if fields.get("conditional_parent_question_id") is not None:
        if not (fields.get("conditional_operator") or "").strip():
            errors.append("Conditional operator is required when parent question is set")
        if not (fields.get("conditional_expected_value") or "").strip():
            errors.append("Expected value is required for conditional logic")

    return errors


def validate_question_options(
    question_type: str,
    options: Sequence[Mapping[str, Any]] | None,
) -> list[str]:
    """Choice questions need 1–25 options, each with text and a unique value."""
    errors: list[str] = []
    if question_type not in CHOICE_QUESTION_TYPES:
        return errors

    if not options:
        label = QUESTION_TYPE_LABELS.get(question_type, question_type)
        errors.append(f"{label} questions must have at least one option")
        return errors

    if len(options) > MAX_OPTIONS:
        errors.append(f"Cannot have more than {MAX_OPTIONS} options (Discord embed field limit)")

    if any(not (o.get("option_text") or "").strip() for o in options):
        errors.append("All options must have text")

    values = [o.get("option_value") for o in options if o.get("option_value")]
    if len(values) != len(set(values)):
        errors.append("Option values must be unique")

    return errors
