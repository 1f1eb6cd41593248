"""
tests/test_validator.py — Form, question & option validation
=============================================================
"""

from __future__ import annotations

import pytest

from formkeeper.engine.validator import (
    validate_form,
    validate_question,
    validate_question_options,
)


class TestValidateForm:
    def test_valid(self):
        assert validate_form({"name": "Staff Application", "max_responses": 10}) == []

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_name_required(self, name):
        assert validate_form({"name": name}) == ["Form name is required"]

    def test_name_too_long(self):
        assert validate_form({"name": "x" * 256}) == ["Form name cannot exceed 255 characters"]

    def test_max_responses_at_least_one(self):
        assert validate_form({"name": "ok", "max_responses": 0}) == [
            "Maximum responses must be at least 1"
        ]


class TestValidateQuestion:
    def test_valid_text_question(self):
        fields = {"question_text": "Why?", "question_type": "long_text",
                  "min_length": 10, "max_length": 2000}
        assert validate_question(fields) == []

    def test_text_required(self):
        assert "Question text is required" in validate_question({"question_text": " "})

    def test_text_too_long(self):
        errors = validate_question({"question_text": "q" * 501})
        assert errors == ["Question text cannot exceed 500 characters"]

    def test_length_bounds(self):
        errors = validate_question({"question_text": "Bio", "question_type": "short_text",
                                    "min_length": 50, "max_length": 10})
        assert errors == ["Minimum length (50) cannot be greater than maximum length (10)"]

    def test_negative_min_and_zero_max(self):
        errors = validate_question({"question_text": "Bio", "question_type": "short_text",
                                    "min_length": -1, "max_length": 0})
        assert "Minimum length cannot be negative" in errors
        assert "Maximum length must be at least 1" in errors

    def test_max_length_cap(self):
        errors = validate_question({"question_text": "Bio", "question_type": "long_text",
                                    "max_length": 5001})
        assert errors == ["Maximum length cannot exceed 5000 characters"]

    def test_length_rules_skip_non_text_types(self):
        fields = {"question_text": "Pick", "question_type": "dropdown",
                  "min_length": 9, "max_length": 1}
        assert validate_question(fields) == []

    def test_number_bounds(self):
        errors = validate_question({"question_text": "Age", "question_type": "number",
                                    "min_value": 99, "max_value": 13})
        assert errors == ["Minimum value (99) cannot be greater than maximum value (13)"]

    def test_placeholder_limit(self):
        errors = validate_question({"question_text": "Age", "placeholder": "p" * 201})
        assert errors == ["Placeholder text cannot exceed 200 characters"]

    def test_conditional_parent_needs_operator_and_value(self):
        errors = validate_question({"question_text": "Why?", "conditional_parent_question_id": 3})
        assert errors == [
            "Conditional operator is required when parent question is set",
            "Expected value is required for conditional logic",
        ]


class TestValidateOptions:
    def test_non_choice_types_need_no_options(self):
        assert validate_question_options("short_text", None) == []

    def test_choice_requires_options(self):
        assert validate_question_options("checkboxes", []) == [
            "Checkboxes questions must have at least one option"
        ]

    def test_option_cap(self):
        options = [{"option_text": f"o{i}", "option_value": f"v{i}"} for i in range(26)]
        assert validate_question_options("dropdown", options) == [
            "Cannot have more than 25 options (Discord embed field limit)"
        ]

    def test_options_need_text_and_unique_values(self):
        options = [
            {"option_text": "Red", "option_value": "r"},
            {"option_text": "", "option_value": "r"},
        ]
        assert validate_question_options("multiple_choice", options) == [
            "All options must have text",
            "Option values must be unique",
        ]
