"""
tests/test_conditions.py — Condition evaluator
===============================================
Pure tests: no database, no Discord.  Members are given as
:class:`MemberSnapshot` values.

Branches that evaluate to True on missing or malformed configuration are
grouped in :class:`TestFailOpen` so a change to that behavior shows up as
a deliberate test edit.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from formkeeper.database.models import ConditionalType, LogicType
from formkeeper.engine.conditions import (
    BoostCondition,
    ConditionClause,
    EvaluationContext,
    MemberSnapshot,
    MultipleConditions,
    PermissionCondition,
    QuestionCondition,
    RoleCondition,
    TenureCondition,
    clause_from_row,
    compare_answer,
    condition_from_question,
    evaluate,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _ctx(answers=None, member=None) -> EvaluationContext:
    return EvaluationContext(answers=answers or {}, guild_id=1, user_id=42, member=member, now=NOW)


def _member(**kwargs) -> MemberSnapshot:
    return MemberSnapshot(**kwargs)


TRUE = PermissionCondition(permission_flags=None)  # unconfigured → True
FALSE = QuestionCondition(parent_question_id=99)   # unanswered parent → False


# ===========================================================================
# Question-based
# ===========================================================================
class TestQuestionCondition:
    @pytest.mark.parametrize("operator", ["equals", "not_equals", "contains",
                                          "greater_than", "less_than"])
    def test_unanswered_parent_is_false(self, operator):
        cond = QuestionCondition(parent_question_id=1, operator=operator, expected_value="x")
        assert evaluate(cond, _ctx()) is False

    @pytest.mark.parametrize("answer", ["Yes", "yes", "YES", "yEs"])
    def test_equals_ignores_case(self, answer):
        cond = QuestionCondition(parent_question_id=1, operator="equals", expected_value="yes")
        assert evaluate(cond, _ctx({1: answer})) is True

    def test_not_equals(self):
        cond = QuestionCondition(parent_question_id=1, operator="not_equals", expected_value="no")
        assert evaluate(cond, _ctx({1: "No"})) is False
        assert evaluate(cond, _ctx({1: "maybe"})) is True

    def test_contains_ignores_case(self):
        cond = QuestionCondition(parent_question_id=1, operator="contains", expected_value="RUST")
        assert evaluate(cond, _ctx({1: "I write rust and go"})) is True
        assert evaluate(cond, _ctx({1: "python"})) is False

    def test_contains_matches_inside_multi_select(self):
        cond = QuestionCondition(parent_question_id=1, operator="contains", expected_value="art")
        assert evaluate(cond, _ctx({1: ["Music", "Art"]})) is True

    def test_numeric_operators(self):
        gt = QuestionCondition(parent_question_id=1, operator="greater_than", expected_value="17")
        lt = QuestionCondition(parent_question_id=1, operator="less_than", expected_value="17")
        assert evaluate(gt, _ctx({1: "18"})) is True
        assert evaluate(gt, _ctx({1: "17"})) is False
        assert evaluate(lt, _ctx({1: "16.5"})) is True

    def test_numeric_parse_failure_is_false(self):
        gt = QuestionCondition(parent_question_id=1, operator="greater_than", expected_value="10")
        assert evaluate(gt, _ctx({1: "eleven"})) is False
        bad_expected = QuestionCondition(parent_question_id=1, operator="less_than",
                                         expected_value="ten")
        assert evaluate(bad_expected, _ctx({1: "5"})) is False

    def test_no_parent_is_ungated(self):
        assert evaluate(QuestionCondition(parent_question_id=None), _ctx()) is True


# ===========================================================================
# Discord roles
# ===========================================================================
class TestRoleCondition:
    def test_any(self):
        cond = RoleCondition(role_ids="10,20", logic="any")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({20})))) is True
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({30})))) is False

    def test_all(self):
        cond = RoleCondition(role_ids="10, 20", logic="all")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({10, 20, 30})))) is True
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({10})))) is False

    def test_none_with_zero_matches_is_true(self):
        cond = RoleCondition(role_ids="10,20", logic="none")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({30})))) is True

    @pytest.mark.parametrize("held", [{10}, {20}, {10, 20}])
    def test_none_with_any_match_is_false(self, held):
        cond = RoleCondition(role_ids="10,20", logic="none")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset(held)))) is False

    def test_logic_is_case_insensitive(self):
        cond = RoleCondition(role_ids="10", logic="ALL")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset({10})))) is True

    def test_unresolved_member_is_false(self):
        assert evaluate(RoleCondition(role_ids="10"), _ctx(member=None)) is False


# ===========================================================================
# Tenure
# ===========================================================================
class TestTenureCondition:
    def test_days_in_server(self):
        cond = TenureCondition(min_days_in_server=30)
        veteran = _member(joined_at=NOW - timedelta(days=30))
        newcomer = _member(joined_at=NOW - timedelta(days=29, hours=23))
        assert evaluate(cond, _ctx(member=veteran)) is True
        assert evaluate(cond, _ctx(member=newcomer)) is False

    def test_missing_join_date_is_false(self):
        cond = TenureCondition(min_days_in_server=1)
        assert evaluate(cond, _ctx(member=_member(joined_at=None))) is False

    def test_account_age(self):
        cond = TenureCondition(min_account_age_days=365)
        old = _member(created_at=NOW - timedelta(days=400))
        young = _member(created_at=NOW - timedelta(days=10))
        assert evaluate(cond, _ctx(member=old)) is True
        assert evaluate(cond, _ctx(member=young)) is False

    def test_both_checks_are_anded(self):
        cond = TenureCondition(min_days_in_server=7, min_account_age_days=30)
        member = _member(joined_at=NOW - timedelta(days=10), created_at=NOW - timedelta(days=5))
        assert evaluate(cond, _ctx(member=member)) is False

    def test_naive_timestamps_are_treated_as_utc(self):
        cond = TenureCondition(min_days_in_server=1)
        joined = (NOW - timedelta(days=2)).replace(tzinfo=None)
        assert evaluate(cond, _ctx(member=_member(joined_at=joined))) is True

    def test_no_thresholds_passes_for_member(self):
        assert evaluate(TenureCondition(), _ctx(member=_member())) is True

    def test_unresolved_member_is_false(self):
        assert evaluate(TenureCondition(), _ctx(member=None)) is False


# ===========================================================================
# Boost / Nitro
# ===========================================================================
class TestBoostCondition:
    def test_requires_boost(self):
        cond = BoostCondition(requires_boost=True)
        assert evaluate(cond, _ctx(member=_member(premium_since=NOW))) is True
        assert evaluate(cond, _ctx(member=_member())) is False

    def test_nitro_heuristic_accepts_guild_avatar(self):
        cond = BoostCondition(requires_nitro=True)
        assert evaluate(cond, _ctx(member=_member(has_guild_avatar=True))) is True

    def test_nitro_heuristic_accepts_booster(self):
        cond = BoostCondition(requires_nitro=True)
        assert evaluate(cond, _ctx(member=_member(premium_since=NOW))) is True

    def test_nitro_heuristic_rejects_plain_member(self):
        cond = BoostCondition(requires_nitro=True)
        assert evaluate(cond, _ctx(member=_member())) is False

    def test_unresolved_member_is_false(self):
        assert evaluate(BoostCondition(), _ctx(member=None)) is False


# ===========================================================================
# Permissions
# ===========================================================================
class TestPermissionCondition:
    def test_all_bits_required(self):
        cond = PermissionCondition(permission_flags=0b1010)
        assert evaluate(cond, _ctx(member=_member(permissions=0b1110))) is True
        assert evaluate(cond, _ctx(member=_member(permissions=0b0010))) is False

    def test_unresolved_member_is_false(self):
        assert evaluate(PermissionCondition(permission_flags=8), _ctx(member=None)) is False


# ===========================================================================
# Multiple conditions
# ===========================================================================
def _clause(group: int, logic: LogicType, condition) -> ConditionClause:
    return ConditionClause(group=group, logic=logic, condition=condition)


class TestMultipleConditions:
    def test_failing_and_group_or_true_group(self):
        cond = MultipleConditions(clauses=(
            _clause(0, LogicType.AND, FALSE),
            _clause(0, LogicType.AND, TRUE),
            _clause(1, LogicType.OR, TRUE),
        ))
        assert evaluate(cond, _ctx()) is True

    def test_and_short_circuits_group(self):
        cond = MultipleConditions(clauses=(
            _clause(0, LogicType.AND, FALSE),
            _clause(0, LogicType.OR, TRUE),
        ))
        assert evaluate(cond, _ctx()) is False

    def test_or_within_group(self):
        cond = MultipleConditions(clauses=(
            _clause(0, LogicType.OR, FALSE),
            _clause(0, LogicType.OR, TRUE),
        ))
        assert evaluate(cond, _ctx()) is True

    def test_all_groups_false(self):
        cond = MultipleConditions(clauses=(
            _clause(0, LogicType.AND, FALSE),
            _clause(1, LogicType.OR, FALSE),
        ))
        assert evaluate(cond, _ctx()) is False

    def test_groups_need_not_be_contiguous(self):
        cond = MultipleConditions(clauses=(
            _clause(1, LogicType.AND, TRUE),
            _clause(0, LogicType.AND, FALSE),
            _clause(1, LogicType.AND, TRUE),
        ))
        assert evaluate(cond, _ctx()) is True

    def test_clause_row_logic_defaults_to_and(self):
        row = SimpleNamespace(
            id=1, condition_group=None, condition_type=ConditionalType.QUESTION_BASED,
            target_question_id=5, operator="equals", expected_value="a", logic_type="xor",
        )
        clause = clause_from_row(row)
        assert clause.logic is LogicType.AND
        assert clause.group == 0
        assert clause.condition == QuestionCondition(5, "equals", "a")

    def test_clause_row_or_is_case_insensitive(self):
        row = SimpleNamespace(
            id=1, condition_group=2, condition_type=ConditionalType.PERMISSION,
            permission_flags=8, logic_type="or",
        )
        clause = clause_from_row(row)
        assert clause.logic is LogicType.OR
        assert clause.condition == PermissionCondition(permission_flags=8)


# ===========================================================================
# Question → condition translation
# ===========================================================================
def _question(**overrides):
    fields = dict(
        id=1,
        conditional_type=ConditionalType.QUESTION_BASED,
        conditional_parent_question_id=None,
        conditional_operator=None,
        conditional_expected_value=None,
        conditional_role_ids=None,
        conditional_role_logic=None,
        conditional_days_in_server=None,
        conditional_account_age_days=None,
        conditional_requires_boost=None,
        conditional_requires_nitro=None,
        conditional_permission_flags=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestConditionFromQuestion:
    def test_question_based_defaults(self):
        cond = condition_from_question(_question(conditional_parent_question_id=3))
        assert cond == QuestionCondition(parent_question_id=3, operator="equals", expected_value="")

    def test_role(self):
        cond = condition_from_question(_question(
            conditional_type=ConditionalType.DISCORD_ROLE, conditional_role_ids="1,2",
        ))
        assert cond == RoleCondition(role_ids="1,2", logic="any")

    def test_tenure(self):
        cond = condition_from_question(_question(
            conditional_type=ConditionalType.SERVER_TENURE,
            conditional_days_in_server=5, conditional_account_age_days=9,
        ))
        assert cond == TenureCondition(min_days_in_server=5, min_account_age_days=9)

    def test_multiple_uses_given_clauses(self):
        rows = [SimpleNamespace(
            id=7, condition_group=0, condition_type=ConditionalType.BOOST_STATUS,
            requires_boost=True, requires_nitro=None, logic_type="AND",
        )]
        cond = condition_from_question(
            _question(conditional_type=ConditionalType.MULTIPLE_CONDITIONS), rows
        )
        assert cond == MultipleConditions(clauses=(
            ConditionClause(0, LogicType.AND, BoostCondition(requires_boost=True)),
        ))

    def test_unknown_type_shows_question(self):
        cond = condition_from_question(_question(conditional_type=42))
        assert evaluate(cond, _ctx()) is True


# ===========================================================================
# Fail-open branches
# ===========================================================================
class TestFailOpen:
    """Missing or unreadable configuration shows the question."""

    def test_unknown_operator(self):
        assert compare_answer("anything", "starts_with", "x") is True

    def test_role_condition_without_roles(self):
        assert evaluate(RoleCondition(role_ids=None), _ctx(member=None)) is True
        assert evaluate(RoleCondition(role_ids="  "), _ctx(member=None)) is True

    def test_malformed_role_list(self):
        cond = RoleCondition(role_ids="12,abc")
        assert evaluate(cond, _ctx(member=_member(role_ids=frozenset()))) is True

    def test_role_list_of_only_separators(self):
        cond = RoleCondition(role_ids=",,")
        assert evaluate(cond, _ctx(member=_member())) is True

    def test_unknown_role_logic(self):
        cond = RoleCondition(role_ids="10", logic="most")
        assert evaluate(cond, _ctx(member=_member())) is True

    def test_permission_without_flags(self):
        assert evaluate(PermissionCondition(permission_flags=0), _ctx(member=None)) is True

    def test_multiple_conditions_without_clauses(self):
        assert evaluate(MultipleConditions(), _ctx()) is True

    def test_unsupported_clause_type_is_neutral(self):
        row = SimpleNamespace(
            id=3, condition_group=0, condition_type=ConditionalType.MULTIPLE_CONDITIONS,
            logic_type="AND",
        )
        cond = MultipleConditions(clauses=(clause_from_row(row),))
        assert evaluate(cond, _ctx()) is True
