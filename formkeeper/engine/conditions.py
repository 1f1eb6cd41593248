"""
formkeeper.engine.conditions — Conditional Rule Evaluator
==========================================================

Pure evaluation of question visibility rules.  No Discord I/O, no DB I/O:
callers resolve the acting member into a :class:`MemberSnapshot` and load
any compound clauses before calling :func:`evaluate`.

Each rule kind is its own frozen dataclass carrying only the fields that
kind uses::

    QuestionCondition    — parent answer compared with an operator
    RoleCondition        — member roles vs. a configured id list (any/all/none)
    TenureCondition      — days in server and/or account age
    BoostCondition       — server boost and/or a Nitro heuristic
    PermissionCondition  — guild permission bitmask
    MultipleConditions   — grouped clauses, AND/OR within, OR across groups

Several branches deliberately evaluate to ``True`` when configuration is
missing or unparseable (no roles configured, malformed role list, unknown
operator or role logic, no clauses).  Those branches are marked
``fail-open`` below; a question is shown rather than hidden when its rule
cannot be interpreted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import groupby
from typing import TYPE_CHECKING, assert_never

from formkeeper.constants import as_utc, parse_id_list, render_answer
from formkeeper.database.models import ConditionalType, LogicType

if TYPE_CHECKING:
    import discord

    from formkeeper.database.models import FormQuestion, FormQuestionCondition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MemberSnapshot:
    """The parts of a guild member that conditions can inspect."""

    role_ids: frozenset[int] = frozenset()
    joined_at: datetime | None = None
    created_at: datetime | None = None
    premium_since: datetime | None = None
    has_guild_avatar: bool = False
    permissions: int = 0

    @classmethod
    def from_member(cls, member: discord.Member) -> MemberSnapshot:
        return cls(
            role_ids=frozenset(role.id for role in member.roles),
            joined_at=member.joined_at,
            created_at=member.created_at,
            premium_since=member.premium_since,
            has_guild_avatar=member.guild_avatar is not None,
            permissions=member.guild_permissions.value,
        )


@dataclass(frozen=True, slots=True)
class EvaluationContext:
    """Everything a condition may consult.

    ``member`` is ``None`` when the actor could not be resolved as a member
    of the guild; every member-based rule then evaluates to ``False``.
    """

    answers: Mapping[int, object] = field(default_factory=dict)
    guild_id: int | None = None
    user_id: int | None = None
    member: MemberSnapshot | None = None
    now: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Condition variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QuestionCondition:
    parent_question_id: int | None
    operator: str = "equals"
    expected_value: str = ""


@dataclass(frozen=True, slots=True)
class RoleCondition:
    role_ids: str | None  # raw comma-separated config, parsed at evaluation
    logic: str = "any"


@dataclass(frozen=True, slots=True)
class TenureCondition:
    min_days_in_server: int | None = None
    min_account_age_days: int | None = None


@dataclass(frozen=True, slots=True)
class BoostCondition:
    requires_boost: bool = False
    requires_nitro: bool = False


@dataclass(frozen=True, slots=True)
class PermissionCondition:
    permission_flags: int | None = None


@dataclass(frozen=True, slots=True)
class ConditionClause:
    group: int
    logic: LogicType
    condition: SingleCondition


@dataclass(frozen=True, slots=True)
class MultipleConditions:
    clauses: tuple[ConditionClause, ...] = ()


SingleCondition = (
    QuestionCondition
    | RoleCondition
    | TenureCondition
    | BoostCondition
    | PermissionCondition
)
Condition = SingleCondition | MultipleConditions


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def evaluate(condition: Condition, ctx: EvaluationContext) -> bool:
    """Return whether *condition* holds in *ctx*."""
    match condition:
        case QuestionCondition():
            return _evaluate_question(condition, ctx)
        case RoleCondition():
            return _evaluate_roles(condition, ctx)
        case TenureCondition():
            return _evaluate_tenure(condition, ctx)
        case BoostCondition():
            return _evaluate_boost(condition, ctx)
        case PermissionCondition():
            return _evaluate_permission(condition, ctx)
        case MultipleConditions():
            return _evaluate_multiple(condition, ctx)
        case _:
            assert_never(condition)


def compare_answer(actual: object, operator: str | None, expected: str | None) -> bool:
    """Compare a recorded answer against an expected value.

    String operators are case-insensitive.  Numeric operators are ``False``
    when either side does not parse.  Unknown operators are fail-open.
    """
    actual_str = render_answer(actual)
    expected_str = expected or ""
    op = (operator or "equals").lower()

    if op == "equals":
        return actual_str.casefold() == expected_str.casefold()
    if op == "not_equals":
        return actual_str.casefold() != expected_str.casefold()
    if op == "contains":
        return expected_str.casefold() in actual_str.casefold()
    if op in ("greater_than", "less_than"):
        try:
            actual_num = float(actual_str)
            expected_num = float(expected_str)
        except ValueError:
            return False
        return actual_num > expected_num if op == "greater_than" else actual_num < expected_num

    logger.debug("Unknown conditional operator %r; treating as satisfied", operator)
    return True  # fail-open


def _evaluate_question(cond: QuestionCondition, ctx: EvaluationContext) -> bool:
    if cond.parent_question_id is None:
        return True
    parent_answer = ctx.answers.get(cond.parent_question_id)
    if parent_answer is None:
        return False
    return compare_answer(parent_answer, cond.operator, cond.expected_value)


def _evaluate_roles(cond: RoleCondition, ctx: EvaluationContext) -> bool:
    if not cond.role_ids or not cond.role_ids.strip():
        return True  # fail-open: nothing configured
    if ctx.member is None:
        return False

    try:
        required = parse_id_list(cond.role_ids)
    except ValueError:
        logger.warning("Malformed role id list %r in role condition", cond.role_ids)
        return True  # fail-open
    if not required:
        return True

    held = ctx.member.role_ids
    logic = (cond.logic or "any").lower()
    if logic == "any":
        return any(role_id in held for role_id in required)
    if logic == "all":
        return all(role_id in held for role_id in required)
    if logic == "none":
        return not any(role_id in held for role_id in required)

    logger.debug("Unknown role logic %r; treating as satisfied", cond.logic)
    return True  # fail-open


def _evaluate_tenure(cond: TenureCondition, ctx: EvaluationContext) -> bool:
    member = ctx.member
    if member is None:
        return False

    if cond.min_days_in_server is not None:
        joined_at = as_utc(member.joined_at)
        if joined_at is None:
            return False
        if (ctx.now - joined_at).days < cond.min_days_in_server:
            return False

    if cond.min_account_age_days is not None:
        created_at = as_utc(member.created_at)
        if created_at is None:
            return False
        if (ctx.now - created_at).days < cond.min_account_age_days:
            return False

    return True


def _evaluate_boost(cond: BoostCondition, ctx: EvaluationContext) -> bool:
    member = ctx.member
    if member is None:
        return False

    is_boosting = member.premium_since is not None
    if cond.requires_boost and not is_boosting:
        return False

    # Nitro tier is not exposed by the API: a per-guild avatar or a boost
    # implies the member has (or had) Nitro.
    if cond.requires_nitro and not (member.has_guild_avatar or is_boosting):
        return False

    return True


def _evaluate_permission(cond: PermissionCondition, ctx: EvaluationContext) -> bool:
    if not cond.permission_flags:
        return True  # fail-open: nothing configured
    if ctx.member is None:
        return False
    return (ctx.member.permissions & cond.permission_flags) == cond.permission_flags


def _evaluate_multiple(cond: MultipleConditions, ctx: EvaluationContext) -> bool:
    if not cond.clauses:
        return True  # fail-open: compound rule with no clauses

    ordered = sorted(cond.clauses, key=lambda c: c.group)  # stable: keeps stored order
    return any(
        _evaluate_group(list(clauses), ctx)
        for _, clauses in groupby(ordered, key=lambda c: c.group)
    )


def _evaluate_group(clauses: list[ConditionClause], ctx: EvaluationContext) -> bool:
    """Fold one group left-to-right.  A failing AND clause ends the group."""
    result: bool | None = None
    for clause in clauses:
        passed = evaluate(clause.condition, ctx)
        if clause.logic is LogicType.OR:
            result = passed if result is None else (result or passed)
        else:
            if not passed:
                return False
            result = True if result is None else result
    return bool(result)


# ---------------------------------------------------------------------------
# ORM → condition translation
# ---------------------------------------------------------------------------
def condition_from_question(
    question: FormQuestion,
    clauses: Iterable[FormQuestionCondition] = (),
) -> Condition:
    """Build the visibility rule configured on *question*.

    *clauses* are the question's :class:`FormQuestionCondition` rows in
    stored order; only consulted for ``MULTIPLE_CONDITIONS``.
    """
    try:
        kind = ConditionalType(question.conditional_type)
    except ValueError:
        logger.warning(
            "Question %s has unknown conditional type %r; showing it",
            question.id, question.conditional_type,
        )
        return QuestionCondition(parent_question_id=None)

    if kind is ConditionalType.QUESTION_BASED:
        return QuestionCondition(
            parent_question_id=question.conditional_parent_question_id,
            operator=question.conditional_operator or "equals",
            expected_value=question.conditional_expected_value or "",
        )
    if kind is ConditionalType.DISCORD_ROLE:
        return RoleCondition(
            role_ids=question.conditional_role_ids,
            logic=question.conditional_role_logic or "any",
        )
    if kind is ConditionalType.SERVER_TENURE:
        return TenureCondition(
            min_days_in_server=question.conditional_days_in_server,
            min_account_age_days=question.conditional_account_age_days,
        )
    if kind is ConditionalType.BOOST_STATUS:
        return BoostCondition(
            requires_boost=bool(question.conditional_requires_boost),
            requires_nitro=bool(question.conditional_requires_nitro),
        )
    if kind is ConditionalType.PERMISSION:
        return PermissionCondition(permission_flags=question.conditional_permission_flags)
    return MultipleConditions(
        clauses=tuple(clause_from_row(row) for row in clauses)
    )


def clause_from_row(row: FormQuestionCondition) -> ConditionClause:
    """Translate one stored clause of a compound rule."""
    logic = LogicType.OR if (row.logic_type or "").upper() == LogicType.OR else LogicType.AND
    return ConditionClause(
        group=row.condition_group or 0,
        logic=logic,
        condition=_single_condition_from_row(row),
    )


def _single_condition_from_row(row: FormQuestionCondition) -> SingleCondition:
    try:
        kind = ConditionalType(row.condition_type)
    except ValueError:
        kind = None

    if kind is ConditionalType.QUESTION_BASED:
        return QuestionCondition(
            parent_question_id=row.target_question_id,
            operator=row.operator or "equals",
            expected_value=row.expected_value or "",
        )
    if kind is ConditionalType.DISCORD_ROLE:
        return RoleCondition(role_ids=row.target_role_ids)
    if kind is ConditionalType.SERVER_TENURE:
        return TenureCondition(min_days_in_server=row.days_threshold)
    if kind is ConditionalType.BOOST_STATUS:
        return BoostCondition(
            requires_boost=bool(row.requires_boost),
            requires_nitro=bool(row.requires_nitro),
        )
    if kind is ConditionalType.PERMISSION:
        return PermissionCondition(permission_flags=row.permission_flags)

    # Nested compound clauses are not supported; the clause is neutral.
    logger.warning(
        "Condition %s has unsupported clause type %r; treating as satisfied",
        row.id, row.condition_type,
    )
    return QuestionCondition(parent_question_id=None)
