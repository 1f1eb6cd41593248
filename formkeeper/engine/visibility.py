"""
formkeeper.engine.visibility — Question Visibility & Requiredness
==================================================================

Decides, per question, whether it is shown and whether it must be answered.
The two are independent: a question may be visible-but-optional,
required-but-always-visible, or gated on both.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING

from formkeeper.engine.conditions import (
    EvaluationContext,
    QuestionCondition,
    condition_from_question,
    evaluate,
)

if TYPE_CHECKING:
    from formkeeper.database.models import FormQuestion, FormQuestionCondition


def should_show_question(
    question: FormQuestion,
    ctx: EvaluationContext,
    clauses: Iterable[FormQuestionCondition] = (),
) -> bool:
    """Return whether *question* is visible given *ctx*.

    *clauses* must hold the question's compound-rule rows when its
    conditional type is ``MULTIPLE_CONDITIONS``.
    """
    return evaluate(condition_from_question(question, clauses), ctx)


def is_question_required(question: FormQuestion, ctx: EvaluationContext) -> bool:
    """Return whether *question* must be answered given *ctx*.

    The static ``is_required`` flag wins.  Otherwise a configured
    required-when rule is evaluated like a question-based condition, so an
    unanswered parent leaves the question optional.
    """
    if question.is_required:
        return True
    if question.required_when_parent_question_id is None:
        return False
    rule = QuestionCondition(
        parent_question_id=question.required_when_parent_question_id,
        operator=question.required_when_operator or "equals",
        expected_value=question.required_when_value or "",
    )
    return evaluate(rule, ctx)


def visible_questions(
    questions: Sequence[FormQuestion],
    ctx: EvaluationContext,
    clauses_by_question: Mapping[int, Sequence[FormQuestionCondition]] | None = None,
) -> list[FormQuestion]:
    """Filter *questions* down to those currently shown, preserving order."""
    clauses_by_question = clauses_by_question or {}
    return [
        q for q in questions
        if should_show_question(q, ctx, clauses_by_question.get(q.id, ()))
    ]


def missing_required_answers(
    questions: Sequence[FormQuestion],
    ctx: EvaluationContext,
    clauses_by_question: Mapping[int, Sequence[FormQuestionCondition]] | None = None,
) -> list[FormQuestion]:
    """Visible, required questions without a non-blank answer in *ctx*."""
    missing = []
    for question in visible_questions(questions, ctx, clauses_by_question):
        if not is_question_required(question, ctx):
            continue
        answer = ctx.answers.get(question.id)
        if answer is None:
            missing.append(question)
        elif isinstance(answer, (list, tuple)):
            if not any(str(v).strip() for v in answer):
                missing.append(question)
        elif not str(answer).strip():
            missing.append(question)
    return missing
