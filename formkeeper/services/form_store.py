"""
formkeeper.services.form_store — Form, Question & Share-Link Persistence
=========================================================================

Synchronous repository functions for form definitions.  Each call opens its
own short-lived session; returned ORM objects are refreshed and expunged so
callers can read their columns after the session closes (relationships are
not loaded; fetch children through the dedicated getters).

Async callers go through :func:`formkeeper.database.engine.run_db`.
"""

from __future__ import annotations

import logging
import random
import secrets
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from formkeeper.constants import SHARE_CODE_LENGTH, as_utc, random_code
from formkeeper.database.models import (
    Form,
    FormQuestion,
    FormQuestionCondition,
    FormQuestionOption,
    FormShareLink,
)
from formkeeper.exceptions import FormNotFoundError

logger = logging.getLogger(__name__)

_FORM_FROZEN_KEYS = ("id", "guild_id", "created_at", "updated_at")
_QUESTION_FROZEN_KEYS = ("id", "form_id", "created_at")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _detach(session: Session, obj: Any) -> Any:
    """Refresh *obj* and detach it from *session*."""
    session.refresh(obj)
    session.expunge(obj)
    return obj


def _detach_all(session: Session, rows: Iterable[Any]) -> list[Any]:
    rows = list(rows)
    for row in rows:
        session.expunge(row)
    return rows


def _apply_fields(obj: Any, fields: dict[str, Any], frozen_keys: tuple[str, ...]) -> None:
    for key, value in fields.items():
        if key in frozen_keys:
            continue
        if not hasattr(obj, key):
            logger.debug("Ignoring unknown field %r for %s", key, type(obj).__name__)
            continue
        setattr(obj, key, value)


def _column_values(obj: Any, *, exclude: tuple[str, ...]) -> dict[str, Any]:
    """Copy every mapped column of *obj* except those in *exclude*."""
    return {
        col.key: getattr(obj, col.key)
        for col in obj.__table__.columns
        if col.key not in exclude
    }


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------

def create_form(engine, *, guild_id: int, name: str, created_by: int = 0, **fields: Any) -> Form:
    """Insert a new form.  New forms always start as an inactive draft."""
    fields.pop("is_active", None)
    fields.pop("is_draft", None)
    with Session(engine, expire_on_commit=False) as session:
        form = Form(
            guild_id=guild_id,
            name=name,
            created_by=created_by,
            is_active=False,
            is_draft=True,
        )
        _apply_fields(form, fields, _FORM_FROZEN_KEYS)
        session.add(form)
        session.commit()
        logger.info("Created form %d %r for guild %d", form.id, form.name, guild_id)
        return _detach(session, form)


def get_form(engine, form_id: int, *, include_drafts: bool = True) -> Form | None:
    with Session(engine) as session:
        stmt = select(Form).where(Form.id == form_id)
        if not include_drafts:
            stmt = stmt.where(Form.is_draft.is_(False))
        form = session.scalar(stmt)
        if form is not None:
            session.expunge(form)
        return form


def get_guild_forms(engine, guild_id: int, *, active_only: bool = False) -> list[Form]:
    """All forms of a guild, newest first."""
    with Session(engine) as session:
        stmt = select(Form).where(Form.guild_id == guild_id)
        if active_only:
            stmt = stmt.where(Form.is_active.is_(True))
        stmt = stmt.order_by(Form.created_at.desc(), Form.id.desc())
        return _detach_all(session, session.scalars(stmt).all())


def update_form(engine, form_id: int, **fields: Any) -> Form | None:
    """Apply *fields* to a form.  Returns the updated form, or ``None``."""
    with Session(engine, expire_on_commit=False) as session:
        form = session.get(Form, form_id)
        if form is None:
            return None
        _apply_fields(form, fields, _FORM_FROZEN_KEYS)
        form.updated_at = datetime.now(UTC)
        session.commit()
        logger.info("Updated form %d %r", form.id, form.name)
        return _detach(session, form)


def delete_form(engine, form_id: int) -> bool:
    """Delete a form and everything hanging off it."""
    with Session(engine) as session:
        form = session.get(Form, form_id)
        if form is None:
            return False
        session.delete(form)
        session.commit()
    logger.info("Deleted form %d and all associated data", form_id)
    return True


def set_form_active(engine, form_id: int, is_active: bool) -> bool:
    with Session(engine) as session:
        result = session.execute(
            update(Form)
            .where(Form.id == form_id)
            .values(is_active=is_active, updated_at=datetime.now(UTC))
        )
        changed = result.rowcount
        session.commit()
    if changed:
        logger.info("Set form %d active status to %s", form_id, is_active)
    return changed > 0


def publish_form(engine, form_id: int) -> bool:
    """Clear the draft flag so the form can be reached publicly."""
    with Session(engine) as session:
        result = session.execute(
            update(Form)
            .where(Form.id == form_id)
            .values(is_draft=False, updated_at=datetime.now(UTC))
        )
        changed = result.rowcount
        session.commit()
    if changed:
        logger.info("Published form %d", form_id)
    return changed > 0


def duplicate_form(engine, form_id: int, *, created_by: int) -> Form:
    """Deep-copy a form with its questions, options and compound clauses.

    Question references (visibility parent, required-when parent, clause
    targets) are translated to the copied question ids; references to
    questions outside the source form are cleared.  The copy starts as an
    inactive draft named ``"<name> (Copy)"``.

    Raises
    ------
    FormNotFoundError
        If *form_id* does not exist.
    """
    with Session(engine, expire_on_commit=False) as session:
        source = session.get(Form, form_id)
        if source is None:
            raise FormNotFoundError(form_id)

        copy = Form(
            **_column_values(
                source,
                exclude=("id", "name", "is_active", "is_draft", "created_by",
                         "created_at", "updated_at"),
            ),
            name=f"{source.name} (Copy)",
            is_active=False,
            is_draft=True,
            created_by=created_by,
        )
        session.add(copy)
        session.flush()

        originals = session.scalars(
            select(FormQuestion)
            .where(FormQuestion.form_id == form_id)
            .order_by(FormQuestion.display_order, FormQuestion.id)
        ).all()

        id_map: dict[int, int] = {}
        copies: list[tuple[FormQuestion, FormQuestion]] = []
        for original in originals:
            question = FormQuestion(
                **_column_values(
                    original,
                    exclude=("id", "form_id", "created_at",
                             "conditional_parent_question_id",
                             "required_when_parent_question_id"),
                ),
                form_id=copy.id,
            )
            session.add(question)
            session.flush()
            id_map[original.id] = question.id
            copies.append((original, question))

            for option in original.options:
                session.add(FormQuestionOption(
                    **_column_values(option, exclude=("id", "question_id")),
                    question_id=question.id,
                ))

        # Second pass: every new id is known now.
        for original, question in copies:
            if original.conditional_parent_question_id is not None:
                question.conditional_parent_question_id = id_map.get(
                    original.conditional_parent_question_id
                )
            if original.required_when_parent_question_id is not None:
                question.required_when_parent_question_id = id_map.get(
                    original.required_when_parent_question_id
                )
            for clause in original.conditions:
                values = _column_values(
                    clause, exclude=("id", "question_id", "created_at", "target_question_id"),
                )
                target = clause.target_question_id
                session.add(FormQuestionCondition(
                    **values,
                    question_id=question.id,
                    target_question_id=id_map.get(target) if target is not None else None,
                ))

        session.commit()
        logger.info("Duplicated form %d to new form %d", form_id, copy.id)
        return _detach(session, copy)


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------

def add_question(engine, *, form_id: int, question_text: str, **fields: Any) -> FormQuestion:
    with Session(engine, expire_on_commit=False) as session:
        question = FormQuestion(form_id=form_id, question_text=question_text)
        _apply_fields(question, fields, _QUESTION_FROZEN_KEYS)
        session.add(question)
        session.commit()
        logger.info("Added question %d to form %d", question.id, form_id)
        return _detach(session, question)


def get_question(engine, question_id: int) -> FormQuestion | None:
    with Session(engine) as session:
        question = session.get(FormQuestion, question_id)
        if question is not None:
            session.expunge(question)
        return question


def update_question(engine, question_id: int, **fields: Any) -> FormQuestion | None:
    with Session(engine, expire_on_commit=False) as session:
        question = session.get(FormQuestion, question_id)
        if question is None:
            return None
        _apply_fields(question, fields, _QUESTION_FROZEN_KEYS)
        session.commit()
        logger.info("Updated question %d", question_id)
        return _detach(session, question)


def delete_question(engine, question_id: int) -> bool:
    with Session(engine) as session:
        question = session.get(FormQuestion, question_id)
        if question is None:
            return False
        session.delete(question)
        session.commit()
    logger.info("Deleted question %d", question_id)
    return True


def get_form_questions(engine, form_id: int) -> list[FormQuestion]:
    """Questions of a form in display order."""
    with Session(engine) as session:
        rows = session.scalars(
            select(FormQuestion)
            .where(FormQuestion.form_id == form_id)
            .order_by(FormQuestion.display_order, FormQuestion.id)
        ).all()
        return _detach_all(session, rows)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

def add_question_option(
    engine,
    *,
    question_id: int,
    option_text: str,
    option_value: str | None = None,
    display_order: int = 0,
) -> FormQuestionOption:
    """Add a choice.  ``option_value`` defaults to the display text."""
    with Session(engine, expire_on_commit=False) as session:
        option = FormQuestionOption(
            question_id=question_id,
            option_text=option_text,
            option_value=option_value or option_text,
            display_order=display_order,
        )
        session.add(option)
        session.commit()
        return _detach(session, option)


def get_question_options(engine, question_id: int) -> list[FormQuestionOption]:
    with Session(engine) as session:
        rows = session.scalars(
            select(FormQuestionOption)
            .where(FormQuestionOption.question_id == question_id)
            .order_by(FormQuestionOption.display_order, FormQuestionOption.id)
        ).all()
        return _detach_all(session, rows)


def delete_question_options(engine, question_id: int) -> int:
    """Remove every option of a question.  Returns the number deleted."""
    with Session(engine) as session:
        result = session.execute(
            delete(FormQuestionOption).where(FormQuestionOption.question_id == question_id)
        )
        changed = result.rowcount
        session.commit()
    return changed


# ---------------------------------------------------------------------------
# Compound-rule clauses
# ---------------------------------------------------------------------------

def add_question_condition(engine, *, question_id: int, **fields: Any) -> FormQuestionCondition:
    with Session(engine, expire_on_commit=False) as session:
        clause = FormQuestionCondition(question_id=question_id)
        _apply_fields(clause, fields, ("id", "question_id", "created_at"))
        session.add(clause)
        session.commit()
        logger.info(
            "Added condition %d (group %d) to question %d",
            clause.id, clause.condition_group, question_id,
        )
        return _detach(session, clause)


def get_question_conditions(engine, question_id: int) -> list[FormQuestionCondition]:
    """Clauses of one question in stored order."""
    with Session(engine) as session:
        rows = session.scalars(
            select(FormQuestionCondition)
            .where(FormQuestionCondition.question_id == question_id)
            .order_by(FormQuestionCondition.id)
        ).all()
        return _detach_all(session, rows)


def get_conditions_for_questions(
    engine, question_ids: Iterable[int],
) -> dict[int, list[FormQuestionCondition]]:
    """Clauses for many questions at once, keyed by question id."""
    ids = list(question_ids)
    if not ids:
        return {}
    with Session(engine) as session:
        rows = session.scalars(
            select(FormQuestionCondition)
            .where(FormQuestionCondition.question_id.in_(ids))
            .order_by(FormQuestionCondition.id)
        ).all()
        grouped: dict[int, list[FormQuestionCondition]] = {}
        for row in _detach_all(session, rows):
            grouped.setdefault(row.question_id, []).append(row)
        return grouped


def delete_condition(engine, condition_id: int) -> bool:
    with Session(engine) as session:
        result = session.execute(
            delete(FormQuestionCondition).where(FormQuestionCondition.id == condition_id)
        )
        changed = result.rowcount
        session.commit()
    return changed > 0


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------

def generate_share_link(
    engine,
    form_id: int,
    instance_identifier: str,
    *,
    rng: random.Random | None = None,
) -> str:
    """Return the active share code for (form, instance), creating one if needed."""
    rng = rng or secrets.SystemRandom()
    with Session(engine) as session:
        existing = session.scalar(
            select(FormShareLink).where(
                FormShareLink.form_id == form_id,
                FormShareLink.instance_identifier == instance_identifier,
                FormShareLink.is_active.is_(True),
            )
        )
        if existing is not None:
            return existing.share_code

        code = random_code(rng, SHARE_CODE_LENGTH)
        while session.scalar(
            select(FormShareLink.id).where(FormShareLink.share_code == code)
        ) is not None:
            code = random_code(rng, SHARE_CODE_LENGTH)

        session.add(FormShareLink(
            share_code=code,
            form_id=form_id,
            instance_identifier=instance_identifier,
            is_active=True,
        ))
        session.commit()

    logger.info("Generated share link %s for form %d", code, form_id)
    return code


def resolve_share_link(
    engine,
    share_code: str,
    *,
    now: datetime | None = None,
) -> tuple[int, str] | None:
    """Map an active share code to ``(form_id, instance_identifier)``.

    An expired link is deactivated on lookup and resolves to ``None``.
    """
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        link = session.scalar(
            select(FormShareLink).where(
                FormShareLink.share_code == share_code,
                FormShareLink.is_active.is_(True),
            )
        )
        if link is None:
            return None

        expires_at = as_utc(link.expires_at)
        if expires_at is not None and now > expires_at:
            link.is_active = False
            session.commit()
            logger.info("Share link %s expired; deactivated", share_code)
            return None

        return link.form_id, link.instance_identifier
