"""
formkeeper.services.response_store — Submission Persistence
============================================================

Stores responses and their answers, lists them for review, and exports a
form's responses as CSV.

Anonymity rule: when the owning form has ``allow_anonymous`` set, the
submitter's user id, username and IP address are **never** written.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from formkeeper.database.models import Form, FormAnswer, FormQuestion, FormResponse

logger = logging.getLogger(__name__)

CSV_FIXED_COLUMNS = ("Response ID", "User ID", "Username", "Submitted At")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def submit_response(
    engine,
    *,
    form_id: int,
    user_id: int | None,
    username: str | None,
    answers: Mapping[int, Any],
    ip_address: str | None = None,
) -> FormResponse | None:
    """Persist one submission and its answers.

    List answers (checkboxes) go to ``answer_values``; everything else is
    stored as text.  Returns ``None`` if the form does not exist.
    """
    with Session(engine, expire_on_commit=False) as session:
        form = session.get(Form, form_id)
        if form is None:
            logger.warning("Submission for unknown form %d dropped", form_id)
            return None

        anonymous = form.allow_anonymous
        response = FormResponse(
            form_id=form_id,
            user_id=None if anonymous else user_id,
            username=None if anonymous else username,
            ip_address=None if anonymous else ip_address,
        )
        session.add(response)
        session.flush()

        for question_id, value in answers.items():
            answer = FormAnswer(response_id=response.id, question_id=int(question_id))
            if isinstance(value, (list, tuple)):
                answer.answer_values = [str(v) for v in value]
            else:
                answer.answer_text = None if value is None else str(value)
            session.add(answer)

        session.commit()
        session.refresh(response)
        session.expunge(response)

    logger.info(
        "User %s submitted response %d to form %d",
        "anonymous" if anonymous else user_id, response.id, form_id,
    )
    return response


def delete_response(engine, response_id: int) -> bool:
    with Session(engine) as session:
        response = session.get(FormResponse, response_id)
        if response is None:
            return False
        session.delete(response)
        session.commit()
    logger.info("Deleted response %d", response_id)
    return True


def set_response_message_id(engine, response_id: int, message_id: int) -> bool:
    """Remember the Discord message a submission was logged to."""
    with Session(engine) as session:
        result = session.execute(
            update(FormResponse)
            .where(FormResponse.id == response_id)
            .values(message_id=message_id)
        )
        changed = result.rowcount
        session.commit()
    return changed > 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_form_responses(
    engine, form_id: int, *, page: int = 1, page_size: int = 50,
) -> list[FormResponse]:
    """One page of a form's responses, newest first.  Pages are 1-indexed."""
    page = max(page, 1)
    with Session(engine) as session:
        rows = session.scalars(
            select(FormResponse)
            .where(FormResponse.form_id == form_id)
            .order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)


def get_response(engine, response_id: int) -> FormResponse | None:
    with Session(engine) as session:
        response = session.get(FormResponse, response_id)
        if response is not None:
            session.expunge(response)
        return response


def get_response_answers(engine, response_id: int) -> list[FormAnswer]:
    with Session(engine) as session:
        rows = session.scalars(
            select(FormAnswer)
            .where(FormAnswer.response_id == response_id)
            .order_by(FormAnswer.id)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)


def get_response_count(engine, form_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count(FormResponse.id)).where(FormResponse.form_id == form_id)
        ) or 0


def has_user_submitted(engine, form_id: int, user_id: int) -> bool:
    with Session(engine) as session:
        return session.scalar(
            select(FormResponse.id)
            .where(FormResponse.form_id == form_id, FormResponse.user_id == user_id)
            .limit(1)
        ) is not None


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_responses_csv(engine, form_id: int) -> str | None:
    """Render every response of a form as CSV, newest first.

    One column per question in display order; multi-select answers are
    joined with ``"; "``.  Returns ``None`` if the form does not exist.
    """
    with Session(engine) as session:
        if session.get(Form, form_id) is None:
            return None

        questions = session.scalars(
            select(FormQuestion)
            .where(FormQuestion.form_id == form_id)
            .order_by(FormQuestion.display_order, FormQuestion.id)
        ).all()
        responses = session.scalars(
            select(FormResponse)
            .where(FormResponse.form_id == form_id)
            .order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc())
        ).all()

        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow([*CSV_FIXED_COLUMNS, *(q.question_text for q in questions)])

        for response in responses:
            by_question = {a.question_id: a for a in response.answers}
            row = [
                response.id,
                response.user_id if response.user_id is not None else "",
                response.username or "",
                response.submitted_at.strftime("%Y-%m-%d %H:%M:%S") if response.submitted_at else "",
            ]
            for question in questions:
                answer = by_question.get(question.id)
                if answer is None:
                    row.append("")
                elif answer.answer_values:
                    row.append("; ".join(answer.answer_values))
                else:
                    row.append(answer.answer_text or "")
            writer.writerow(row)

    return buf.getvalue()
