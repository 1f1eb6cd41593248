"""
formkeeper.services.workflow_store — Review Workflow Persistence
=================================================================

Rows backing the response review state machine::

    Pending ──► UnderReview ──► Approved
        │            │
        └────────────┴────────► Rejected

Approved and Rejected are terminal.  :func:`claim_transition` moves a
workflow into a terminal state with a single conditional ``UPDATE``; the
caller applies side effects only when it won the claim, so two reviewers
approving the same response at once cannot both trigger an unban or invite.
"""

from __future__ import annotations

import logging
import random
import secrets
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from formkeeper.constants import STATUS_TOKEN_LENGTH, parse_id_list, random_code
from formkeeper.database.models import (
    FormResponse,
    FormResponseWorkflow,
    ResponseStatus,
    UserRoleState,
    WorkflowAction,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ResponseStatus.PENDING, ResponseStatus.UNDER_REVIEW)


# ---------------------------------------------------------------------------
# Creation & lookup
# ---------------------------------------------------------------------------

def create_workflow_for_response(
    engine,
    response_id: int,
    *,
    rng: random.Random | None = None,
) -> FormResponseWorkflow | None:
    """Return the workflow of a response, creating a Pending one if absent.

    New workflows get a unique 32-character status-check token.  Returns
    ``None`` if the response does not exist.
    """
    rng = rng or secrets.SystemRandom()
    with Session(engine, expire_on_commit=False) as session:
        existing = session.scalar(
            select(FormResponseWorkflow).where(FormResponseWorkflow.response_id == response_id)
        )
        if existing is not None:
            logger.info("Workflow already exists for response %d, returning existing", response_id)
            session.expunge(existing)
            return existing

        if session.get(FormResponse, response_id) is None:
            return None

        token = random_code(rng, STATUS_TOKEN_LENGTH)
        while session.scalar(
            select(FormResponseWorkflow.id).where(FormResponseWorkflow.status_check_token == token)
        ) is not None:
            token = random_code(rng, STATUS_TOKEN_LENGTH)

        workflow = FormResponseWorkflow(
            response_id=response_id,
            status=ResponseStatus.PENDING,
            action_taken=WorkflowAction.NONE,
            status_check_token=token,
        )
        session.add(workflow)
        session.commit()
        session.refresh(workflow)
        session.expunge(workflow)

    logger.info("Created workflow %d for response %d", workflow.id, response_id)
    return workflow


def get_workflow_by_response_id(engine, response_id: int) -> FormResponseWorkflow | None:
    with Session(engine) as session:
        workflow = session.scalar(
            select(FormResponseWorkflow).where(FormResponseWorkflow.response_id == response_id)
        )
        if workflow is not None:
            session.expunge(workflow)
        return workflow


def get_workflow_by_token(engine, token: str) -> FormResponseWorkflow | None:
    with Session(engine) as session:
        workflow = session.scalar(
            select(FormResponseWorkflow).where(FormResponseWorkflow.status_check_token == token)
        )
        if workflow is not None:
            session.expunge(workflow)
        return workflow


def get_pending_responses(
    engine,
    form_id: int,
    status: ResponseStatus | None = None,
) -> list[FormResponse]:
    """Responses of a form awaiting review, oldest first.

    With *status* ``None`` both Pending and UnderReview are included.
    """
    statuses = (status,) if status is not None else OPEN_STATUSES
    with Session(engine) as session:
        rows = session.scalars(
            select(FormResponse)
            .join(FormResponseWorkflow, FormResponseWorkflow.response_id == FormResponse.id)
            .where(
                FormResponse.form_id == form_id,
                FormResponseWorkflow.status.in_([int(s) for s in statuses]),
            )
            .order_by(FormResponse.submitted_at, FormResponse.id)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def claim_transition(
    engine,
    response_id: int,
    new_status: ResponseStatus,
    *,
    reviewer_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Move an open workflow to *new_status*.

    Returns ``True`` only for the caller whose ``UPDATE`` changed the row.
    A missing or already-decided workflow returns ``False``.
    """
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        result = session.execute(
            update(FormResponseWorkflow)
            .where(
                FormResponseWorkflow.response_id == response_id,
                FormResponseWorkflow.status.in_([int(s) for s in OPEN_STATUSES]),
            )
            .values(
                status=int(new_status),
                reviewed_by=reviewer_id,
                reviewed_at=now,
                review_notes=notes,
                updated_at=now,
            )
        )
        changed = result.rowcount
        session.commit()

    if changed != 1:
        logger.info(
            "Response %d not moved to %s: workflow missing or already decided",
            response_id, new_status.name,
        )
        return False
    return True


def record_outcome(
    engine,
    response_id: int,
    action_taken: WorkflowAction,
    *,
    invite_code: str | None = None,
    invite_expires_at: datetime | None = None,
) -> None:
    """Store the side effects a decided workflow produced."""
    values: dict = {"action_taken": int(action_taken), "updated_at": datetime.now(UTC)}
    if invite_code is not None:
        values["invite_code"] = invite_code
        values["invite_expires_at"] = invite_expires_at
    with Session(engine) as session:
        session.execute(
            update(FormResponseWorkflow)
            .where(FormResponseWorkflow.response_id == response_id)
            .values(**values)
        )
        session.commit()


# ---------------------------------------------------------------------------
# Saved roles for members who have not joined yet
# ---------------------------------------------------------------------------

def merge_saved_roles(
    engine,
    *,
    guild_id: int,
    user_id: int,
    role_ids: Iterable[int],
    user_name: str | None = None,
) -> list[int]:
    """Union *role_ids* into the saved-roles record of (guild, user).

    Existing ids keep their order; new ids are appended once.  Returns the
    merged list.
    """
    with Session(engine) as session:
        state = session.scalar(
            select(UserRoleState).where(
                UserRoleState.guild_id == guild_id,
                UserRoleState.user_id == user_id,
            )
        )
        if state is None:
            state = UserRoleState(guild_id=guild_id, user_id=user_id, user_name=user_name)
            session.add(state)
            merged: list[int] = []
        else:
            try:
                merged = parse_id_list(state.saved_roles)
            except ValueError:
                logger.warning(
                    "Discarding malformed saved roles %r for user %d in guild %d",
                    state.saved_roles, user_id, guild_id,
                )
                merged = []

        for role_id in role_ids:
            if role_id not in merged:
                merged.append(role_id)

        state.saved_roles = ",".join(str(r) for r in merged)
        if user_name:
            state.user_name = user_name
        session.commit()

    logger.info("Saved %d role(s) for user %d in guild %d", len(merged), user_id, guild_id)
    return merged
