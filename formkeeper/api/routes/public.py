"""
formkeeper.api.routes.public — Submitter-facing endpoints
==========================================================

Share-link resolution and status checks need no auth; rendering and
submitting a form need a signed-in user token (``sub`` = Discord user id).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from formkeeper.api.deps import get_current_user, get_forms_service
from formkeeper.api.serializers import public_form_dict, question_dict, workflow_dict
from formkeeper.constants import CHOICE_QUESTION_TYPES
from formkeeper.services.forms_service import FormsService

router = APIRouter(prefix="/forms", tags=["public"])
logger = logging.getLogger(__name__)


class AnswersBody(BaseModel):
    answers: dict[int, str | list[str] | None] = {}


class SubmissionBody(AnswersBody):
    captcha_token: str | None = None
    username: str | None = None


async def _require_published(forms: FormsService, form_id: int):
    form = await forms.get_form(form_id, include_drafts=False)
    if form is None:
        raise HTTPException(404, "Form not found")
    return form


@router.get("/share/{share_code}")
async def resolve_share_link(
    share_code: str,
    forms: FormsService = Depends(get_forms_service),
):
    resolved = await forms.resolve_share_link(share_code)
    if resolved is None:
        raise HTTPException(404, "Share link not found or expired")
    form_id, instance = resolved
    form = await _require_published(forms, form_id)
    return {"instance_identifier": instance, "form": public_form_dict(form)}


@router.get("/status/{token}")
async def get_response_status(
    token: str,
    forms: FormsService = Depends(get_forms_service),
):
    workflow = await forms.get_workflow_by_token(token)
    if workflow is None:
        raise HTTPException(404, "Status not found")
    return {"response_id": workflow.response_id, **workflow_dict(workflow)}


@router.post("/{form_id}/render")
async def render_form(
    form_id: int,
    body: AnswersBody,
    user: dict = Depends(get_current_user),
    forms: FormsService = Depends(get_forms_service),
):
    """Questions visible to the caller given the answers entered so far."""
    form = await _require_published(forms, form_id)
    user_id = int(user["sub"])
    questions = await forms.get_visible_questions(form_id, user_id, body.answers)
    ctx = forms.build_context(form.guild_id, user_id, body.answers)

    rendered = []
    for question in questions:
        options = (
            await forms.get_question_options(question.id)
            if question.question_type in CHOICE_QUESTION_TYPES else []
        )
        data = question_dict(question, options)
        data["is_required"] = forms.is_question_required(question, ctx)
        rendered.append(data)
    return {"form": public_form_dict(form), "questions": rendered}


@router.post("/{form_id}/submit", status_code=201)
async def submit_form(
    form_id: int,
    body: SubmissionBody,
    request: Request,
    user: dict = Depends(get_current_user),
    forms: FormsService = Depends(get_forms_service),
):
    form = await _require_published(forms, form_id)
    result = await forms.submit(
        form_id,
        int(user["sub"]),
        body.username or user.get("username"),
        body.answers,
        ip_address=request.client.host if request.client else None,
        captcha_token=body.captcha_token,
    )
    if not result.ok:
        raise HTTPException(400, result.reason or "Submission rejected")
    return {
        "response_id": result.response_id,
        "status_token": result.status_token,
        "success_message": form.success_message,
    }
