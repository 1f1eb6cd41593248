"""
formkeeper.api.routes.forms — Form builder, responses & review (admin)
=======================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from formkeeper.api.deps import get_current_admin, get_forms_service
from formkeeper.api.serializers import (
    QUESTION_FIELDS,
    condition_dict,
    form_dict,
    option_dict,
    question_dict,
    response_dict,
)
from formkeeper.database.models import ResponseStatus
from formkeeper.engine.validator import (
    validate_form,
    validate_question,
    validate_question_options,
)
from formkeeper.exceptions import FormNotFoundError
from formkeeper.services.forms_service import FormsService

router = APIRouter(prefix="/forms", tags=["forms"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class FormCreate(BaseModel):
    name: str
    description: str | None = None
    submit_channel_id: int | None = None
    allow_multiple_submissions: bool = False
    allow_anonymous: bool = False
    require_approval: bool = False
    allow_external_users: bool = False
    require_captcha: bool = False
    max_responses: int | None = None
    expires_at: datetime | None = None
    required_role_id: int | None = None
    form_type: int = 0
    auto_approve_role_ids: str | None = None
    approval_action_type: int = 0
    approval_role_ids: str | None = None
    rejection_action_type: int = 0
    rejection_role_ids: str | None = None
    invite_max_age: int | None = None
    invite_max_uses: int | None = None
    success_message: str | None = None
    notification_webhook_url: str | None = None


class FormUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    submit_channel_id: int | None = None
    allow_multiple_submissions: bool | None = None
    allow_anonymous: bool | None = None
    require_approval: bool | None = None
    allow_external_users: bool | None = None
    require_captcha: bool | None = None
    max_responses: int | None = None
    expires_at: datetime | None = None
    required_role_id: int | None = None
    form_type: int | None = None
    auto_approve_role_ids: str | None = None
    approval_action_type: int | None = None
    approval_role_ids: str | None = None
    rejection_action_type: int | None = None
    rejection_role_ids: str | None = None
    invite_max_age: int | None = None
    invite_max_uses: int | None = None
    success_message: str | None = None
    notification_webhook_url: str | None = None


# Columns an explicit null cannot clear.
_NOT_NULL_FORM_FIELDS = frozenset({
    "name",
    "allow_multiple_submissions",
    "allow_anonymous",
    "require_approval",
    "allow_external_users",
    "require_captcha",
    "form_type",
    "approval_action_type",
    "rejection_action_type",
})
_NOT_NULL_QUESTION_FIELDS = frozenset({
    "question_text",
    "question_type",
    "is_required",
    "display_order",
    "conditional_type",
    "enable_answer_piping",
})


class OptionCreate(BaseModel):
    option_text: str
    option_value: str | None = None
    display_order: int | None = None


class QuestionCreate(BaseModel):
    question_text: str
    question_type: str = "short_text"
    is_required: bool = False
    display_order: int = 0
    placeholder: str | None = None
    min_value: int | None = None
    max_value: int | None = None
    min_length: int | None = None
    max_length: int | None = None
    conditional_type: int = 0
    conditional_parent_question_id: int | None = None
    conditional_operator: str | None = None
    conditional_expected_value: str | None = None
    conditional_role_ids: str | None = None
    conditional_role_logic: str | None = None
    conditional_days_in_server: int | None = None
    conditional_account_age_days: int | None = None
    conditional_requires_boost: bool | None = None
    conditional_requires_nitro: bool | None = None
    conditional_permission_flags: int | None = None
    required_when_parent_question_id: int | None = None
    required_when_operator: str | None = None
    required_when_value: str | None = None
    enable_answer_piping: bool = False
    options: list[OptionCreate] = []


class QuestionUpdate(BaseModel):
    question_text: str | None = None
    question_type: str | None = None
    is_required: bool | None = None
    display_order: int | None = None
    placeholder: str | None = None
    min_value: int | None = None
    max_value: int | None = None
    min_length: int | None = None
    max_length: int | None = None
    conditional_type: int | None = None
    conditional_parent_question_id: int | None = None
    conditional_operator: str | None = None
    conditional_expected_value: str | None = None
    conditional_role_ids: str | None = None
    conditional_role_logic: str | None = None
    conditional_days_in_server: int | None = None
    conditional_account_age_days: int | None = None
    conditional_requires_boost: bool | None = None
    conditional_requires_nitro: bool | None = None
    conditional_permission_flags: int | None = None
    required_when_parent_question_id: int | None = None
    required_when_operator: str | None = None
    required_when_value: str | None = None
    enable_answer_piping: bool | None = None
    options: list[OptionCreate] | None = None


class ConditionCreate(BaseModel):
    condition_group: int = 0
    condition_type: int = 0
    target_question_id: int | None = None
    operator: str | None = None
    expected_value: str | None = None
    target_role_ids: str | None = None
    days_threshold: int | None = None
    requires_boost: bool | None = None
    requires_nitro: bool | None = None
    permission_flags: int | None = None
    logic_type: Literal["AND", "OR"] = "AND"


class ActiveBody(BaseModel):
    is_active: bool


class ShareLinkBody(BaseModel):
    instance_identifier: str | None = None


class EligibilityBody(BaseModel):
    user_id: int


class ReviewBody(BaseModel):
    notes: str | None = None


def _raise_invalid(errors: list[str]) -> None:
    if errors:
        raise HTTPException(400, "; ".join(errors))


def _changed_fields(body: BaseModel, not_null: frozenset[str], **dump: Any) -> dict[str, Any]:
    """Fields the client sent.  An explicit null clears a nullable column."""
    fields = body.model_dump(exclude_unset=True, **dump)
    uncleared = sorted(k for k, v in fields.items() if v is None and k in not_null)
    if uncleared:
        raise HTTPException(400, f"Cannot clear {', '.join(uncleared)}")
    return fields


async def _require_form(forms: FormsService, form_id: int):
    form = await forms.get_form(form_id)
    if form is None:
        raise HTTPException(404, "Form not found")
    return form


async def _add_options(forms: FormsService, question_id: int, options: list[OptionCreate]) -> None:
    for index, option in enumerate(options):
        await forms.add_question_option(
            question_id,
            option.option_text,
            option.option_value,
            index if option.display_order is None else option.display_order,
        )


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------
@router.get("/guild/{guild_id}")
async def list_guild_forms(
    guild_id: int,
    active_only: bool = False,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    rows = await forms.get_guild_forms(guild_id, active_only=active_only)
    return {"forms": [form_dict(f) for f in rows]}


@router.post("/guild/{guild_id}", status_code=201)
async def create_form(
    guild_id: int,
    body: FormCreate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    fields = body.model_dump(exclude_none=True)
    _raise_invalid(validate_form(fields))
    name = fields.pop("name")
    form = await forms.create_form(guild_id, name, created_by=int(admin["sub"]), **fields)
    logger.info("Form %d created in guild %d by %s", form.id, guild_id, admin["sub"])
    return form_dict(form)


@router.get("/{form_id}")
async def get_form(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    form = await _require_form(forms, form_id)
    data = form_dict(form)
    data["response_count"] = await forms.get_response_count(form_id)
    return data


@router.put("/{form_id}")
async def update_form(
    form_id: int,
    body: FormUpdate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    kwargs = _changed_fields(body, _NOT_NULL_FORM_FIELDS)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    form = await _require_form(forms, form_id)
    _raise_invalid(validate_form({
        "name": form.name, "max_responses": form.max_responses, **kwargs,
    }))
    updated = await forms.update_form(form_id, **kwargs)
    if updated is None:
        raise HTTPException(404, "Form not found")
    return form_dict(updated)


@router.delete("/{form_id}", status_code=204)
async def delete_form(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.delete_form(form_id):
        raise HTTPException(404, "Form not found")
    logger.info("Form %d deleted by %s", form_id, admin["sub"])
    return None


@router.patch("/{form_id}/active")
async def set_form_active(
    form_id: int,
    body: ActiveBody,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.set_form_active(form_id, body.is_active):
        raise HTTPException(404, "Form not found")
    return {"id": form_id, "is_active": body.is_active}


@router.post("/{form_id}/publish")
async def publish_form(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.publish_form(form_id):
        raise HTTPException(404, "Form not found")
    return {"id": form_id, "is_draft": False}


@router.post("/{form_id}/duplicate", status_code=201)
async def duplicate_form(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    try:
        copy = await forms.duplicate_form(form_id, created_by=int(admin["sub"]))
    except FormNotFoundError:
        raise HTTPException(404, "Form not found")
    return form_dict(copy)


@router.post("/{form_id}/share-link")
async def create_share_link(
    form_id: int,
    body: ShareLinkBody | None = None,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    instance = body.instance_identifier if body else None
    code = await forms.generate_share_link(form_id, instance)
    return {"form_id": form_id, "share_code": code}


@router.post("/{form_id}/check-eligibility")
async def check_eligibility(
    form_id: int,
    body: EligibilityBody,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    eligible, reason = await forms.check_form_eligibility(form_id, body.user_id)
    can_submit, submit_reason = await forms.can_user_submit(form_id, body.user_id)
    return {
        "eligible": eligible,
        "reason": reason,
        "can_submit": can_submit,
        "submit_reason": submit_reason,
    }


# ---------------------------------------------------------------------------
# Questions, options & conditions
# ---------------------------------------------------------------------------
@router.get("/{form_id}/questions")
async def list_questions(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    questions = await forms.get_form_questions(form_id)
    return {
        "questions": [
            question_dict(
                q,
                await forms.get_question_options(q.id),
                await forms.get_question_conditions(q.id),
            )
            for q in questions
        ]
    }


@router.post("/{form_id}/questions", status_code=201)
async def create_question(
    form_id: int,
    body: QuestionCreate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    fields = body.model_dump(exclude={"options"}, exclude_none=True)
    _raise_invalid(
        validate_question(fields)
        + validate_question_options(body.question_type, [o.model_dump() for o in body.options])
    )
    question_text = fields.pop("question_text")
    question = await forms.add_question(form_id, question_text, **fields)
    await _add_options(forms, question.id, body.options)
    return question_dict(question, await forms.get_question_options(question.id), [])


@router.put("/questions/{question_id}")
async def update_question(
    question_id: int,
    body: QuestionUpdate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    kwargs = _changed_fields(body, _NOT_NULL_QUESTION_FIELDS, exclude={"options"})
    if not kwargs and body.options is None:
        raise HTTPException(400, "No fields to update")
    question = await forms.get_question(question_id)
    if question is None:
        raise HTTPException(404, "Question not found")

    merged = {name: getattr(question, name) for name in QUESTION_FIELDS} | kwargs
    if body.options is not None:
        options = [o.model_dump() for o in body.options]
    else:
        options = [
            {"option_text": o.option_text, "option_value": o.option_value}
            for o in await forms.get_question_options(question_id)
        ]
    _raise_invalid(
        validate_question(merged) + validate_question_options(merged["question_type"], options)
    )

    if kwargs:
        question = await forms.update_question(question_id, **kwargs)
        if question is None:
            raise HTTPException(404, "Question not found")
    if body.options is not None:
        await forms.delete_question_options(question_id)
        await _add_options(forms, question_id, body.options)
    return question_dict(question, await forms.get_question_options(question_id))


@router.delete("/questions/{question_id}", status_code=204)
async def delete_question(
    question_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.delete_question(question_id):
        raise HTTPException(404, "Question not found")
    return None


@router.post("/questions/{question_id}/options", status_code=201)
async def add_option(
    question_id: int,
    body: OptionCreate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if await forms.get_question(question_id) is None:
        raise HTTPException(404, "Question not found")
    existing = await forms.get_question_options(question_id)
    _raise_invalid(validate_question_options(
        "dropdown",
        [{"option_text": o.option_text, "option_value": o.option_value} for o in existing]
        + [{"option_text": body.option_text, "option_value": body.option_value or body.option_text}],
    ))
    option = await forms.add_question_option(
        question_id,
        body.option_text,
        body.option_value,
        len(existing) if body.display_order is None else body.display_order,
    )
    return option_dict(option)


@router.get("/questions/{question_id}/conditions")
async def list_conditions(
    question_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if await forms.get_question(question_id) is None:
        raise HTTPException(404, "Question not found")
    clauses = await forms.get_question_conditions(question_id)
    return {"conditions": [condition_dict(c) for c in clauses]}


@router.post("/questions/{question_id}/conditions", status_code=201)
async def add_condition(
    question_id: int,
    body: ConditionCreate,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if await forms.get_question(question_id) is None:
        raise HTTPException(404, "Question not found")
    clause = await forms.add_question_condition(question_id, **body.model_dump(exclude_none=True))
    return condition_dict(clause)


@router.delete("/conditions/{condition_id}", status_code=204)
async def delete_condition(
    condition_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.delete_condition(condition_id):
        raise HTTPException(404, "Condition not found")
    return None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
@router.get("/{form_id}/responses")
async def list_responses(
    form_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    rows = await forms.get_form_responses(form_id, page=page, page_size=page_size)
    return {
        "responses": [response_dict(r) for r in rows],
        "total": await forms.get_response_count(form_id),
        "page": page,
        "page_size": page_size,
    }


@router.get("/{form_id}/responses/export")
async def export_responses(
    form_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    content = await forms.export_responses_csv(form_id)
    if content is None:
        raise HTTPException(404, "Form not found")
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="form-{form_id}-responses.csv"'},
    )


@router.get("/{form_id}/responses/pending")
async def list_pending_responses(
    form_id: int,
    status: int | None = None,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    await _require_form(forms, form_id)
    try:
        wanted = ResponseStatus(status) if status is not None else None
    except ValueError:
        raise HTTPException(400, f"Unknown status: {status}")
    rows = await forms.get_pending_responses(form_id, wanted)
    return {"responses": [response_dict(r) for r in rows]}


@router.get("/responses/{response_id}")
async def get_response(
    response_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    response = await forms.get_response(response_id)
    if response is None:
        raise HTTPException(404, "Response not found")
    return response_dict(
        response,
        await forms.get_response_answers(response_id),
        await forms.get_workflow_by_response_id(response_id),
    )


@router.delete("/responses/{response_id}", status_code=204)
async def delete_response(
    response_id: int,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if not await forms.delete_response(response_id):
        raise HTTPException(404, "Response not found")
    return None


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------
@router.post("/responses/{response_id}/approve")
async def approve_response(
    response_id: int,
    body: ReviewBody | None = None,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if await forms.get_response(response_id) is None:
        raise HTTPException(404, "Response not found")
    ok, invite_code = await forms.approve_response(
        response_id, int(admin["sub"]), body.notes if body else None
    )
    if not ok:
        raise HTTPException(409, "Response is not awaiting review")
    return {"id": response_id, "status": "approved", "invite_code": invite_code}


@router.post("/responses/{response_id}/reject")
async def reject_response(
    response_id: int,
    body: ReviewBody | None = None,
    admin: dict = Depends(get_current_admin),
    forms: FormsService = Depends(get_forms_service),
):
    if await forms.get_response(response_id) is None:
        raise HTTPException(404, "Response not found")
    if not await forms.reject_response(
        response_id, int(admin["sub"]), body.notes if body else None
    ):
        raise HTTPException(409, "Response is not awaiting review")
    return {"id": response_id, "status": "rejected"}
