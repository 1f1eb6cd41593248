"""
formkeeper.api.serializers — ORM → JSON helpers
================================================

Plain dict builders shared by the admin and public routers.  Snowflakes
are returned as integers; datetimes as ISO-8601 strings.
"""

from __future__ import annotations

from datetime import datetime

from formkeeper.constants import as_utc
from formkeeper.database.models import (
    Form,
    FormAnswer,
    FormQuestion,
    FormQuestionCondition,
    FormQuestionOption,
    FormResponse,
    FormResponseWorkflow,
    ResponseStatus,
    WorkflowAction,
)
from formkeeper.services.forms_service import form_type_of


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def form_dict(form: Form) -> dict:
    return {
        "id": form.id,
        "guild_id": form.guild_id,
        "name": form.name,
        "description": form.description,
        "submit_channel_id": form.submit_channel_id,
        "is_active": form.is_active,
        "is_draft": form.is_draft,
        "allow_multiple_submissions": form.allow_multiple_submissions,
        "allow_anonymous": form.allow_anonymous,
        "require_approval": form.require_approval,
        "allow_external_users": form.allow_external_users,
        "require_captcha": form.require_captcha,
        "max_responses": form.max_responses,
        "expires_at": _iso(form.expires_at),
        "required_role_id": form.required_role_id,
        "form_type": form.form_type,
        "auto_approve_role_ids": form.auto_approve_role_ids,
        "approval_action_type": form.approval_action_type,
        "approval_role_ids": form.approval_role_ids,
        "rejection_action_type": form.rejection_action_type,
        "rejection_role_ids": form.rejection_role_ids,
        "invite_max_age": form.invite_max_age,
        "invite_max_uses": form.invite_max_uses,
        "success_message": form.success_message,
        "notification_webhook_url": form.notification_webhook_url,
        "created_by": form.created_by,
        "created_at": _iso(form.created_at),
        "updated_at": _iso(form.updated_at),
    }


def public_form_dict(form: Form) -> dict:
    """The subset of a form that submitters may see."""
    return {
        "id": form.id,
        "name": form.name,
        "description": form.description,
        "form_type": form_type_of(form).name.lower(),
        "is_active": form.is_active,
        "allow_anonymous": form.allow_anonymous,
        "require_captcha": form.require_captcha,
        "expires_at": _iso(form.expires_at),
    }


def option_dict(option: FormQuestionOption) -> dict:
    return {
        "id": option.id,
        "option_text": option.option_text,
        "option_value": option.option_value,
        "display_order": option.display_order,
    }


def condition_dict(clause: FormQuestionCondition) -> dict:
    return {
        "id": clause.id,
        "question_id": clause.question_id,
        "condition_group": clause.condition_group,
        "condition_type": clause.condition_type,
        "target_question_id": clause.target_question_id,
        "operator": clause.operator,
        "expected_value": clause.expected_value,
        "target_role_ids": clause.target_role_ids,
        "days_threshold": clause.days_threshold,
        "requires_boost": clause.requires_boost,
        "requires_nitro": clause.requires_nitro,
        "permission_flags": clause.permission_flags,
        "logic_type": clause.logic_type,
    }


QUESTION_FIELDS: tuple[str, ...] = (
    "question_text",
    "question_type",
    "is_required",
    "display_order",
    "placeholder",
    "min_value",
    "max_value",
    "min_length",
    "max_length",
    "conditional_type",
    "conditional_parent_question_id",
    "conditional_operator",
    "conditional_expected_value",
    "conditional_role_ids",
    "conditional_role_logic",
    "conditional_days_in_server",
    "conditional_account_age_days",
    "conditional_requires_boost",
    "conditional_requires_nitro",
    "conditional_permission_flags",
    "required_when_parent_question_id",
    "required_when_operator",
    "required_when_value",
    "enable_answer_piping",
)


def question_dict(
    question: FormQuestion,
    options: list[FormQuestionOption] | None = None,
    conditions: list[FormQuestionCondition] | None = None,
) -> dict:
    data = {"id": question.id, "form_id": question.form_id}
    data.update({name: getattr(question, name) for name in QUESTION_FIELDS})
    if options is not None:
        data["options"] = [option_dict(o) for o in options]
    if conditions is not None:
        data["conditions"] = [condition_dict(c) for c in conditions]
    return data


def answer_dict(answer: FormAnswer) -> dict:
    return {
        "id": answer.id,
        "question_id": answer.question_id,
        "answer_text": answer.answer_text,
        "answer_values": list(answer.answer_values) if answer.answer_values else None,
    }


def workflow_dict(workflow: FormResponseWorkflow) -> dict:
    """Review state as seen by the submitter holding the status token."""
    actions = WorkflowAction(workflow.action_taken)
    return {
        "status": ResponseStatus(workflow.status).name.lower(),
        "reviewed_at": _iso(workflow.reviewed_at),
        "review_notes": workflow.review_notes,
        "actions": [flag.name.lower() for flag in WorkflowAction if flag and flag in actions],
        "invite_code": workflow.invite_code,
        "invite_expires_at": _iso(workflow.invite_expires_at),
    }


def response_dict(
    response: FormResponse,
    answers: list[FormAnswer] | None = None,
    workflow: FormResponseWorkflow | None = None,
) -> dict:
    data = {
        "id": response.id,
        "form_id": response.form_id,
        "user_id": response.user_id,
        "username": response.username,
        "submitted_at": _iso(response.submitted_at),
        "message_id": response.message_id,
    }
    if answers is not None:
        data["answers"] = [answer_dict(a) for a in answers]
    if workflow is not None:
        data["workflow"] = workflow_dict(workflow) | {"reviewed_by": workflow.reviewed_by}
    return data
