"""
formkeeper.services.embeds — Discord embed builders for submissions
====================================================================

All embed construction lives here so the forms service and cogs only need
to supply data — no layout concerns.
"""

from __future__ import annotations

from collections.abc import Sequence

import discord

from formkeeper.constants import EMBED_FIELD_MAX_LENGTH, EMBED_MAX_ANSWERS, as_utc
from formkeeper.database.models import (
    Form,
    FormAnswer,
    FormQuestion,
    FormResponse,
    FormResponseWorkflow,
    ResponseStatus,
)

_FIELD_NAME_MAX_LENGTH = 256


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def build_submission_embed(
    form: Form,
    response: FormResponse,
    answers: Sequence[FormAnswer],
    questions: Sequence[FormQuestion],
    *,
    submitter_name: str | None = None,
) -> discord.Embed:
    """Build the "New Form Submission" embed posted to a form's channel.

    At most 20 answers are shown; a note points to the dashboard when the
    response holds more.
    """
    submitted_at = as_utc(response.submitted_at)
    embed = discord.Embed(
        title=_truncate(f"\U0001f4dd New Form Submission: {form.name}", _FIELD_NAME_MAX_LENGTH),
        description=form.description,
        color=discord.Color.blue(),
        timestamp=submitted_at,
    )
    embed.set_footer(text=f"Response ID: #{response.id} | Form ID: #{form.id}")

    if response.user_id is not None:
        user = submitter_name or response.username or f"<@{response.user_id}>"
        embed.add_field(name="User", value=user, inline=True)
    else:
        embed.add_field(name="User", value="Anonymous", inline=True)

    if submitted_at is not None:
        embed.add_field(
            name="Submitted", value=f"<t:{int(submitted_at.timestamp())}:R>", inline=True
        )

    question_by_id = {q.id: q for q in questions}
    for answer in answers[:EMBED_MAX_ANSWERS]:
        question = question_by_id.get(answer.question_id)
        if question is None:
            continue
        if answer.answer_values:
            value = ", ".join(answer.answer_values)
        else:
            value = answer.answer_text or "*(No answer)*"
        embed.add_field(
            name=_truncate(f"❓ {question.question_text}", _FIELD_NAME_MAX_LENGTH),
            value=_truncate(f"└─ {value}", EMBED_FIELD_MAX_LENGTH),
            inline=False,
        )

    if len(answers) > EMBED_MAX_ANSWERS:
        embed.add_field(
            name="⚠️ Note",
            value=(
                f"Showing {EMBED_MAX_ANSWERS} of {len(answers)} answers. "
                "View the full response in the dashboard."
            ),
            inline=False,
        )
    return embed


_STATUS_COLORS = {
    ResponseStatus.PENDING: discord.Color.light_grey(),
    ResponseStatus.UNDER_REVIEW: discord.Color.orange(),
    ResponseStatus.APPROVED: discord.Color.green(),
    ResponseStatus.REJECTED: discord.Color.red(),
}


def build_review_embed(
    form: Form,
    response: FormResponse,
    workflow: FormResponseWorkflow,
) -> discord.Embed:
    """Compact line-item used by the reviewer commands."""
    status = ResponseStatus(workflow.status)
    who = f"<@{response.user_id}>" if response.user_id is not None else "Anonymous"
    embed = discord.Embed(
        title=f"Response #{response.id} — {form.name}",
        description=f"Submitted by {who}",
        color=_STATUS_COLORS[status],
    )
    embed.add_field(name="Status", value=status.name.replace("_", " ").title(), inline=True)
    if workflow.reviewed_by:
        embed.add_field(name="Reviewed by", value=f"<@{workflow.reviewed_by}>", inline=True)
    if workflow.review_notes:
        embed.add_field(
            name="Notes", value=_truncate(workflow.review_notes, EMBED_FIELD_MAX_LENGTH),
            inline=False,
        )
    if workflow.invite_code:
        embed.add_field(name="Invite", value=f"discord.gg/{workflow.invite_code}", inline=False)
    return embed
