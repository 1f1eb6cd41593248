"""
formkeeper.services.forms_service — Forms Engine Facade
========================================================

:class:`FormsService` is what the bot cogs and the dashboard API talk to.
It combines the pure rule engine (:mod:`formkeeper.engine`) with the sync
repositories (:mod:`formkeeper.services.form_store`,
:mod:`~formkeeper.services.response_store`,
:mod:`~formkeeper.services.workflow_store`) and the Discord client.

Review outcomes by form type::

    BAN_APPEAL        approve → unban submitter                 → UNBANNED
    JOIN_APPLICATION  approve → single-use invite + saved roles → INVITE_SENT | ROLES_PREASSIGNED
    REGULAR           approve → approval role action            → ROLES_ASSIGNED
                      reject  → rejection role action           → ROLES_REMOVED

Failures of Discord calls are logged and reported through return values;
nothing here raises to the caller except :meth:`FormsService.duplicate_form`.
"""

from __future__ import annotations

import logging
import random
import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, assert_never

import discord

from formkeeper.constants import (
    DEFAULT_INVITE_MAX_AGE,
    DEFAULT_INVITE_MAX_USES,
    as_utc,
    parse_id_list,
)
from formkeeper.database.engine import run_db
from formkeeper.database.models import (
    Form,
    FormAnswer,
    FormQuestion,
    FormQuestionCondition,
    FormQuestionOption,
    FormResponse,
    FormResponseWorkflow,
    FormType,
    ResponseStatus,
    RoleActionType,
    WorkflowAction,
)
from formkeeper.engine import piping, visibility
from formkeeper.engine.conditions import EvaluationContext, MemberSnapshot
from formkeeper.services import form_store, response_store, workflow_store
from formkeeper.services.captcha import verify_turnstile_token
from formkeeper.services.embeds import build_submission_embed
from formkeeper.services.role_actions import apply_role_action

if TYPE_CHECKING:
    from formkeeper.config import FormKeeperConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    ok: bool
    reason: str | None = None
    response_id: int | None = None
    status_token: str | None = None


@dataclass(frozen=True, slots=True)
class InviteGrant:
    code: str
    expires_at: datetime | None
    roles_preassigned: bool


def form_type_of(form: Form) -> FormType:
    try:
        return FormType(form.form_type)
    except ValueError:
        logger.warning("Form %d has unknown type %r; treating as regular", form.id, form.form_type)
        return FormType.REGULAR


class FormsService:
    """Async entry point for everything forms-related."""

    def __init__(
        self,
        client: discord.Client,
        engine,
        *,
        cfg: FormKeeperConfig | None = None,
        rng: random.Random | None = None,
        turnstile_secret: str | None = None,
    ) -> None:
        self.client = client
        self.engine = engine
        self.cfg = cfg
        self.rng = rng or secrets.SystemRandom()
        self.turnstile_secret = turnstile_secret

    # ------------------------------------------------------------------
    # Rule evaluation
    # ------------------------------------------------------------------
    def resolve_member_snapshot(self, guild_id: int, user_id: int | None) -> MemberSnapshot | None:
        """Snapshot the member from the client cache, or ``None`` if absent."""
        if user_id is None:
            return None
        guild = self.client.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is None:
            return None
        return MemberSnapshot.from_member(member)

    def build_context(
        self, guild_id: int, user_id: int | None, answers: Mapping[int, Any],
    ) -> EvaluationContext:
        return EvaluationContext(
            answers=dict(answers),
            guild_id=guild_id,
            user_id=user_id,
            member=self.resolve_member_snapshot(guild_id, user_id),
        )

    def should_show_question(
        self,
        question: FormQuestion,
        ctx: EvaluationContext,
        clauses: Iterable[FormQuestionCondition] = (),
    ) -> bool:
        return visibility.should_show_question(question, ctx, clauses)

    def is_question_required(self, question: FormQuestion, ctx: EvaluationContext) -> bool:
        return visibility.is_question_required(question, ctx)

    def apply_answer_piping(
        self, text: str, answers: Mapping[int, Any], questions: Iterable[FormQuestion],
    ) -> str:
        return piping.apply_answer_piping(text, answers, questions)

    async def get_visible_questions(
        self, form_id: int, user_id: int | None, answers: Mapping[int, Any],
    ) -> list[FormQuestion]:
        """Questions currently shown to *user_id*, with answer piping applied.

        Piped text is written onto the returned (detached) question objects
        only; nothing is persisted.
        """
        form = await run_db(form_store.get_form, self.engine, form_id)
        if form is None:
            return []
        questions = await run_db(form_store.get_form_questions, self.engine, form_id)
        clauses = await run_db(
            form_store.get_conditions_for_questions, self.engine, [q.id for q in questions]
        )
        ctx = self.build_context(form.guild_id, user_id, answers)
        shown = visibility.visible_questions(questions, ctx, clauses)
        # Pipe against the stored prompts before overwriting any of them.
        piped = {
            question.id: piping.apply_answer_piping(question.question_text, ctx.answers, questions)
            for question in shown
            if question.enable_answer_piping
        }
        for question in shown:
            if question.id in piped:
                question.question_text = piped[question.id]
        return shown

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    async def can_user_submit(self, form_id: int, user_id: int) -> tuple[bool, str | None]:
        form = await run_db(form_store.get_form, self.engine, form_id)
        if form is None:
            return False, "Form not found"
        if not form.is_active:
            return False, "This form is no longer accepting responses"

        expires_at = as_utc(form.expires_at)
        if expires_at is not None and datetime.now(UTC) > expires_at:
            return False, "This form has expired and is no longer accepting responses"

        if form.required_role_id is not None:
            guild = self.client.get_guild(form.guild_id)
            member = guild.get_member(user_id) if guild is not None else None
            if member is None:
                return False, "You must be a member of this server to submit this form"
            if form.required_role_id not in {role.id for role in member.roles}:
                role = guild.get_role(form.required_role_id)
                role_name = role.name if role is not None else "the required role"
                return False, f"You must have the {role_name} role to submit this form"

        if form.max_responses is not None:
            count = await run_db(response_store.get_response_count, self.engine, form_id)
            if count >= form.max_responses:
                return False, "This form has reached its maximum number of responses"

        if not form.allow_multiple_submissions:
            if await run_db(response_store.has_user_submitted, self.engine, form_id, user_id):
                return False, "You have already submitted a response to this form"

        return True, None

    async def check_form_eligibility(self, form_id: int, user_id: int) -> tuple[bool, str | None]:
        """Form-type gate: ban appeals need a ban, join applications need a non-member."""
        form = await run_db(form_store.get_form, self.engine, form_id)
        if form is None:
            return False, "Form not found"
        guild = self.client.get_guild(form.guild_id)
        if guild is None:
            return False, "Guild not found"

        form_type = form_type_of(form)
        match form_type:
            case FormType.BAN_APPEAL:
                try:
                    await guild.fetch_ban(discord.Object(id=user_id))
                except discord.NotFound:
                    return False, "You are not banned from this server"
                except discord.HTTPException:
                    logger.exception("Ban lookup for user %d in guild %d failed", user_id, guild.id)
                    return False, "You are not banned from this server"
            case FormType.JOIN_APPLICATION:
                if guild.get_member(user_id) is not None:
                    return False, "You are already a member of this server"
            case FormType.REGULAR:
                if not form.allow_external_users and guild.get_member(user_id) is None:
                    return False, "You must be a member of this server to submit this form"
            case _:
                assert_never(form_type)

        return True, None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    async def submit_response(
        self,
        form_id: int,
        user_id: int | None,
        username: str | None,
        answers: Mapping[int, Any],
        ip_address: str | None = None,
    ) -> FormResponse | None:
        return await run_db(
            response_store.submit_response,
            self.engine,
            form_id=form_id,
            user_id=user_id,
            username=username,
            answers=answers,
            ip_address=ip_address,
        )

    async def create_workflow_for_response(self, response_id: int) -> FormResponseWorkflow | None:
        return await run_db(
            workflow_store.create_workflow_for_response, self.engine, response_id, rng=self.rng
        )

    async def submit(
        self,
        form_id: int,
        user_id: int,
        username: str | None,
        answers: Mapping[int, Any],
        *,
        ip_address: str | None = None,
        captcha_token: str | None = None,
    ) -> SubmissionResult:
        """Run every admission check, store the response and open its workflow."""
        form = await run_db(form_store.get_form, self.engine, form_id)
        if form is None:
            return SubmissionResult(False, "Form not found")
        if self.client.get_guild(form.guild_id) is None:
            return SubmissionResult(False, "Guild not found")

        eligible, reason = await self.check_form_eligibility(form_id, user_id)
        if not eligible:
            return SubmissionResult(False, reason)

        if form.require_captcha:
            if not captcha_token:
                return SubmissionResult(False, "Captcha verification required")
            if not await verify_turnstile_token(
                captcha_token, self.turnstile_secret, remote_ip=ip_address
            ):
                return SubmissionResult(False, "Captcha verification failed")

        allowed, reason = await self.can_user_submit(form_id, user_id)
        if not allowed:
            return SubmissionResult(False, reason)

        questions = await run_db(form_store.get_form_questions, self.engine, form_id)
        known_ids = {q.id for q in questions}
        answers = {int(qid): value for qid, value in answers.items() if int(qid) in known_ids}
        clauses = await run_db(
            form_store.get_conditions_for_questions, self.engine, list(known_ids)
        )
        ctx = self.build_context(form.guild_id, user_id, answers)
        missing = visibility.missing_required_answers(questions, ctx, clauses)
        if missing:
            names = ", ".join(q.question_text for q in missing)
            return SubmissionResult(False, f"Please answer the required questions: {names}")

        response = await self.submit_response(form_id, user_id, username, answers, ip_address)
        if response is None:
            return SubmissionResult(False, "Form not found")

        workflow = await self.create_workflow_for_response(response.id)
        stored = await run_db(response_store.get_response_answers, self.engine, response.id)
        await self.log_submission_to_channel(form, response, stored)

        return SubmissionResult(
            True,
            response_id=response.id,
            status_token=workflow.status_check_token if workflow is not None else None,
        )

    async def log_submission_to_channel(
        self, form: Form, response: FormResponse, answers: list[FormAnswer],
    ) -> int | None:
        """Post the submission embed to the form's channel; return the message id."""
        if form.submit_channel_id is None:
            return None
        try:
            guild = self.client.get_guild(form.guild_id)
            if guild is None:
                logger.warning("Guild %d not found for submission logging", form.guild_id)
                return None
            channel = guild.get_channel(form.submit_channel_id)
            if channel is None:
                logger.warning("Channel %d not found for submission logging", form.submit_channel_id)
                return None

            questions = await run_db(form_store.get_form_questions, self.engine, form.id)
            member = guild.get_member(response.user_id) if response.user_id is not None else None
            embed = build_submission_embed(
                form, response, answers, questions,
                submitter_name=str(member) if member is not None else None,
            )
            msg = await channel.send(embed=embed)
            await run_db(response_store.set_response_message_id, self.engine, response.id, msg.id)
        except Exception:
            logger.exception("Failed to log form submission %d to Discord", response.id)
            return None

        logger.info("Logged form submission %d to channel %d", response.id, channel.id)
        return msg.id

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------
    async def _load_for_review(
        self, response_id: int,
    ) -> tuple[FormResponse, Form] | None:
        response = await run_db(response_store.get_response, self.engine, response_id)
        if response is None:
            return None
        form = await run_db(form_store.get_form, self.engine, response.form_id)
        if form is None:
            return None
        workflow = await run_db(workflow_store.get_workflow_by_response_id, self.engine, response_id)
        if workflow is None:
            return None
        # No terminal transition without a guild to run side effects in.
        if self.client.get_guild(form.guild_id) is None:
            logger.warning(
                "Cannot review response %d: guild %d is not available to the client",
                response_id, form.guild_id,
            )
            return None
        return response, form

    async def approve_response(
        self, response_id: int, reviewer_id: int, notes: str | None = None,
    ) -> tuple[bool, str | None]:
        """Approve a response and run its form-type side effect.

        Returns ``(success, invite_code)``.  Approving a response that is
        missing, has no workflow, was already decided or belongs to a guild
        the client cannot see returns ``(False, None)`` and triggers nothing.
        """
        loaded = await self._load_for_review(response_id)
        if loaded is None:
            return False, None
        response, form = loaded

        claimed = await run_db(
            workflow_store.claim_transition, self.engine, response_id,
            ResponseStatus.APPROVED, reviewer_id=reviewer_id, notes=notes,
        )
        if not claimed:
            return False, None

        action = WorkflowAction.NONE
        grant: InviteGrant | None = None
        form_type = form_type_of(form)
        match form_type:
            case FormType.BAN_APPEAL:
                if response.user_id is not None and await self._unban(form, response.user_id):
                    action |= WorkflowAction.UNBANNED
            case FormType.JOIN_APPLICATION:
                if response.user_id is not None:
                    grant = await self._generate_invite_and_preassign(form, response.user_id)
                    if grant is not None:
                        action |= WorkflowAction.INVITE_SENT
                        if grant.roles_preassigned:
                            action |= WorkflowAction.ROLES_PREASSIGNED
            case FormType.REGULAR:
                if await self._apply_review_roles(form, response, reviewer_id, is_approval=True):
                    action |= WorkflowAction.ROLES_ASSIGNED
            case _:
                assert_never(form_type)

        await run_db(
            workflow_store.record_outcome, self.engine, response_id, action,
            invite_code=grant.code if grant else None,
            invite_expires_at=grant.expires_at if grant else None,
        )
        logger.info(
            "Approved response %d by reviewer %d. Action: %s",
            response_id, reviewer_id, action.name or int(action),
        )
        return True, grant.code if grant else None

    async def reject_response(
        self, response_id: int, reviewer_id: int, notes: str | None = None,
    ) -> bool:
        loaded = await self._load_for_review(response_id)
        if loaded is None:
            return False
        response, form = loaded

        claimed = await run_db(
            workflow_store.claim_transition, self.engine, response_id,
            ResponseStatus.REJECTED, reviewer_id=reviewer_id, notes=notes,
        )
        if not claimed:
            return False

        action = WorkflowAction.NONE
        if form_type_of(form) is FormType.REGULAR:
            if await self._apply_review_roles(form, response, reviewer_id, is_approval=False):
                action |= WorkflowAction.ROLES_REMOVED

        await run_db(workflow_store.record_outcome, self.engine, response_id, action)
        logger.info("Rejected response %d by reviewer %d", response_id, reviewer_id)
        return True

    async def _apply_review_roles(
        self, form: Form, response: FormResponse, reviewer_id: int, *, is_approval: bool,
    ) -> bool:
        if not form.require_approval:
            return False
        if is_approval:
            action_type, role_ids = form.approval_action_type, form.approval_role_ids
        else:
            action_type, role_ids = form.rejection_action_type, form.rejection_role_ids
        if action_type == RoleActionType.NONE:
            return False
        return await apply_role_action(
            self.client.get_guild(form.guild_id),
            response.user_id,
            role_ids,
            RoleActionType(action_type),
            reviewer_id=reviewer_id,
            is_approval=is_approval,
            form=form,
        )

    async def _unban(self, form: Form, user_id: int) -> bool:
        guild = self.client.get_guild(form.guild_id)
        if guild is None:
            return False
        try:
            await guild.unban(discord.Object(id=user_id), reason=f"Ban appeal approved (form #{form.id})")
        except Exception:
            logger.exception("Failed to unban user %d from guild %d", user_id, form.guild_id)
            return False
        logger.info("Unbanned user %d from guild %d via form %d", user_id, form.guild_id, form.id)
        return True

    @staticmethod
    def _invite_channel(guild: discord.Guild) -> discord.TextChannel | None:
        """System channel, else the first channel @everyone may view, else any."""
        if guild.system_channel is not None:
            return guild.system_channel
        for channel in guild.text_channels:
            if channel.overwrites_for(guild.default_role).view_channel is not False:
                return channel
        return guild.text_channels[0] if guild.text_channels else None

    async def _generate_invite_and_preassign(self, form: Form, user_id: int) -> InviteGrant | None:
        guild = self.client.get_guild(form.guild_id)
        if guild is None:
            return None
        channel = self._invite_channel(guild)
        if channel is None:
            logger.warning("No suitable channel for invite creation in guild %d", guild.id)
            return None

        default_age = self.cfg.default_invite_max_age if self.cfg else DEFAULT_INVITE_MAX_AGE
        default_uses = self.cfg.default_invite_max_uses if self.cfg else DEFAULT_INVITE_MAX_USES
        max_age = form.invite_max_age if form.invite_max_age is not None else default_age
        max_uses = form.invite_max_uses if form.invite_max_uses is not None else default_uses

        try:
            invite = await channel.create_invite(
                max_age=max_age,
                max_uses=max_uses,
                unique=True,
                reason=f"Join application approved (form #{form.id})",
            )
        except Exception:
            logger.exception("Failed to create invite in guild %d for form %d", guild.id, form.id)
            return None
        expires_at = datetime.now(UTC) + timedelta(seconds=max_age) if max_age else None

        preassigned = False
        try:
            role_ids = parse_id_list(form.auto_approve_role_ids)
        except ValueError:
            logger.error(
                "Form %d: malformed pre-assign role list %r", form.id, form.auto_approve_role_ids
            )
            role_ids = []
        if role_ids:
            user = self.client.get_user(user_id)
            try:
                await run_db(
                    workflow_store.merge_saved_roles,
                    self.engine,
                    guild_id=form.guild_id,
                    user_id=user_id,
                    role_ids=role_ids,
                    user_name=str(user) if user is not None else None,
                )
                preassigned = True
            except Exception:
                logger.exception("Failed to save pre-assigned roles for user %d", user_id)

        logger.info("Created invite %s for user %d (form %d)", invite.code, user_id, form.id)
        return InviteGrant(code=invite.code, expires_at=expires_at, roles_preassigned=preassigned)

    # ------------------------------------------------------------------
    # Repository passthroughs
    # ------------------------------------------------------------------
    async def create_form(self, guild_id: int, name: str, created_by: int = 0, **fields: Any) -> Form:
        return await run_db(
            form_store.create_form, self.engine,
            guild_id=guild_id, name=name, created_by=created_by, **fields,
        )

    async def get_form(self, form_id: int, *, include_drafts: bool = True) -> Form | None:
        return await run_db(form_store.get_form, self.engine, form_id, include_drafts=include_drafts)

    async def get_guild_forms(self, guild_id: int, *, active_only: bool = False) -> list[Form]:
        return await run_db(form_store.get_guild_forms, self.engine, guild_id, active_only=active_only)

    async def update_form(self, form_id: int, **fields: Any) -> Form | None:
        return await run_db(form_store.update_form, self.engine, form_id, **fields)

    async def delete_form(self, form_id: int) -> bool:
        return await run_db(form_store.delete_form, self.engine, form_id)

    async def set_form_active(self, form_id: int, is_active: bool) -> bool:
        return await run_db(form_store.set_form_active, self.engine, form_id, is_active)

    async def publish_form(self, form_id: int) -> bool:
        return await run_db(form_store.publish_form, self.engine, form_id)

    async def duplicate_form(self, form_id: int, created_by: int) -> Form:
        return await run_db(form_store.duplicate_form, self.engine, form_id, created_by=created_by)

    async def get_form_questions(self, form_id: int) -> list[FormQuestion]:
        return await run_db(form_store.get_form_questions, self.engine, form_id)

    async def get_question(self, question_id: int) -> FormQuestion | None:
        return await run_db(form_store.get_question, self.engine, question_id)

    async def add_question(self, form_id: int, question_text: str, **fields: Any) -> FormQuestion:
        return await run_db(
            form_store.add_question, self.engine,
            form_id=form_id, question_text=question_text, **fields,
        )

    async def update_question(self, question_id: int, **fields: Any) -> FormQuestion | None:
        return await run_db(form_store.update_question, self.engine, question_id, **fields)

    async def delete_question(self, question_id: int) -> bool:
        return await run_db(form_store.delete_question, self.engine, question_id)

    async def add_question_option(
        self, question_id: int, option_text: str, option_value: str | None = None,
        display_order: int = 0,
    ) -> FormQuestionOption:
        return await run_db(
            form_store.add_question_option, self.engine,
            question_id=question_id, option_text=option_text,
            option_value=option_value, display_order=display_order,
        )

    async def get_question_options(self, question_id: int) -> list[FormQuestionOption]:
        return await run_db(form_store.get_question_options, self.engine, question_id)

    async def delete_question_options(self, question_id: int) -> int:
        return await run_db(form_store.delete_question_options, self.engine, question_id)

    async def add_question_condition(self, question_id: int, **fields: Any) -> FormQuestionCondition:
        return await run_db(
            form_store.add_question_condition, self.engine, question_id=question_id, **fields
        )

    async def get_question_conditions(self, question_id: int) -> list[FormQuestionCondition]:
        return await run_db(form_store.get_question_conditions, self.engine, question_id)

    async def delete_condition(self, condition_id: int) -> bool:
        return await run_db(form_store.delete_condition, self.engine, condition_id)

    async def get_response(self, response_id: int) -> FormResponse | None:
        return await run_db(response_store.get_response, self.engine, response_id)

    async def get_response_answers(self, response_id: int) -> list[FormAnswer]:
        return await run_db(response_store.get_response_answers, self.engine, response_id)

    async def get_response_count(self, form_id: int) -> int:
        return await run_db(response_store.get_response_count, self.engine, form_id)

    async def delete_response(self, response_id: int) -> bool:
        return await run_db(response_store.delete_response, self.engine, response_id)

    async def export_responses_csv(self, form_id: int) -> str | None:
        return await run_db(response_store.export_responses_csv, self.engine, form_id)

    async def get_form_responses(
        self, form_id: int, page: int = 1, page_size: int = 50,
    ) -> list[FormResponse]:
        return await run_db(
            response_store.get_form_responses, self.engine, form_id,
            page=page, page_size=page_size,
        )

    async def get_pending_responses(
        self, form_id: int, status: ResponseStatus | None = None,
    ) -> list[FormResponse]:
        return await run_db(workflow_store.get_pending_responses, self.engine, form_id, status)

    async def get_workflow_by_response_id(self, response_id: int) -> FormResponseWorkflow | None:
        return await run_db(workflow_store.get_workflow_by_response_id, self.engine, response_id)

    async def get_workflow_by_token(self, token: str) -> FormResponseWorkflow | None:
        return await run_db(workflow_store.get_workflow_by_token, self.engine, token)

    async def generate_share_link(self, form_id: int, instance_identifier: str | None = None) -> str:
        instance = instance_identifier or (self.cfg.instance_identifier if self.cfg else "main")
        return await run_db(
            form_store.generate_share_link, self.engine, form_id, instance, rng=self.rng
        )

    async def resolve_share_link(self, share_code: str) -> tuple[int, str] | None:
        return await run_db(form_store.resolve_share_link, self.engine, share_code)
