"""
formkeeper.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- forms                     — Form definitions (one guild owns many forms)
- form_questions            — Prompts with inline conditional configuration
- form_question_conditions  — Clauses for MultipleConditions questions
- form_question_options     — Choices for choice-type questions
- form_responses            — One row per submission
- form_answers              — One row per answered question per submission
- form_response_workflows   — Review state attached 1:1 to a response
- form_share_links          — Opaque share codes per hosting instance
- user_role_states          — Saved roles applied when a user (re)joins
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all FormKeeper ORM models."""


# ---------------------------------------------------------------------------
# Enums — stored as integers for compatibility with existing rows
# ---------------------------------------------------------------------------
class FormType(enum.IntEnum):
    """What happens when a response to the form is approved."""
    REGULAR = 0
    BAN_APPEAL = 1
    JOIN_APPLICATION = 2


class ConditionalType(enum.IntEnum):
    """Which visibility rule governs a question."""
    QUESTION_BASED = 0
    DISCORD_ROLE = 1
    SERVER_TENURE = 2
    BOOST_STATUS = 3
    PERMISSION = 4
    MULTIPLE_CONDITIONS = 5


class RoleActionType(enum.IntEnum):
    """Role mutation applied on approval or rejection."""
    NONE = 0
    ADD_ROLES = 1
    REMOVE_ROLES = 2


class ResponseStatus(enum.IntEnum):
    """Review status of a submitted response."""
    PENDING = 0
    UNDER_REVIEW = 1
    APPROVED = 2
    REJECTED = 3


class WorkflowAction(enum.IntFlag):
    """Side effects recorded on a workflow once it has been reviewed."""
    NONE = 0
    UNBANNED = 1
    INVITE_SENT = 2
    ROLES_PREASSIGNED = 4
    ROLES_ASSIGNED = 8
    ROLES_REMOVED = 16


class LogicType(enum.StrEnum):
    """How a condition clause combines with the running result of its group."""
    AND = "AND"
    OR = "OR"


# ---------------------------------------------------------------------------
# Form — a named survey / application definition
# ---------------------------------------------------------------------------
class Form(Base):
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    submit_channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    # Flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_multiple_submissions: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    require_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_external_users: Mapped[bool] = mapped_column(Boolean, default=False)
    require_captcha: Mapped[bool] = mapped_column(Boolean, default=False)

    # Limits
    max_responses: Mapped[int | None] = mapped_column(Integer, default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    required_role_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    # Workflow configuration
    form_type: Mapped[int] = mapped_column(Integer, nullable=False, default=FormType.REGULAR)
    auto_approve_role_ids: Mapped[str | None] = mapped_column(Text, default=None)
    approval_action_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=RoleActionType.NONE
    )
    approval_role_ids: Mapped[str | None] = mapped_column(Text, default=None)
    rejection_action_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=RoleActionType.NONE
    )
    rejection_role_ids: Mapped[str | None] = mapped_column(Text, default=None)
    invite_max_age: Mapped[int | None] = mapped_column(Integer, default=86400)
    invite_max_uses: Mapped[int | None] = mapped_column(Integer, default=1)

    success_message: Mapped[str | None] = mapped_column(Text, default=None)
    notification_webhook_url: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    questions: Mapped[list[FormQuestion]] = relationship(
        back_populates="form", cascade="all, delete-orphan",
        order_by="FormQuestion.display_order",
    )
    responses: Mapped[list[FormResponse]] = relationship(
        back_populates="form", cascade="all, delete-orphan"
    )
    share_links: Mapped[list[FormShareLink]] = relationship(
        back_populates="form", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_forms_guild_id", "guild_id"),
        Index("ix_forms_is_active", "is_active"),
        Index("ix_forms_form_type", "form_type"),
    )

    def __repr__(self) -> str:
        return f"<Form id={self.id} name={self.name!r} type={self.form_type}>"


# ---------------------------------------------------------------------------
# FormQuestion — one prompt within a form
# ---------------------------------------------------------------------------
class FormQuestion(Base):
    """A prompt within a form.

    Exactly one :class:`ConditionalType` is active per question; only the
    ``conditional_*`` columns belonging to that type are consulted.
    ``MULTIPLE_CONDITIONS`` defers to :class:`FormQuestionCondition` rows.
    The ``required_when_*`` triple is independent of visibility.
    """
    __tablename__ = "form_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    form_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False
    )
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(50), nullable=False, default="short_text")
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    placeholder: Mapped[str | None] = mapped_column(Text, default=None)
    min_value: Mapped[int | None] = mapped_column(Integer, default=None)
    max_value: Mapped[int | None] = mapped_column(Integer, default=None)
    min_length: Mapped[int | None] = mapped_column(Integer, default=None)
    max_length: Mapped[int | None] = mapped_column(Integer, default=None)

    # Visibility rule
    conditional_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=ConditionalType.QUESTION_BASED
    )
    conditional_parent_question_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("form_questions.id", ondelete="SET NULL"), default=None
    )
    conditional_operator: Mapped[str | None] = mapped_column(String(20), default=None)
    conditional_expected_value: Mapped[str | None] = mapped_column(Text, default=None)
    conditional_role_ids: Mapped[str | None] = mapped_column(Text, default=None)
    conditional_role_logic: Mapped[str | None] = mapped_column(String(10), default=None)
    conditional_days_in_server: Mapped[int | None] = mapped_column(Integer, default=None)
    conditional_account_age_days: Mapped[int | None] = mapped_column(Integer, default=None)
    conditional_requires_boost: Mapped[bool | None] = mapped_column(Boolean, default=None)
    conditional_requires_nitro: Mapped[bool | None] = mapped_column(Boolean, default=None)
    conditional_permission_flags: Mapped[int | None] = mapped_column(BigInteger, default=None)

    # Dynamic requiredness
    required_when_parent_question_id: Mapped[int | None] = mapped_column(Integer, default=None)
    required_when_operator: Mapped[str | None] = mapped_column(String(20), default=None)
    required_when_value: Mapped[str | None] = mapped_column(Text, default=None)

    enable_answer_piping: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    form: Mapped[Form] = relationship(back_populates="questions")
    options: Mapped[list[FormQuestionOption]] = relationship(
        back_populates="question", cascade="all, delete-orphan",
        order_by="FormQuestionOption.display_order",
    )
    conditions: Mapped[list[FormQuestionCondition]] = relationship(
        back_populates="question", cascade="all, delete-orphan",
        order_by="FormQuestionCondition.id",
    )

    __table_args__ = (
        Index("ix_form_questions_form_id", "form_id"),
        Index("ix_form_questions_parent", "conditional_parent_question_id"),
    )

    def __repr__(self) -> str:
        return f"<FormQuestion id={self.id} form={self.form_id} order={self.display_order}>"


# ---------------------------------------------------------------------------
# FormQuestionCondition — one clause of a MultipleConditions question
# ---------------------------------------------------------------------------
class FormQuestionCondition(Base):
    """One clause of a compound visibility rule.

    Clauses sharing a ``condition_group`` combine left-to-right using each
    clause's own ``logic_type``; groups are ORed together.
    """
    __tablename__ = "form_question_conditions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False
    )
    condition_group: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    condition_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=ConditionalType.QUESTION_BASED
    )
    target_question_id: Mapped[int | None] = mapped_column(Integer, default=None)
    operator: Mapped[str | None] = mapped_column(String(20), default=None)
    expected_value: Mapped[str | None] = mapped_column(Text, default=None)
    target_role_ids: Mapped[str | None] = mapped_column(Text, default=None)
    days_threshold: Mapped[int | None] = mapped_column(Integer, default=None)
    requires_boost: Mapped[bool | None] = mapped_column(Boolean, default=None)
    requires_nitro: Mapped[bool | None] = mapped_column(Boolean, default=None)
    permission_flags: Mapped[int | None] = mapped_column(BigInteger, default=None)
    logic_type: Mapped[str] = mapped_column(String(10), nullable=False, default=LogicType.AND)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    question: Mapped[FormQuestion] = relationship(back_populates="conditions")

    __table_args__ = (
        Index("ix_form_question_conditions_question_id", "question_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<FormQuestionCondition id={self.id} question={self.question_id} "
            f"group={self.condition_group} logic={self.logic_type}>"
        )


# ---------------------------------------------------------------------------
# FormQuestionOption — selectable choice
# ---------------------------------------------------------------------------
class FormQuestionOption(Base):
    __tablename__ = "form_question_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False
    )
    option_text: Mapped[str] = mapped_column(String(500), nullable=False)
    option_value: Mapped[str] = mapped_column(String(500), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    question: Mapped[FormQuestion] = relationship(back_populates="options")

    __table_args__ = (
        Index("ix_form_question_options_question_id", "question_id"),
    )

    def __repr__(self) -> str:
        return f"<FormQuestionOption id={self.id} value={self.option_value!r}>"


# ---------------------------------------------------------------------------
# FormResponse — one submission
# ---------------------------------------------------------------------------
class FormResponse(Base):
    """One submission.  ``user_id``, ``username`` and ``ip_address`` are
    NULL whenever the owning form allows anonymous responses."""
    __tablename__ = "form_responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    form_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    username: Mapped[str | None] = mapped_column(String(255), default=None)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    message_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    form: Mapped[Form] = relationship(back_populates="responses")
    answers: Mapped[list[FormAnswer]] = relationship(
        back_populates="response", cascade="all, delete-orphan"
    )
    workflow: Mapped[FormResponseWorkflow | None] = relationship(
        back_populates="response", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_form_responses_form_id", "form_id"),
        Index("ix_form_responses_user_id", "user_id"),
        Index("ix_form_responses_submitted_at", "submitted_at"),
    )

    def __repr__(self) -> str:
        return f"<FormResponse id={self.id} form={self.form_id} user={self.user_id}>"


# ---------------------------------------------------------------------------
# FormAnswer — one answer within a response
# ---------------------------------------------------------------------------
class FormAnswer(Base):
    __tablename__ = "form_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    response_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_responses.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False
    )
    answer_text: Mapped[str | None] = mapped_column(Text, default=None)
    answer_values: Mapped[list | None] = mapped_column(JSONB, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    response: Mapped[FormResponse] = relationship(back_populates="answers")

    __table_args__ = (
        Index("ix_form_answers_response_id", "response_id"),
        Index("ix_form_answers_question_id", "question_id"),
    )

    @property
    def value(self) -> str | list[str] | None:
        """The stored answer in its submitted shape (list for multi-select)."""
        if self.answer_values:
            return list(self.answer_values)
        return self.answer_text

    def __repr__(self) -> str:
        return f"<FormAnswer id={self.id} response={self.response_id} question={self.question_id}>"


# ---------------------------------------------------------------------------
# FormResponseWorkflow — review state for a response
# ---------------------------------------------------------------------------
class FormResponseWorkflow(Base):
    """Review state attached 1:1 to a :class:`FormResponse`.

    ``status`` moves Pending → (UnderReview) → Approved | Rejected and never
    leaves a terminal state.  ``action_taken`` is a :class:`WorkflowAction`
    bit set.
    """
    __tablename__ = "form_response_workflows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    response_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_responses.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=ResponseStatus.PENDING)
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    review_notes: Mapped[str | None] = mapped_column(Text, default=None)
    action_taken: Mapped[int] = mapped_column(Integer, nullable=False, default=WorkflowAction.NONE)
    status_check_token: Mapped[str] = mapped_column(String(64), nullable=False)
    invite_code: Mapped[str | None] = mapped_column(String(50), default=None)
    invite_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    response: Mapped[FormResponse] = relationship(back_populates="workflow")

    __table_args__ = (
        UniqueConstraint("response_id", name="uq_form_workflows_response"),
        UniqueConstraint("status_check_token", name="uq_form_workflows_token"),
        Index("ix_form_workflows_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<FormResponseWorkflow id={self.id} response={self.response_id} "
            f"status={ResponseStatus(self.status).name}>"
        )


# ---------------------------------------------------------------------------
# FormShareLink — opaque share codes
# ---------------------------------------------------------------------------
class FormShareLink(Base):
    __tablename__ = "form_share_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    share_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    form_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False
    )
    instance_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    form: Mapped[Form] = relationship(back_populates="share_links")

    def __repr__(self) -> str:
        return f"<FormShareLink code={self.share_code!r} form={self.form_id}>"


# ---------------------------------------------------------------------------
# UserRoleState — saved roles restored when a member joins
# ---------------------------------------------------------------------------
class UserRoleState(Base):
    """Saved roles for a (guild, user) pair.

    Written by join-application approval; consumed by whatever restores
    roles on member join.  ``saved_roles`` is a comma-separated id list.
    """
    __tablename__ = "user_role_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_name: Mapped[str | None] = mapped_column(String(255), default=None)
    saved_roles: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_user_role_states_guild_user"),
    )

    def __repr__(self) -> str:
        return f"<UserRoleState guild={self.guild_id} user={self.user_id}>"
