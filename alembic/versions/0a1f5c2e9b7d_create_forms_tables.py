"""Create forms tables

Revision ID: 0a1f5c2e9b7d
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0a1f5c2e9b7d"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    """Forms, questions, clauses, options, responses, answers, workflows,
    share links and saved role states."""
    op.create_table(
        "forms",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("submit_channel_id", sa.BigInteger, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=True),
        sa.Column("is_draft", sa.Boolean, nullable=True),
        sa.Column("allow_multiple_submissions", sa.Boolean, nullable=True),
        sa.Column("allow_anonymous", sa.Boolean, nullable=True),
        sa.Column("require_approval", sa.Boolean, nullable=True),
        sa.Column("allow_external_users", sa.Boolean, nullable=True),
        sa.Column("require_captcha", sa.Boolean, nullable=True),
        sa.Column("max_responses", sa.Integer, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("required_role_id", sa.BigInteger, nullable=True),
        sa.Column("form_type", sa.Integer, nullable=False),
        sa.Column("auto_approve_role_ids", sa.Text, nullable=True),
        sa.Column("approval_action_type", sa.Integer, nullable=False),
        sa.Column("approval_role_ids", sa.Text, nullable=True),
        sa.Column("rejection_action_type", sa.Integer, nullable=False),
        sa.Column("rejection_role_ids", sa.Text, nullable=True),
        sa.Column("invite_max_age", sa.Integer, nullable=True),
        sa.Column("invite_max_uses", sa.Integer, nullable=True),
        sa.Column("success_message", sa.Text, nullable=True),
        sa.Column("notification_webhook_url", sa.Text, nullable=True),
        sa.Column("created_by", sa.BigInteger, nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_forms_guild_id", "forms", ["guild_id"])
    op.create_index("ix_forms_is_active", "forms", ["is_active"])
    op.create_index("ix_forms_form_type", "forms", ["form_type"])

    op.create_table(
        "form_questions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "form_id", sa.Integer,
            sa.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("question_text", sa.Text, nullable=False),
        sa.Column("question_type", sa.String(50), nullable=False),
        sa.Column("is_required", sa.Boolean, nullable=True),
        sa.Column("display_order", sa.Integer, nullable=False),
        sa.Column("placeholder", sa.Text, nullable=True),
        sa.Column("min_value", sa.Integer, nullable=True),
        sa.Column("max_value", sa.Integer, nullable=True),
        sa.Column("min_length", sa.Integer, nullable=True),
        sa.Column("max_length", sa.Integer, nullable=True),
        sa.Column("conditional_type", sa.Integer, nullable=False),
        sa.Column(
            "conditional_parent_question_id", sa.Integer,
            sa.ForeignKey("form_questions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("conditional_operator", sa.String(20), nullable=True),
        sa.Column("conditional_expected_value", sa.Text, nullable=True),
        sa.Column("conditional_role_ids", sa.Text, nullable=True),
        sa.Column("conditional_role_logic", sa.String(10), nullable=True),
        sa.Column("conditional_days_in_server", sa.Integer, nullable=True),
        sa.Column("conditional_account_age_days", sa.Integer, nullable=True),
        sa.Column("conditional_requires_boost", sa.Boolean, nullable=True),
        sa.Column("conditional_requires_nitro", sa.Boolean, nullable=True),
        sa.Column("conditional_permission_flags", sa.BigInteger, nullable=True),
        sa.Column("required_when_parent_question_id", sa.Integer, nullable=True),
        sa.Column("required_when_operator", sa.String(20), nullable=True),
        sa.Column("required_when_value", sa.Text, nullable=True),
        sa.Column("enable_answer_piping", sa.Boolean, nullable=True),
        _created_at(),
    )
    op.create_index("ix_form_questions_form_id", "form_questions", ["form_id"])
    op.create_index(
        "ix_form_questions_parent", "form_questions", ["conditional_parent_question_id"]
    )

    op.create_table(
        "form_question_conditions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "question_id", sa.Integer,
            sa.ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("condition_group", sa.Integer, nullable=False),
        sa.Column("condition_type", sa.Integer, nullable=False),
        sa.Column("target_question_id", sa.Integer, nullable=True),
        sa.Column("operator", sa.String(20), nullable=True),
        sa.Column("expected_value", sa.Text, nullable=True),
        sa.Column("target_role_ids", sa.Text, nullable=True),
        sa.Column("days_threshold", sa.Integer, nullable=True),
        sa.Column("requires_boost", sa.Boolean, nullable=True),
        sa.Column("requires_nitro", sa.Boolean, nullable=True),
        sa.Column("permission_flags", sa.BigInteger, nullable=True),
        sa.Column("logic_type", sa.String(10), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_form_question_conditions_question_id", "form_question_conditions", ["question_id"]
    )

    op.create_table(
        "form_question_options",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "question_id", sa.Integer,
            sa.ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("option_text", sa.String(500), nullable=False),
        sa.Column("option_value", sa.String(500), nullable=False),
        sa.Column("display_order", sa.Integer, nullable=False),
    )
    op.create_index(
        "ix_form_question_options_question_id", "form_question_options", ["question_id"]
    )

    op.create_table(
        "form_responses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "form_id", sa.Integer,
            sa.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.BigInteger, nullable=True),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("message_id", sa.BigInteger, nullable=True),
    )
    op.create_index("ix_form_responses_form_id", "form_responses", ["form_id"])
    op.create_index("ix_form_responses_user_id", "form_responses", ["user_id"])
    op.create_index("ix_form_responses_submitted_at", "form_responses", ["submitted_at"])

    op.create_table(
        "form_answers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "response_id", sa.Integer,
            sa.ForeignKey("form_responses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "question_id", sa.Integer,
            sa.ForeignKey("form_questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("answer_text", sa.Text, nullable=True),
        sa.Column("answer_values", postgresql.JSONB, nullable=True),
        _created_at(),
    )
    op.create_index("ix_form_answers_response_id", "form_answers", ["response_id"])
    op.create_index("ix_form_answers_question_id", "form_answers", ["question_id"])

    op.create_table(
        "form_response_workflows",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "response_id", sa.Integer,
            sa.ForeignKey("form_responses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.Integer, nullable=False),
        sa.Column("reviewed_by", sa.BigInteger, nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text, nullable=True),
        sa.Column("action_taken", sa.Integer, nullable=False),
        sa.Column("status_check_token", sa.String(64), nullable=False),
        sa.Column("invite_code", sa.String(50), nullable=True),
        sa.Column("invite_expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("response_id", name="uq_form_workflows_response"),
        sa.UniqueConstraint("status_check_token", name="uq_form_workflows_token"),
    )
    op.create_index("ix_form_workflows_status", "form_response_workflows", ["status"])

    op.create_table(
        "form_share_links",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("share_code", sa.String(32), nullable=False, unique=True),
        sa.Column(
            "form_id", sa.Integer,
            sa.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("instance_identifier", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    op.create_table(
        "user_role_states",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("saved_roles", sa.Text, nullable=True),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_user_role_states_guild_user"),
    )


def downgrade() -> None:
    op.drop_table("user_role_states")
    op.drop_table("form_share_links")
    op.drop_index("ix_form_workflows_status", table_name="form_response_workflows")
    op.drop_table("form_response_workflows")
    op.drop_index("ix_form_answers_question_id", table_name="form_answers")
    op.drop_index("ix_form_answers_response_id", table_name="form_answers")
    op.drop_table("form_answers")
    op.drop_index("ix_form_responses_submitted_at", table_name="form_responses")
    op.drop_index("ix_form_responses_user_id", table_name="form_responses")
    op.drop_index("ix_form_responses_form_id", table_name="form_responses")
    op.drop_table("form_responses")
    op.drop_index("ix_form_question_options_question_id", table_name="form_question_options")
    op.drop_table("form_question_options")
    op.drop_index(
        "ix_form_question_conditions_question_id", table_name="form_question_conditions"
    )
    op.drop_table("form_question_conditions")
    op.drop_index("ix_form_questions_parent", table_name="form_questions")
    op.drop_index("ix_form_questions_form_id", table_name="form_questions")
    op.drop_table("form_questions")
    op.drop_index("ix_forms_form_type", table_name="forms")
    op.drop_index("ix_forms_is_active", table_name="forms")
    op.drop_index("ix_forms_guild_id", table_name="forms")
    op.drop_table("forms")
