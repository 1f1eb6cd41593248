"""
formkeeper.bot.cogs.forms — Reviewer Slash Commands
====================================================

Discord slash commands for form reviewers:
- /form-list — list this server's forms
- /form-pending — list responses awaiting review
- /form-approve — approve a response (runs the form's approval action)
- /form-reject — reject a response
- /form-share — get the share code for a form

All commands require the configured reviewer_role_id and reply ephemerally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from formkeeper.database.models import Form, FormResponse
from formkeeper.services.embeds import build_review_embed
from formkeeper.services.forms_service import form_type_of

if TYPE_CHECKING:
    from formkeeper.bot.core import FormKeeperBot

logger = logging.getLogger(__name__)

MAX_LISTED = 15


def is_reviewer():
    """Decorator that checks if the user has the configured reviewer role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: FormKeeperBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        reviewer_role_id = bot.cfg.reviewer_role_id
        return any(role.id == reviewer_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


def _form_status(form: Form) -> str:
    if form.is_draft:
        return "draft"
    return "active" if form.is_active else "inactive"


class Forms(commands.Cog, name="Forms"):
    """Review and share forms from Discord."""

    def __init__(self, bot: FormKeeperBot) -> None:
        self.bot = bot

    async def _form_in_guild(self, interaction: discord.Interaction, form_id: int) -> Form | None:
        form = await self.bot.forms.get_form(form_id)
        if form is None or form.guild_id != interaction.guild_id:
            await interaction.response.send_message(
                f"❌ Form #{form_id} not found in this server.", ephemeral=True
            )
            return None
        return form

    async def _response_in_guild(
        self, interaction: discord.Interaction, response_id: int,
    ) -> tuple[FormResponse, Form] | None:
        response = await self.bot.forms.get_response(response_id)
        form = await self.bot.forms.get_form(response.form_id) if response is not None else None
        if form is None or form.guild_id != interaction.guild_id:
            await interaction.response.send_message(
                f"❌ Response #{response_id} not found in this server.", ephemeral=True
            )
            return None
        return response, form

    async def _reply_with_review(
        self,
        interaction: discord.Interaction,
        loaded: tuple[FormResponse, Form],
        message: str,
    ) -> None:
        response, form = loaded
        workflow = await self.bot.forms.get_workflow_by_response_id(response.id)
        embed = build_review_embed(form, response, workflow) if workflow is not None else None
        if embed is None:
            await interaction.response.send_message(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /form-list
    # -------------------------------------------------------------------
    @app_commands.command(name="form-list", description="List this server's forms.")
    @app_commands.describe(active_only="Only show forms accepting responses")
    @is_reviewer()
    async def form_list(self, interaction: discord.Interaction, active_only: bool = False) -> None:
        forms = await self.bot.forms.get_guild_forms(
            interaction.guild_id or 0, active_only=active_only
        )
        if not forms:
            await interaction.response.send_message("No forms found.", ephemeral=True)
            return

        lines = [
            f"**#{f.id}** {f.name} · {form_type_of(f).name.replace('_', ' ').title()}"
            f" · {_form_status(f)}"
            for f in forms[:MAX_LISTED]
        ]
        if len(forms) > MAX_LISTED:
            lines.append(f"…and {len(forms) - MAX_LISTED} more")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    # -------------------------------------------------------------------
    # /form-pending
    # -------------------------------------------------------------------
    @app_commands.command(name="form-pending", description="List responses awaiting review.")
    @app_commands.describe(form_id="The form to inspect")
    @is_reviewer()
    async def form_pending(self, interaction: discord.Interaction, form_id: int) -> None:
        form = await self._form_in_guild(interaction, form_id)
        if form is None:
            return

        pending = await self.bot.forms.get_pending_responses(form_id)
        if not pending:
            await interaction.response.send_message(
                f"✅ No pending responses for **{form.name}**.", ephemeral=True
            )
            return

        lines = [f"**{len(pending)}** pending for **{form.name}** (oldest first):"]
        for response in pending[:MAX_LISTED]:
            who = f"<@{response.user_id}>" if response.user_id is not None else "Anonymous"
            lines.append(f"• #{response.id} — {who}")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    # -------------------------------------------------------------------
    # /form-approve
    # -------------------------------------------------------------------
    @app_commands.command(name="form-approve", description="Approve a form response.")
    @app_commands.describe(response_id="Response to approve", notes="Optional reviewer notes")
    @is_reviewer()
    async def form_approve(
        self,
        interaction: discord.Interaction,
        response_id: int,
        notes: str | None = None,
    ) -> None:
        loaded = await self._response_in_guild(interaction, response_id)
        if loaded is None:
            return

        ok, invite_code = await self.bot.forms.approve_response(
            response_id, interaction.user.id, notes
        )
        if not ok:
            await interaction.response.send_message(
                f"❌ Response #{response_id} could not be approved (already reviewed?).",
                ephemeral=True,
            )
            return

        message = f"✅ Approved response #{response_id}."
        if invite_code:
            message += f"\nInvite: https://discord.gg/{invite_code}"
        await self._reply_with_review(interaction, loaded, message)

    # -------------------------------------------------------------------
    # /form-reject
    # -------------------------------------------------------------------
    @app_commands.command(name="form-reject", description="Reject a form response.")
    @app_commands.describe(response_id="Response to reject", notes="Optional reviewer notes")
    @is_reviewer()
    async def form_reject(
        self,
        interaction: discord.Interaction,
        response_id: int,
        notes: str | None = None,
    ) -> None:
        loaded = await self._response_in_guild(interaction, response_id)
        if loaded is None:
            return

        ok = await self.bot.forms.reject_response(response_id, interaction.user.id, notes)
        if not ok:
            await interaction.response.send_message(
                f"❌ Response #{response_id} could not be rejected (already reviewed?).",
                ephemeral=True,
            )
            return
        await self._reply_with_review(interaction, loaded, f"🚫 Rejected response #{response_id}.")

    # -------------------------------------------------------------------
    # /form-share
    # -------------------------------------------------------------------
    @app_commands.command(name="form-share", description="Get a share code for a form.")
    @app_commands.describe(form_id="The form to share")
    @is_reviewer()
    async def form_share(self, interaction: discord.Interaction, form_id: int) -> None:
        form = await self._form_in_guild(interaction, form_id)
        if form is None:
            return
        code = await self.bot.forms.generate_share_link(form_id)
        await interaction.response.send_message(
            f"🔗 Share code for **{form.name}**: `{code}`", ephemeral=True
        )


async def setup(bot: FormKeeperBot) -> None:
    await bot.add_cog(Forms(bot))
