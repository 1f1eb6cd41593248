"""
formkeeper.services.role_actions — Role Grant/Revoke on Review Outcomes
========================================================================

Applies a form's configured role action to the submitter when a response
is approved or rejected.  Every guard failure is logged and returns
``False`` before any role is touched; Discord errors are caught and
likewise reported as ``False``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from formkeeper.constants import parse_id_list
from formkeeper.database.models import RoleActionType

if TYPE_CHECKING:
    from formkeeper.database.models import Form

logger = logging.getLogger(__name__)


def audit_reason(form: Form, reviewer_id: int, *, is_approval: bool) -> str:
    outcome = "approved" if is_approval else "rejected"
    return f"Form response {outcome} by reviewer {reviewer_id} (form #{form.id}: {form.name})"


def _usable_roles(guild: discord.Guild, role_ids: list[int], form: Form) -> list[discord.Role]:
    """Resolve *role_ids*, dropping any the bot cannot or must not assign."""
    me = guild.me
    usable: list[discord.Role] = []
    for role_id in role_ids:
        role = guild.get_role(role_id)
        if role is None:
            logger.warning("Form %d: role %d not found in guild %d", form.id, role_id, guild.id)
            continue
        if role.is_default():
            logger.warning("Form %d: refusing to manage @everyone", form.id)
            continue
        if role.managed:
            logger.warning("Form %d: role %s is managed by an integration", form.id, role.name)
            continue
        if role.position >= me.top_role.position:
            logger.warning(
                "Form %d: role %s is not below the bot's highest role", form.id, role.name
            )
            continue
        usable.append(role)
    return usable


async def apply_role_action(
    guild: discord.Guild | None,
    user_id: int | None,
    role_ids_csv: str | None,
    action_type: RoleActionType,
    *,
    reviewer_id: int,
    is_approval: bool,
    form: Form,
) -> bool:
    """Grant or revoke the configured roles on the submitter.

    ``ADD_ROLES`` only grants roles the member lacks and ``REMOVE_ROLES``
    only revokes roles the member holds; a member already in the target
    state is a successful no-op.
    """
    if form.allow_anonymous:
        logger.warning("Form %d is anonymous; skipping role action", form.id)
        return False
    if action_type == RoleActionType.NONE:
        return False
    if guild is None or user_id is None:
        logger.warning("Form %d: guild or submitter unavailable for role action", form.id)
        return False

    member = guild.get_member(user_id)
    if member is None:
        logger.warning("Form %d: user %d is not a member of guild %d", form.id, user_id, guild.id)
        return False

    try:
        role_ids = parse_id_list(role_ids_csv)
    except ValueError:
        logger.error("Form %d: malformed role id list %r", form.id, role_ids_csv)
        return False
    if not role_ids:
        logger.warning("Form %d: no roles configured for role action", form.id)
        return False

    roles = _usable_roles(guild, role_ids, form)
    if not roles:
        logger.warning("Form %d: no assignable roles left after validation", form.id)
        return False

    if not guild.me.guild_permissions.manage_roles:
        logger.error("Bot lacks Manage Roles in guild %d; role action for form %d aborted",
                     guild.id, form.id)
        return False

    reason = audit_reason(form, reviewer_id, is_approval=is_approval)
    held = {role.id for role in member.roles}

    try:
        if action_type == RoleActionType.ADD_ROLES:
            to_add = [role for role in roles if role.id not in held]
            if to_add:
                await member.add_roles(*to_add, reason=reason)
            logger.info("Added %d role(s) to user %d for form %d", len(to_add), user_id, form.id)
        elif action_type == RoleActionType.REMOVE_ROLES:
            to_remove = [role for role in roles if role.id in held]
            if to_remove:
                await member.remove_roles(*to_remove, reason=reason)
            logger.info("Removed %d role(s) from user %d for form %d",
                        len(to_remove), user_id, form.id)
        else:
            logger.warning("Form %d: unknown role action type %r", form.id, action_type)
            return False
    except discord.Forbidden:
        logger.error("Missing permission to change roles of user %d for form %d", user_id, form.id)
        return False
    except Exception:
        logger.exception("Role action for user %d on form %d failed", user_id, form.id)
        return False

    return True
