"""
tests/test_role_actions.py — Role grant/revoke on review outcomes
=================================================================
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import discord

from conftest import make_guild, make_member, make_role, run_async
from formkeeper.database.models import RoleActionType
from formkeeper.services.role_actions import apply_role_action, audit_reason

REVIEWER_ID = 900


def _form(**overrides):
    fields = dict(id=3, name="Staff Application", allow_anonymous=False)
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _apply(guild, user_id, role_ids, action, *, form=None, is_approval=True):
    return run_async(apply_role_action(
        guild, user_id, role_ids, action,
        reviewer_id=REVIEWER_ID, is_approval=is_approval, form=form or _form(),
    ))


class TestAddRoles:
    def test_adds_only_missing_roles(self):
        held, wanted = make_role(10), make_role(11)
        member = make_member(5, roles=[held])
        guild = make_guild(members=[member], roles=[held, wanted])

        assert _apply(guild, 5, "10,11", RoleActionType.ADD_ROLES) is True
        member.add_roles.assert_awaited_once()
        assert member.add_roles.await_args.args == (wanted,)
        assert member.add_roles.await_args.kwargs["reason"] == (
            "Form response approved by reviewer 900 (form #3: Staff Application)"
        )

    def test_member_already_in_target_state(self):
        held = make_role(10)
        member = make_member(5, roles=[held])
        guild = make_guild(members=[member], roles=[held])

        assert _apply(guild, 5, "10", RoleActionType.ADD_ROLES) is True
        member.add_roles.assert_not_awaited()

    def test_unassignable_roles_filtered(self):
        everyone = make_role(1, default=True)
        managed = make_role(2, managed=True)
        too_high = make_role(3, position=10)
        member = make_member(5)
        guild = make_guild(members=[member], roles=[everyone, managed, too_high],
                           bot_top_position=10)

        # Unknown role 4 is dropped as well; nothing usable remains.
        assert _apply(guild, 5, "1,2,3,4", RoleActionType.ADD_ROLES) is False
        member.add_roles.assert_not_awaited()


class TestRemoveRoles:
    def test_removes_only_held_roles(self):
        held, absent = make_role(10), make_role(11)
        member = make_member(5, roles=[held])
        guild = make_guild(members=[member], roles=[held, absent])

        assert _apply(guild, 5, "10,11", RoleActionType.REMOVE_ROLES, is_approval=False) is True
        assert member.remove_roles.await_args.args == (held,)
        assert "rejected" in member.remove_roles.await_args.kwargs["reason"]


class TestGuards:
    def test_anonymous_form(self):
        member = make_member(5)
        guild = make_guild(members=[member], roles=[make_role(10)])
        assert _apply(guild, 5, "10", RoleActionType.ADD_ROLES,
                      form=_form(allow_anonymous=True)) is False
        member.add_roles.assert_not_awaited()

    def test_action_none(self):
        guild = make_guild(members=[make_member(5)], roles=[make_role(10)])
        assert _apply(guild, 5, "10", RoleActionType.NONE) is False

    def test_missing_guild_or_user(self):
        guild = make_guild(members=[make_member(5)], roles=[make_role(10)])
        assert _apply(None, 5, "10", RoleActionType.ADD_ROLES) is False
        assert _apply(guild, None, "10", RoleActionType.ADD_ROLES) is False

    def test_submitter_left_guild(self):
        guild = make_guild(roles=[make_role(10)])
        assert _apply(guild, 5, "10", RoleActionType.ADD_ROLES) is False

    def test_no_or_malformed_role_list(self):
        guild = make_guild(members=[make_member(5)], roles=[make_role(10)])
        assert _apply(guild, 5, None, RoleActionType.ADD_ROLES) is False
        assert _apply(guild, 5, " , ", RoleActionType.ADD_ROLES) is False
        assert _apply(guild, 5, "10,abc", RoleActionType.ADD_ROLES) is False

    def test_bot_without_manage_roles(self):
        member = make_member(5)
        guild = make_guild(members=[member], roles=[make_role(10)], manage_roles=False)
        assert _apply(guild, 5, "10", RoleActionType.ADD_ROLES) is False
        member.add_roles.assert_not_awaited()

    def test_forbidden_reported_as_failure(self):
        member = make_member(5)
        member.add_roles.side_effect = discord.Forbidden(
            MagicMock(status=403, reason="Forbidden"), "Missing Permissions"
        )
        guild = make_guild(members=[member], roles=[make_role(10)])
        assert _apply(guild, 5, "10", RoleActionType.ADD_ROLES) is False

    def test_unexpected_error_reported_as_failure(self):
        member = make_member(5)
        member.remove_roles.side_effect = RuntimeError("boom")
        role = make_role(10)
        member.roles = [role]
        guild = make_guild(members=[member], roles=[role])
        assert _apply(guild, 5, "10", RoleActionType.REMOVE_ROLES) is False


def test_audit_reason():
    assert audit_reason(_form(), 1, is_approval=False) == (
        "Form response rejected by reviewer 1 (form #3: Staff Application)"
    )
