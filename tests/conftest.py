"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of formkeeper.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402

from formkeeper.database.models import Base  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all FormKeeper tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop."""
    loop = asyncio.get_event_loop_policy().new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    return make_user_token(sub, username, is_admin=True)


def make_user_token(sub: str = "4242", username: str = "FixtureUser", *, is_admin: bool = False) -> str:
    import jwt

    from formkeeper.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


# ---------------------------------------------------------------------------
# Discord stand-ins
# ---------------------------------------------------------------------------
def make_role(role_id: int, *, position: int = 1, managed: bool = False,
              default: bool = False, name: str | None = None):
    role = MagicMock()
    role.id = role_id
    role.name = name or f"role-{role_id}"
    role.position = position
    role.managed = managed
    role.is_default.return_value = default
    return role


def make_member(user_id: int, roles=(), *, joined_at=None, created_at=None,
                premium_since=None, guild_avatar=None, permissions: int = 0):
    member = MagicMock()
    member.id = user_id
    member.roles = list(roles)
    member.joined_at = joined_at
    member.created_at = created_at
    member.premium_since = premium_since
    member.guild_avatar = guild_avatar
    member.guild_permissions = SimpleNamespace(value=permissions, manage_roles=False)
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    member.__str__.return_value = f"member-{user_id}"
    return member


def make_guild(guild_id: int = 1, *, members=(), roles=(), bot_top_position: int = 10,
               manage_roles: bool = True):
    """A guild whose cache holds *members* and *roles*; the bot sits at
    *bot_top_position* in the role hierarchy."""
    by_member = {m.id: m for m in members}
    by_role = {r.id: r for r in roles}

    guild = MagicMock()
    guild.id = guild_id
    guild.get_member.side_effect = by_member.get
    guild.get_role.side_effect = by_role.get
    guild.get_channel.return_value = None
    guild.me = SimpleNamespace(
        top_role=SimpleNamespace(position=bot_top_position),
        guild_permissions=SimpleNamespace(manage_roles=manage_roles),
    )
    guild.fetch_ban = AsyncMock()
    guild.unban = AsyncMock()
    guild.system_channel = None
    guild.text_channels = []
    return guild


def make_client(*guilds):
    by_id = {g.id: g for g in guilds}
    client = MagicMock()
    client.get_guild.side_effect = by_id.get
    client.get_user.return_value = None
    return client
