"""
formkeeper.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **infrastructure-only** settings (Discord
identity, reviewer role, hosting instance).  Secrets such as the bot token,
database URL and captcha key live in the environment (``.env``).

Usage::

    from formkeeper.config import load_config

    cfg = load_config()            # reads ./config.yaml by default
    print(cfg.instance_identifier) # "main"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from formkeeper.constants import DEFAULT_INVITE_MAX_AGE, DEFAULT_INVITE_MAX_USES


@dataclass(frozen=True, slots=True)
class FormKeeperConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake (for slash-command scoping)

    # Reviewers
    reviewer_role_id: int  # Role required for review commands

    # Hosting
    instance_identifier: str  # Written into share links created by this instance
    dashboard_port: int
    dashboard_host: str = "0.0.0.0"  # Interface the bot serves the dashboard API on

    # Join-application invites (used when a form leaves them unset)
    default_invite_max_age: int = DEFAULT_INVITE_MAX_AGE
    default_invite_max_uses: int = DEFAULT_INVITE_MAX_USES


def load_config(path: str | Path = "config.yaml") -> FormKeeperConfig:
    """Read *path* and return a :class:`FormKeeperConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    return FormKeeperConfig(
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        reviewer_role_id=int(raw["reviewer_role_id"]),
        instance_identifier=str(raw.get("instance_identifier", "main")),
        dashboard_port=int(raw["dashboard_port"]),
        dashboard_host=str(raw.get("dashboard_host", "0.0.0.0")),
        default_invite_max_age=int(raw.get("default_invite_max_age", DEFAULT_INVITE_MAX_AGE)),
        default_invite_max_uses=int(raw.get("default_invite_max_uses", DEFAULT_INVITE_MAX_USES)),
    )
