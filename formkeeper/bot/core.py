"""
formkeeper.bot.core — Bot Instance & Cog Loader
================================================

Defines :class:`FormKeeperBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   the :class:`~formkeeper.services.forms_service.FormsService`
   (``bot.forms``) so every Cog can reach them through ``self.bot``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Serves the dashboard API on ``dashboard_host:dashboard_port`` from the
   same event loop, so API submissions and reviews use the logged-in
   client.
4. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
"""

from __future__ import annotations

import asyncio
import logging
import os

import discord
import uvicorn
from discord.ext import commands
from sqlalchemy import Engine

from formkeeper.config import FormKeeperConfig
from formkeeper.services.forms_service import FormsService

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "formkeeper.bot.cogs.forms",
]


class FormKeeperBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`FormKeeperConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    turnstile_secret:
        Cloudflare Turnstile secret for forms that require a captcha.
    serve_api:
        Start the dashboard API alongside the gateway connection.
    """

    def __init__(
        self,
        cfg: FormKeeperConfig,
        engine: Engine,
        *,
        turnstile_secret: str | None = None,
        serve_api: bool = True,
    ) -> None:
        # Members intent is privileged: needed for role, tenure and boost
        # conditions and for membership checks on submission.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False

        super().__init__(command_prefix=cfg.bot_prefix, intents=intents)

        self.cfg = cfg
        self.engine = engine
        self.forms = FormsService(self, engine, cfg=cfg, turnstile_secret=turnstile_secret)
        self.serve_api = serve_api
        self.api_server: uvicorn.Server | None = None
        self._api_task: asyncio.Task[None] | None = None

    # -----------------------------------------------------------------------
    # Dashboard API
    # -----------------------------------------------------------------------
    def build_api_server(self) -> uvicorn.Server:
        """A uvicorn server for the dashboard API over this bot's service."""
        # Imported here: the API module refuses to load without JWT_SECRET.
        from formkeeper.api.main import create_app

        config = uvicorn.Config(
            create_app(forms=self.forms),
            host=self.cfg.dashboard_host,
            port=self.cfg.dashboard_port,
            log_config=None,
        )
        return uvicorn.Server(config)

    async def _serve_api(self) -> None:
        assert self.api_server is not None
        logger.info(
            "Serving dashboard API on %s:%d", self.cfg.dashboard_host, self.cfg.dashboard_port,
        )
        await self.api_server.serve()
        logger.info("Dashboard API stopped")

    async def stop_api(self) -> None:
        """Ask the API server to exit and wait for it."""
        if self.api_server is not None:
            self.api_server.should_exit = True
        if self._api_task is not None:
            await self._api_task
            self._api_task = None

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load Cog extensions and start the API.  A broken Cog is logged, not fatal."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        if self.serve_api:
            self.api_server = self.build_api_server()
            self._api_task = asyncio.create_task(self._serve_api(), name="formkeeper-api")

    async def close(self) -> None:
        await self.stop_api()
        await super().close()

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))
