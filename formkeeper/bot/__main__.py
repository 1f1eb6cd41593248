"""
formkeeper.bot.__main__ — Entry point for ``python -m formkeeper.bot``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the FormKeeperBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).  The dashboard
   API is served from the same loop once the bot logs in.
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from formkeeper.bot.core import FormKeeperBot
from formkeeper.config import load_config
from formkeeper.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("formkeeper")


def main() -> None:
    """Bootstrap and run the FormKeeper bot."""
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    cfg = load_config()
    logger.info("Config loaded — instance: %s", cfg.instance_identifier)

    engine = create_db_engine()
    init_db(engine)

    bot = FormKeeperBot(cfg=cfg, engine=engine, turnstile_secret=os.getenv("TURNSTILE_SECRET"))

    logger.info("Starting FormKeeper bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
