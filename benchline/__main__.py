"""
benchline.__main__ — Entry point for ``python -m benchline``
============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the API with uvicorn (the app's lifespan starts the
   payment-deadline sweep).

Run with::

    uv run python -m benchline
"""

from __future__ import annotations

import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from benchline.config import load_config
from benchline.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("benchline")


def main() -> None:
    """Bootstrap and serve the Benchline API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    if not os.getenv("JWT_SECRET"):
        logger.critical(
            "JWT_SECRET is not set.  "
            "Copy .env.example → .env and generate a secret."
        )
        sys.exit(1)

    # 2. Soft configuration.
    try:
        cfg = load_config()
    except FileNotFoundError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    logger.info("Config loaded — league %r", cfg.league_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    # 4. Serve.
    uvicorn.run("benchline.api.main:app", host="0.0.0.0", port=cfg.api_port)


if __name__ == "__main__":
    main()
