"""Centralized config loading: read once at import time."""

import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env from project root (parent of nexus/)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_config = yaml.safe_load(CONFIG_PATH.read_text())


def get_config() -> dict:
    """Return the loaded config dictionary."""
    return _config


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a stderr handler to the ``nexus`` logger.

    Called by the embedding application, never on import. Level defaults to
    ``logging.level`` from config.
    """
    logger = logging.getLogger("nexus")
    level = level or get_config().get("logging", {}).get("level", "INFO")
    logger.setLevel(level.upper())

    if not any(getattr(h, "_nexus_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[NEXUS] %(levelname)s %(name)s: %(message)s"))
        handler._nexus_handler = True
        logger.addHandler(handler)

    return logger
