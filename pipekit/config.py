"""Filesystem locations and environment-driven settings."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

log = logging.getLogger(__name__)

BASE_DIR: Path = Path.home() / ".pipe"
FILES_DIR: Path = BASE_DIR / "files"
HUB_DIR: Path = BASE_DIR / "hub"
STATE_DIR: Path = BASE_DIR / "state"
LOG_DIR: Path = BASE_DIR / "logs"
CACHE_DIR: Path = BASE_DIR / "cache"
CREDENTIALS_PATH: Path = BASE_DIR / "credentials.json"
ALIASES_PATH: Path = BASE_DIR / "aliases.json"

_INTEGER = re.compile(r"[+-]?\d+")


def ensure_dirs(pipeline_name: str) -> None:
    """Create the directories a pipeline run needs."""
    for directory in (FILES_DIR, Path(STATE_DIR) / pipeline_name, LOG_DIR, CACHE_DIR):
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            exc.add_note(f"creating directory {directory}")
            raise


def parse_rotate_env(env_name: str, default: int) -> int:
    """Read a rotation limit from the environment.

    Unset or empty gives ``default``; zero means disabled; negative or
    non-numeric values give ``default`` with a warning.
    """
    raw = os.environ.get(env_name, "")
    if raw == "":
        return default
    if _INTEGER.fullmatch(raw):
        value = int(raw)
        if value >= 0:
            return value
    log.warning(
        "invalid rotation limit, using default: env=%s value=%s default=%d",
        env_name,
        raw,
        default,
    )
    return default