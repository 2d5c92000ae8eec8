"""Validation and parsing helpers shared by the command-line commands."""

from __future__ import annotations

import re
import string

from . import auth
from .auth import AuthError, Credentials

_TAG = re.compile(r"[a-z0-9](?:[a-z0-9.\-]*[a-z0-9])?")
_CONSECUTIVE_SPECIAL = re.compile(r"[.\-]{2}")
_ALNUM = frozenset(string.ascii_letters + string.digits)
_LOWER_ALNUM = frozenset(string.ascii_lowercase + string.digits)
_VAR_KEY_CHARS = _ALNUM | {"-", "_"}


class UsageError(ValueError):
    """Raised when command-line input is malformed."""


def valid_tag(tag: str) -> None:
    """Raise UsageError unless ``tag`` is an acceptable tag name."""
    if not 0 < len(tag.encode("utf-8")) <= 128:
        raise UsageError("must be 1-128 characters")
    if not _TAG.fullmatch(tag):
        raise UsageError(
            "must start and end with a lowercase letter or digit, and contain only "
            "lowercase letters, digits, hyphens, and dots"
        )
    if _CONSECUTIVE_SPECIAL.search(tag):
        raise UsageError("must not contain consecutive hyphens or dots")


def valid_name(name: str) -> bool:
    """Letters, digits, hyphens and underscores; must not start with '-' or '_'."""
    return bool(name) and name[0] in _ALNUM and all(c in _VAR_KEY_CHARS for c in name)


def valid_owner(name: str) -> bool:
    """4-30 lowercase letters, digits, hyphens and dots, not starting with '-' or '.'."""
    if not 4 <= len(name.encode("utf-8")) <= 30:
        return False
    return name[0] in _LOWER_ALNUM and all(c in _LOWER_ALNUM or c in "-." for c in name)


def valid_var_key(key: str) -> bool:
    """Non-empty, only letters, digits, hyphens and underscores."""
    return bool(key) and all(c in _VAR_KEY_CHARS for c in key)


def parse_var_overrides(args: list[str] | None) -> dict[str, str]:
    """Parse ``KEY=value`` arguments into a mapping."""
    overrides: dict[str, str] = {}
    for arg in args or []:
        key, sep, value = arg.partition("=")
        if not sep:
            raise UsageError(f'invalid variable override "{arg}" — expected KEY=value')
        if not valid_var_key(key):
            raise UsageError(
                f'invalid variable key "{key}" — use only letters, digits, hyphens, '
                "and underscores"
            )
        overrides[key] = value
    return overrides


def friendly_error(err: BaseException) -> str:
    """A user-facing message for an error, explaining permission problems."""
    current: BaseException | None = err
    while current is not None:
        if isinstance(current, PermissionError):
            return "permission denied — check directory permissions for ~/.pipe"
        current = current.__cause__
    return str(err)


def short(s: str, n: int) -> str:
    """``s`` cut to at most ``n`` characters."""
    return s[:n]


def require_auth() -> Credentials:
    """Stored credentials, or AuthError when not logged in."""
    try:
        creds = auth.load_credentials()
    except (OSError, ValueError) as exc:
        raise AuthError(f"reading credentials: {exc}") from exc
    if creds is None:
        raise AuthError('not logged in — run "pipe login" first')
    return creds