"""Cached step results stored as JSON files, and expiry parsing."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from pathlib import Path
from typing import Any

from . import config

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class CacheError(Exception):
    """Raised when a cache entry cannot be read or written."""


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def _parse_time(text: str) -> datetime:
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _LONG_FRACTION.sub(r"\1", text)
    return datetime.fromisoformat(text)


@dataclass
class SubEntry:
    """Cached output of one sub-run."""

    id: str
    output: str = ""
    sensitive: bool = False
    exit_code: int = 0


@dataclass
class Entry:
    """A cached step result."""

    step_id: str
    cached_at: datetime
    expires_at: datetime | None = None
    exit_code: int = 0
    output: str = ""
    sensitive: bool = False
    sub_outputs: list[SubEntry] = field(default_factory=list)
    run_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_id": self.step_id,
            "cached_at": _format_time(self.cached_at),
        }
        if self.expires_at is not None:
            data["expires_at"] = _format_time(self.expires_at)
        data["exit_code"] = self.exit_code
        if self.output:
            data["output"] = self.output
        data["sensitive"] = self.sensitive
        if self.sub_outputs:
            subs = []
            for sub in self.sub_outputs:
                item: dict[str, Any] = {"id": sub.id}
                if sub.output:
                    item["output"] = sub.output
                item["sensitive"] = sub.sensitive
                item["exit_code"] = sub.exit_code
                subs.append(item)
            data["sub_outputs"] = subs
        data["run_type"] = self.run_type
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        cached_raw = data.get("cached_at")
        expires_raw = data.get("expires_at")
        return cls(
            step_id=data.get("step_id", ""),
            cached_at=_parse_time(cached_raw) if cached_raw else _ZERO_TIME,
            expires_at=_parse_time(expires_raw) if expires_raw else None,
            exit_code=int(data.get("exit_code", 0)),
            output=data.get("output", ""),
            sensitive=bool(data.get("sensitive", False)),
            sub_outputs=[
                SubEntry(
                    id=item.get("id", ""),
                    output=item.get("output", ""),
                    sensitive=bool(item.get("sensitive", False)),
                    exit_code=int(item.get("exit_code", 0)),
                )
                for item in data.get("sub_outputs") or []
            ],
            run_type=data.get("run_type", ""),
        )


def _cache_path(step_id: str) -> Path:
    return Path(config.CACHE_DIR) / f"{step_id}.json"


def save(entry: Entry) -> None:
    """Write a cache entry atomically (temporary file, then rename)."""
    path = _cache_path(entry.step_id)
    try:
        text = json.dumps(entry.to_dict(), indent=2)
    except (TypeError, ValueError) as exc:
        raise CacheError(f"marshaling cache: {exc}") from exc
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise CacheError(f"writing cache tmp: {exc}") from exc
    try:
        os.replace(tmp, path)
    except OSError as exc:
        raise CacheError(f"renaming cache: {exc}") from exc


def load(step_id: str) -> Entry | None:
    """Read a cache entry; None when it does not exist."""
    path = _cache_path(step_id)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise CacheError(f"reading cache: {exc}") from exc
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return Entry.from_dict(data)
    except (ValueError, TypeError, AttributeError) as exc:
        raise CacheError(f'parsing cache for "{step_id}": {exc}') from exc


def is_valid(entry: Entry | None, now: datetime) -> bool:
    """Whether the entry is still valid at ``now``; no expiry means forever."""
    if entry is None:
        return False
    if entry.expires_at is None:
        return True
    return now < entry.expires_at


def clear(step_id: str) -> None:
    """Remove the cache entry for one step, if present."""
    try:
        _cache_path(step_id).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise CacheError(f'clearing cache for "{step_id}": {exc}') from exc


def _json_files() -> list[Path]:
    directory = Path(config.CACHE_DIR)
    try:
        names = sorted(os.listdir(directory))
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise CacheError(f"reading cache dir: {exc}") from exc
    return [directory / name for name in names if name.endswith(".json")]


def clear_all() -> None:
    """Remove every cache entry."""
    for path in _json_files():
        try:
            path.unlink()
        except OSError as exc:
            raise CacheError(f"removing {path.name}: {exc}") from exc


def list_entries() -> list[Entry]:
    """Return all readable cache entries; corrupt ones are skipped."""
    result = []
    for path in _json_files():
        try:
            entry = load(path.name[: -len(".json")])
        except CacheError:
            continue
        if entry is not None:
            result.append(entry)
    return result


_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"(\d*)(?:\.(\d*))?(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"1.5h"`` or ``"-30s"``."""
    rest = text
    sign = 1
    if rest.startswith(("+", "-")):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None or not (match.group(1) or match.group(2)):
            raise ValueError(f"invalid duration {text!r}")
        whole, frac, unit = match.groups()
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNIT_NANOS[unit]
        pos = match.end()
    nanos = int(total)
    return timedelta(microseconds=sign * (nanos // 1000))


def parse_expiry(expire_after: str, cached_at: datetime) -> datetime | None:
    """Compute when a cache entry expires.

    A duration (``"10m"``) is added to ``cached_at``; a wall-clock time
    (``"18:10 UTC"`` or ``"18:10"`` in ``cached_at``'s zone) gives its next
    occurrence; an empty string means no expiry and returns None.
    """
    if expire_after == "":
        return None
    try:
        return cached_at + parse_duration(expire_after)
    except ValueError:
        pass
    return _parse_absolute_time(expire_after, cached_at)


_CLOCK = re.compile(r"(\d{1,2}):(\d{2})")


def _parse_absolute_time(text: str, cached_at: datetime) -> datetime:
    text = text.strip()
    if cached_at.tzinfo is None:
        cached_at = cached_at.astimezone()
    if text.endswith(" UTC"):
        tz = timezone.utc
        time_part = text[: -len(" UTC")]
    else:
        tz = cached_at.tzinfo
        time_part = text

    match = _CLOCK.fullmatch(time_part)
    hour = int(match.group(1)) if match else -1
    minute = int(match.group(2)) if match else -1
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(
            f'invalid expiry "{text}": expected duration (e.g. 1h) or time (e.g. 18:10 UTC)'
        )

    local = cached_at.astimezone(tz)
    candidate = datetime(local.year, local.month, local.day, hour, minute, tzinfo=tz)
    if not candidate > cached_at:
        candidate += timedelta(hours=24)
    return candidate