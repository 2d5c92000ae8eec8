"""Records kept in a hub pipe's index and the shapes of hub API payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_FRACTION = re.compile(r"\.(\d+)")


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    text = value.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_time(text: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp; empty or the zero time gives None."""
    if not text:
        return None
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed == _ZERO_TIME:
        return None
    return parsed


class HeadKind(StrEnum):
    """What HEAD points to."""

    TAG = "tag"
    BLOB = "blob"


@dataclass
class HeadRef:
    """HEAD of a hub pipe: a named tag or an untagged blob (sha256 hex)."""

    kind: HeadKind
    value: str


@dataclass
class TagRecord:
    """Metadata about a pulled or created tag."""

    sha256: str = ""
    md5: str = ""
    size_bytes: int = 0
    pulled_at: datetime | None = None
    created_at: datetime | None = None
    editable: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sha256": self.sha256,
            "md5": self.md5,
            "size_bytes": self.size_bytes,
        }
        if self.pulled_at is not None:
            data["pulled_at"] = _format_time(self.pulled_at)
        if self.created_at is not None:
            data["created_at"] = _format_time(self.created_at)
        if self.editable:
            data["editable"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TagRecord:
        return cls(
            sha256=data.get("sha256") or "",
            md5=data.get("md5") or "",
            size_bytes=int(data.get("size_bytes") or 0),
            pulled_at=_parse_time(data.get("pulled_at")),
            created_at=_parse_time(data.get("created_at")),
            editable=bool(data.get("editable", False)),
        )


@dataclass
class Index:
    """Pulled tags and the active tag of a hub pipe."""

    schema_version: int = 0
    owner: str = ""
    name: str = ""
    active_tag: str = ""
    tags: dict[str, TagRecord] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "owner": self.owner,
            "name": self.name,
            "active_tag": self.active_tag,
            "tags": {tag: record.to_dict() for tag, record in self.tags.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Index:
        return cls(
            schema_version=int(data.get("schema_version") or 0),
            owner=data.get("owner") or "",
            name=data.get("name") or "",
            active_tag=data.get("active_tag") or "",
            tags={
                tag: TagRecord.from_dict(record)
                for tag, record in (data.get("tags") or {}).items()
            },
        )


@dataclass
class PipeMetadata:
    """Pipe metadata returned by the hub."""

    id: str = ""
    owner: str = ""
    name: str = ""
    description: str = ""
    is_public: bool = False
    is_mutable: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipeMetadata:
        return cls(
            id=data.get("id") or "",
            owner=data.get("owner") or "",
            name=data.get("name") or "",
            description=data.get("description") or "",
            is_public=bool(data.get("is_public", False)),
            is_mutable=bool(data.get("isMutable", False)),
        )


@dataclass
class TagDetail:
    """Tag metadata returned by the hub."""

    tag: str = ""
    digest: str = ""
    sha256: str = ""
    md5: str = ""
    size_bytes: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TagDetail:
        return cls(
            tag=data.get("tag") or "",
            digest=data.get("digest") or "",
            sha256=data.get("sha256") or "",
            md5=data.get("md5") or "",
            size_bytes=int(data.get("size_bytes") or 0),
        )


@dataclass
class CreatePipeRequest:
    """Body for creating a pipe on the hub."""

    name: str
    description: str = ""
    is_public: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        data["is_public"] = self.is_public
        return data


@dataclass
class PushResponse:
    """Hub reply after pushing content; ``created`` is False when deduplicated."""

    digest: str = ""
    tags: list[str] = field(default_factory=list)
    size_bytes: int = 0
    created: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushResponse:
        return cls(
            digest=data.get("digest") or "",
            tags=list(data.get("tags") or []),
            size_bytes=int(data.get("sizeBytes") or 0),
            created=bool(data.get("created", False)),
        )