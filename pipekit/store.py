"""On-disk store for hub pipes: content-addressed blobs, tags, HEAD and index."""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import stat
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from . import config
from .models import HeadKind, HeadRef, Index, TagRecord

_SCHEMA_VERSION = 2


class StoreError(Exception):
    """Raised when the hub store is missing data or cannot be updated."""


@dataclass
class HubPipeInfo:
    """A hub pipe found in the local store."""

    owner: str
    name: str
    active_tag: str


def pipe_path(owner: str, name: str) -> Path:
    """Directory of a hub pipe."""
    return Path(config.HUB_DIR) / owner / name


def blob_dir(owner: str, name: str) -> Path:
    """Blob storage directory of a hub pipe."""
    return pipe_path(owner, name) / "blobs" / "sha256"


def blob_path(owner: str, name: str, sha256_hex: str) -> Path:
    """Path of one blob, named by its sha256 hex digest."""
    return blob_dir(owner, name) / sha256_hex


def tag_dir(owner: str, name: str) -> Path:
    """Tags directory of a hub pipe."""
    return pipe_path(owner, name) / "tags"


def tag_path(owner: str, name: str, tag: str) -> Path:
    """Path of a tag (a symlink, or a regular file when editable)."""
    return tag_dir(owner, name) / tag


def head_path(owner: str, name: str) -> Path:
    """Path of the HEAD symlink."""
    return pipe_path(owner, name) / "HEAD"


def content_path(owner: str, name: str, tag: str) -> Path:
    """Path to read a tag's content from; symlinks are followed on read."""
    return tag_path(owner, name, tag)


def index_path(owner: str, name: str) -> Path:
    """Path of the pipe's index.json."""
    return pipe_path(owner, name) / "index.json"


def compute_checksums(data: bytes) -> tuple[str, str]:
    """The sha256 and md5 hex digests of ``data``."""
    return hashlib.sha256(data).hexdigest(), hashlib.md5(data).hexdigest()


def _mkdir(directory: Path, what: str) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreError(f"creating {what}: {exc}") from exc


def _remove_quietly(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


def write_blob(owner: str, name: str, content: bytes) -> str:
    """Store ``content`` as a blob and return its sha256; existing blobs are kept."""
    sha, _ = compute_checksums(content)
    _mkdir(blob_dir(owner, name), "blob dir")
    target = blob_path(owner, name, sha)
    if target.exists():
        return sha
    tmp = target.with_name(target.name + ".tmp")
    try:
        tmp.write_bytes(content)
    except OSError as exc:
        raise StoreError(f"writing blob: {exc}") from exc
    try:
        os.replace(tmp, target)
    except OSError as exc:
        raise StoreError(f"renaming blob: {exc}") from exc
    return sha


def create_tag_symlink(owner: str, name: str, tag: str, sha256_hex: str) -> None:
    """Create or replace a tag as a relative symlink to its blob."""
    _mkdir(tag_dir(owner, name), "tags dir")
    path = tag_path(owner, name, tag)
    _remove_quietly(path)
    os.symlink(os.path.join("..", "blobs", "sha256", sha256_hex), path)


def create_editable_tag(owner: str, name: str, tag: str, content: bytes) -> None:
    """Write a tag as a regular file, an independent copy open for editing."""
    _mkdir(tag_dir(owner, name), "tags dir")
    path = tag_path(owner, name, tag)
    _remove_quietly(path)
    path.write_bytes(content)


def is_tag_editable(owner: str, name: str, tag: str) -> bool:
    """Whether the tag is a regular file rather than a symlink."""
    return stat.S_ISREG(os.lstat(tag_path(owner, name, tag)).st_mode)


def set_head(owner: str, name: str, tag: str) -> None:
    """Point HEAD at a tag."""
    path = head_path(owner, name)
    _remove_quietly(path)
    os.symlink(os.path.join("tags", tag), path)


def set_head_blob(owner: str, name: str, sha256_hex: str) -> None:
    """Point HEAD at an untagged blob."""
    path = head_path(owner, name)
    _remove_quietly(path)
    os.symlink(os.path.join("blobs", "sha256", sha256_hex), path)


def read_head_ref(owner: str, name: str) -> HeadRef:
    """What HEAD points to; without a HEAD link, the index's active tag."""
    try:
        target = os.readlink(head_path(owner, name))
    except OSError:
        index = _load_index_raw(owner, name)
        if index is None:
            raise StoreError(f"no HEAD or index for {owner}/{name}") from None
        return HeadRef(HeadKind.TAG, index.active_tag)
    if target.startswith(os.path.join("blobs", "sha256") + os.sep):
        return HeadRef(HeadKind.BLOB, os.path.basename(target))
    return HeadRef(HeadKind.TAG, os.path.basename(target))


def read_head(owner: str, name: str) -> str:
    """The tag name or blob digest HEAD points to."""
    return read_head_ref(owner, name).value


def _load_index_raw(owner: str, name: str) -> Index | None:
    try:
        raw = index_path(owner, name).read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StoreError(f"reading index: {exc}") from exc
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return Index.from_dict(data)
    except (ValueError, TypeError, AttributeError) as exc:
        raise StoreError(f"parsing index: {exc}") from exc


def load_index(owner: str, name: str) -> Index | None:
    """Read the pipe's index, migrating old layouts; None when there is none."""
    index = _load_index_raw(owner, name)
    if index is None or index.schema_version >= _SCHEMA_VERSION:
        return index
    try:
        migrate_v1_to_v2(owner, name)
    except (StoreError, OSError) as exc:
        raise StoreError(f"migrating to v2: {exc}") from exc
    return _load_index_raw(owner, name)


def save_index(index: Index) -> None:
    """Write the index atomically."""
    _mkdir(pipe_path(index.owner, index.name), "directory")
    text = json.dumps(index.to_dict(), indent=2)
    path = index_path(index.owner, index.name)
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except OSError as exc:
        raise StoreError(f"writing index: {exc}") from exc


def save_content(owner: str, name: str, tag: str, content: bytes) -> None:
    """Store content as a blob and point the tag at it."""
    create_tag_symlink(owner, name, tag, write_blob(owner, name, content))


def load_content(owner: str, name: str, tag: str) -> bytes:
    """Read a tag's content, following a symlink tag to its blob."""
    return tag_path(owner, name, tag).read_bytes()


def is_dirty(owner: str, name: str, tag: str) -> bool:
    """Whether the tag's content on disk differs from its index checksum.

    False when the tag has no record or its file is missing.
    """
    index = load_index(owner, name)
    if index is None or tag not in index.tags:
        return False
    try:
        content = load_content(owner, name, tag)
    except FileNotFoundError:
        return False
    return compute_checksums(content)[0] != index.tags[tag].sha256


def verify_checksum(owner: str, name: str, tag: str) -> None:
    """Raise StoreError unless the tag's content matches its index checksum."""
    index = load_index(owner, name)
    if index is None:
        raise StoreError(f"no index found for {owner}/{name}")
    record = index.tags.get(tag)
    if record is None:
        raise StoreError(f'tag "{tag}" not found in index for {owner}/{name}')
    try:
        content = load_content(owner, name, tag)
    except OSError as exc:
        raise StoreError(f"reading content: {exc}") from exc
    sha, _ = compute_checksums(content)
    if sha != record.sha256:
        raise StoreError(
            f"checksum mismatch for {owner}/{name}:{tag} — expected {record.sha256}, got {sha}"
        )


def update_index(
    owner: str, name: str, tag: str, sha256_hex: str, md5_hex: str, size_bytes: int
) -> None:
    """Record a pulled tag, make it active and point HEAD at it."""
    index = load_index(owner, name) or Index(owner=owner, name=name)
    index.schema_version = _SCHEMA_VERSION
    index.active_tag = tag
    index.tags[tag] = TagRecord(
        sha256=sha256_hex,
        md5=md5_hex,
        size_bytes=size_bytes,
        pulled_at=datetime.now().astimezone(),
    )
    try:
        set_head(owner, name, tag)
    except OSError as exc:
        raise StoreError(f"setting HEAD: {exc}") from exc
    save_index(index)


def delete_tag(owner: str, name: str, tag: str) -> None:
    """Remove a tag and its record; clears HEAD if it was active, then collects blobs."""
    index = load_index(owner, name)
    if index is None:
        raise StoreError(f"no index found for {owner}/{name}")
    if tag not in index.tags:
        raise StoreError(f'tag "{tag}" not found for {owner}/{name}')
    try:
        tag_path(owner, name, tag).unlink(missing_ok=True)
    except OSError as exc:
        raise StoreError(f'removing tag "{tag}": {exc}') from exc
    del index.tags[tag]
    if index.active_tag == tag:
        index.active_tag = ""
        _remove_quietly(head_path(owner, name))
    save_index(index)
    garbage_collect_blobs(owner, name)


def garbage_collect_blobs(owner: str, name: str) -> None:
    """Remove blobs that no tag and no detached HEAD refers to."""
    blobs_directory = blob_dir(owner, name)
    try:
        blobs = sorted(os.listdir(blobs_directory))
    except FileNotFoundError:
        return

    referenced: set[str] = set()
    try:
        head = read_head_ref(owner, name)
    except (StoreError, OSError):
        head = None
    if head is not None and head.kind == HeadKind.BLOB:
        referenced.add(head.value)

    tags_directory = tag_dir(owner, name)
    try:
        tag_names = os.listdir(tags_directory)
    except FileNotFoundError:
        return
    for tag_name in tag_names:
        path = tags_directory / tag_name
        try:
            referenced.add(os.path.basename(os.readlink(path)))
        except OSError:
            try:
                referenced.add(compute_checksums(path.read_bytes())[0])
            except OSError:
                continue

    for blob in blobs:
        if not blob or blob.endswith(".tmp") or blob in referenced:
            continue
        _remove_quietly(blobs_directory / blob)


def migrate_v1_to_v2(owner: str, name: str) -> None:
    """Convert flat ``{tag}.yaml`` files into blobs, tag links and HEAD. Idempotent."""
    index = _load_index_raw(owner, name)
    if index is None:
        return
    directory = pipe_path(owner, name)
    _mkdir(blob_dir(owner, name), "blob dir")
    _mkdir(tag_dir(owner, name), "tags dir")

    for tag, record in index.tags.items():
        old_path = directory / f"{tag}.yaml"
        try:
            content = old_path.read_bytes()
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise StoreError(f'reading old tag "{tag}": {exc}') from exc
        try:
            sha = write_blob(owner, name, content)
        except StoreError as exc:
            raise StoreError(f'writing blob for tag "{tag}": {exc}') from exc
        try:
            create_tag_symlink(owner, name, tag, sha)
        except (StoreError, OSError) as exc:
            raise StoreError(f'creating symlink for tag "{tag}": {exc}') from exc
        if not record.sha256:
            record.sha256, record.md5 = compute_checksums(content)
            record.size_bytes = len(content)
        _remove_quietly(old_path)

    if not index.active_tag and index.tags:
        index.active_tag = min(index.tags)
    if index.active_tag:
        try:
            set_head(owner, name, index.active_tag)
        except OSError as exc:
            raise StoreError(f"setting HEAD: {exc}") from exc

    index.schema_version = _SCHEMA_VERSION
    save_index(index)


def list_pipes() -> list[HubPipeInfo]:
    """All hub pipes in the store, sorted by owner/name."""
    hub = Path(config.HUB_DIR)
    try:
        owners = sorted(hub.iterdir())
    except FileNotFoundError:
        return []
    pipes = []
    for owner_dir in owners:
        if not owner_dir.is_dir():
            continue
        try:
            names = sorted(owner_dir.iterdir())
        except OSError:
            continue
        for name_dir in names:
            if not name_dir.is_dir():
                continue
            owner, name = owner_dir.name, name_dir.name
            try:
                index = load_index(owner, name)
            except (StoreError, OSError):
                continue
            if index is None:
                continue
            try:
                active = read_head(owner, name)
            except (StoreError, OSError):
                active = ""
            pipes.append(HubPipeInfo(owner, name, active or index.active_tag))
    pipes.sort(key=lambda info: f"{info.owner}/{info.name}")
    return pipes