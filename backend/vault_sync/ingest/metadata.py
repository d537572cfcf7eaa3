"""Markdown note metadata: front matter, tags, wiki links, aliases."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vault_sync.core.logging import get_logger
from vault_sync.utils.time import mtime_ms

logger = get_logger(__name__)

_FRONT_MATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---", re.DOTALL)
_TAG_RE = re.compile(r"#([A-Za-z0-9/_-]+)")
_LINK_RE = re.compile(r"\[\[(.*?)(?:\|.*?)?\]\]")


@dataclass(slots=True)
class FileMetadata:
    path: str
    size: int = 0
    created: int | None = None
    last_modified: int | None = None
    front_matter: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)

    def as_chunk_metadata(self) -> dict[str, Any]:
        """Subset copied onto every chunk of the file."""
        payload: dict[str, Any] = {"tags": self.tags, "links": self.links}
        if self.aliases:
            payload["aliases"] = self.aliases
        for key in ("source", "file_id"):
            if key in self.front_matter:
                payload[key] = self.front_matter[key]
        return payload


def extract_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(front_matter, body)``; unparseable front matter yields ``{}``."""
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text
    body = text[match.end() :].lstrip("\r\n")
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Ignoring unparseable front matter: %s", exc)
        return {}, body
    return (data if isinstance(data, dict) else {}), body


def extract_tags(text: str, front_matter: dict[str, Any] | None = None) -> list[str]:
    tags: dict[str, None] = {}
    for match in _TAG_RE.finditer(text):
        tags[match.group(1)] = None
    raw = (front_matter or {}).get("tags")
    if raw:
        for tag in raw if isinstance(raw, list) else [raw]:
            if isinstance(tag, str):
                tags[tag[1:] if tag.startswith("#") else tag] = None
    return list(tags)


def extract_links(text: str) -> list[str]:
    links: dict[str, None] = {}
    for match in _LINK_RE.finditer(text):
        target = match.group(1).split("|")[0]
        target = target.split("#")[0].split("?")[0].strip()
        if target:
            links[target] = None
    return list(links)


def extract_aliases(front_matter: dict[str, Any] | None) -> list[str]:
    raw = (front_matter or {}).get("aliases")
    if isinstance(raw, list):
        return [alias for alias in raw if isinstance(alias, str)]
    if isinstance(raw, str):
        return [raw]
    return []


def extract_metadata(relative_path: str, text: str, file_path: Path | None = None) -> FileMetadata:
    front_matter, _ = extract_front_matter(text)
    metadata = FileMetadata(
        path=relative_path,
        front_matter=front_matter,
        tags=extract_tags(text, front_matter),
        aliases=extract_aliases(front_matter),
        links=extract_links(text),
    )
    if file_path is not None:
        stat = file_path.stat()
        metadata.size = stat.st_size
        metadata.last_modified = mtime_ms(stat.st_mtime)
        metadata.created = mtime_ms(getattr(stat, "st_birthtime", stat.st_ctime))
    else:
        metadata.size = len(text.encode("utf-8"))
    return metadata


__all__ = [
    "FileMetadata",
    "extract_front_matter",
    "extract_tags",
    "extract_links",
    "extract_aliases",
    "extract_metadata",
]
