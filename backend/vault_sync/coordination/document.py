"""Serialization of the coordination document to and from Markdown.

The on-disk form is a YAML front matter block holding the structured record,
followed by a short human-readable body. Replication layers treat the file
as an ordinary note, so the body explains what it is and lists known devices.
"""

from __future__ import annotations

import re
from typing import Any

import yaml
from pydantic import ValidationError

from vault_sync.core.errors import CoordinationDocumentError, SyncErrorType
from vault_sync.models.coordination import CoordinationDocument
from vault_sync.utils.time import ms_to_datetime

_FRONT_MATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n?", re.DOTALL)
_LEGACY_TABLE_HEADER = "| File Path | Last Modified |"
_REQUIRED_HEADER_FIELDS = ("workspace_id", "devices", "last_global_sync")

BODY_INTRO = (
    "# vault-sync coordination\n\n"
    "This note is maintained automatically by vault-sync to coordinate devices\n"
    "sharing this workspace. Edits made by hand will be overwritten.\n"
)


def render_document(document: CoordinationDocument) -> str:
    payload = document.model_dump(mode="json")
    front_matter = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    return f"---\n{front_matter}---\n\n{_render_body(document)}"


def _render_body(document: CoordinationDocument) -> str:
    lines = [BODY_INTRO, "## Devices", "", "| Device | Platform | Last Seen |", "|---|---|---|"]
    for device in document.header.devices.values():
        seen = ms_to_datetime(device.last_seen)
        lines.append(f"| {device.name} | {device.platform} | {seen.isoformat() if seen else '-'} |")
    lines.append("")
    lines.append(f"Sync state: **{document.header.sync_state.value}**")
    open_conflicts = len(document.open_conflicts())
    if open_conflicts:
        lines.append(f"Open conflicts: {open_conflicts}")
    return "\n".join(lines) + "\n"


def split_front_matter(text: str) -> tuple[str | None, str]:
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end() :]


def parse_document(text: str, expected_workspace_id: str | None = None) -> CoordinationDocument:
    """Parse and validate document text.

    Raises ``CoordinationDocumentError`` tagged with the failure kind; only
    ``DEVICE_MISMATCH`` (document belongs to another workspace) is not
    repairable locally.
    """
    if not text.strip():
        raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_CORRUPT, "coordination document is empty")
    raw_front, body = split_front_matter(text)
    if raw_front is None:
        if _LEGACY_TABLE_HEADER in body:
            raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_OUTDATED, "legacy table format")
        raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_CORRUPT, "missing front matter block")

    try:
        data = yaml.safe_load(raw_front)
    except yaml.YAMLError as exc:
        raise CoordinationDocumentError(
            SyncErrorType.SYNC_FILE_CORRUPT, f"front matter is not valid YAML: {exc}"
        ) from exc

    if not isinstance(data, dict):
        raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_CORRUPT, "front matter is not a mapping")
    if is_legacy_format(data, body):
        raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_OUTDATED, "legacy sync file format")

    missing = missing_header_fields(data)
    if missing:
        raise CoordinationDocumentError(
            SyncErrorType.SYNC_FILE_CORRUPT,
            "header is missing required fields",
            details={"missing": missing},
        )

    try:
        document = CoordinationDocument.model_validate(data)
    except ValidationError as exc:
        raise CoordinationDocumentError(
            SyncErrorType.SYNC_FILE_CORRUPT,
            "coordination document failed validation",
            details={"errors": exc.errors(include_url=False)},
        ) from exc

    if expected_workspace_id and document.header.workspace_id != expected_workspace_id:
        raise CoordinationDocumentError(
            SyncErrorType.DEVICE_MISMATCH,
            "coordination document belongs to another workspace",
            details={
                "expected": expected_workspace_id,
                "found": document.header.workspace_id,
            },
        )
    return document


def is_legacy_format(data: dict[str, Any], body: str = "") -> bool:
    if "header" in data:
        return False
    return "last_sync" in data or _LEGACY_TABLE_HEADER in body


def missing_header_fields(data: dict[str, Any]) -> list[str]:
    header = data.get("header")
    if not isinstance(header, dict):
        return ["header"]
    missing = [name for name in _REQUIRED_HEADER_FIELDS if header.get(name) in (None, "")]
    if "devices" not in missing and not isinstance(header.get("devices"), dict):
        missing.append("devices")
    return missing


__all__ = [
    "render_document",
    "parse_document",
    "split_front_matter",
    "is_legacy_format",
    "missing_header_fields",
]
