"""Path exclusion rules shared by the change tracker and bulk reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath

from vault_sync.core.config import Settings


@dataclass(slots=True)
class ExclusionRules:
    """Workspace-relative POSIX paths are matched against four rule lists.

    The coordination document and its backup are always excluded, whatever
    the configured lists say.
    """

    folders: list[str] = field(default_factory=list)
    file_types: list[str] = field(default_factory=list)
    file_prefixes: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    coordination_path: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExclusionRules":
        return cls(
            folders=list(settings.excluded_folders),
            file_types=list(settings.excluded_file_types),
            file_prefixes=list(settings.excluded_file_prefixes),
            files=list(settings.excluded_files),
            coordination_path=settings.coordination_path,
        )

    def is_coordination_file(self, path: str) -> bool:
        if not self.coordination_path:
            return False
        normalized = normalize(path)
        doc = normalize(self.coordination_path)
        return normalized in (doc, f"{doc}.backup")

    def is_excluded(self, path: str) -> bool:
        normalized = normalize(path)
        if self.is_coordination_file(normalized):
            return True
        name = PurePosixPath(normalized).name
        if name in self.files:
            return True
        for folder in self.folders:
            prefix = folder.strip("/") + "/"
            if normalized.startswith(prefix):
                return True
        lowered = normalized.lower()
        if any(lowered.endswith(ext.lower()) for ext in self.file_types):
            return True
        return any(name.startswith(prefix) for prefix in self.file_prefixes if prefix)

    def filter(self, paths: list[str]) -> list[str]:
        return [path for path in paths if not self.is_excluded(path)]


def normalize(path: str) -> str:
    return path.replace("\\", "/").lstrip("/")


__all__ = ["ExclusionRules", "normalize"]
