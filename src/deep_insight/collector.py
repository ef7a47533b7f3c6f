"""Note collection from a vault."""

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import InputError
from .models import Note, TestModeConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class Vault(Protocol):
    """Read-only access to a collection of markdown notes.

    Paths are vault-relative and use forward slashes.
    """

    def list_notes(self) -> list[str]:
        """Return the paths of all markdown notes."""
        ...

    def read_note(self, path: str) -> str:
        """Return the content of one note."""
        ...


class FolderVault:
    """Vault backed by a directory of .md files."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def list_notes(self) -> list[str]:
        paths = []
        for full_path in self.root.rglob("*.md"):
            rel_path = full_path.relative_to(self.root)
            # Skip hidden files and folders (.obsidian, .trash, ...)
            if any(part.startswith(".") for part in rel_path.parts):
                continue
            if full_path.is_file():
                paths.append(rel_path.as_posix())
        return sorted(paths)

    def read_note(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8", errors="replace")


def normalize_folder(folder: str) -> str:
    return folder.strip().strip("/").lower()


def is_excluded(path: str, exclude_folders: list[str] | tuple[str, ...]) -> bool:
    """Check whether a note lives under one of the excluded folders.

    Matching is case-insensitive and on whole path segments, so "archive"
    excludes "Archive/2023.md" but not "archived-ideas.md".
    """
    lowered = path.lower()
    for folder in exclude_folders:
        prefix = normalize_folder(folder)
        if not prefix:
            continue
        if lowered == prefix or lowered.startswith(prefix + "/"):
            return True
    return False


def collect_notes(
    vault: Vault,
    exclude_folders: list[str] | tuple[str, ...] = (),
    test_mode: TestModeConfig | None = None,
    skip_paths: list[str] | tuple[str, ...] = (),
) -> list[Note]:
    """Gather eligible notes from the vault in path order.

    Raises:
        InputError: If no notes remain after exclusions and test-mode caps.
    """
    all_paths = vault.list_notes()
    skip = {p.lower() for p in skip_paths}

    eligible = [
        path
        for path in sorted(all_paths)
        if not is_excluded(path, exclude_folders) and path.lower() not in skip
    ]
    logger.debug("%d of %d notes eligible after exclusions", len(eligible), len(all_paths))

    max_files = test_mode.max_files if test_mode and test_mode.enabled else None

    notes = []
    for path in eligible:
        if max_files and len(notes) >= max_files:
            logger.info("Test mode: stopped after %d notes", max_files)
            break
        content = vault.read_note(path)
        if content.strip():
            notes.append(Note(path=path, content=content))

    if not notes:
        if all_paths:
            raise InputError("No eligible notes found: every note is excluded or empty")
        raise InputError("No notes found in the vault")

    return notes
