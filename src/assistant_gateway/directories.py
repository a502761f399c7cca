from __future__ import annotations

import os
from dataclasses import dataclass

from assistant_gateway.errors import DirectoryNotFoundError, InvalidArgumentError


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    full_path: str


def list_directories(base_directory: str | None) -> list[DirectoryEntry]:
    """Immediate subdirectories of the base, dot entries excluded, sorted by name."""
    if not base_directory or not os.path.isdir(base_directory):
        raise InvalidArgumentError("Working directory not configured or does not exist")

    entries = [
        DirectoryEntry(name=entry.name, full_path=os.path.abspath(entry.path))
        for entry in os.scandir(base_directory)
        if entry.is_dir() and not entry.name.startswith(".")
    ]
    entries.sort(key=lambda e: e.name)
    return entries


def is_within(path: str, base_directory: str) -> bool:
    path = os.path.normcase(os.path.realpath(path))
    base = os.path.normcase(os.path.realpath(base_directory))
    return path == base or path.startswith(base.rstrip(os.sep) + os.sep)


def validate_switch_target(
    directory_path: str | None,
    base_directory: str | None,
    *,
    restrict_to_base: bool,
) -> str:
    if not directory_path or not directory_path.strip():
        raise InvalidArgumentError("DirectoryPath is required")
    path = os.path.abspath(os.path.expanduser(directory_path.strip()))
    if not os.path.isdir(path):
        raise DirectoryNotFoundError(directory_path.strip())
    if restrict_to_base and base_directory and not is_within(path, base_directory):
        raise InvalidArgumentError(f"Directory is outside the working directory: {path}")
    return path


def resolve_directory_choice(selection: str, entries: list[DirectoryEntry]) -> DirectoryEntry | None:
    """Pick an entry by 1-based index, case-insensitive name, or exact full path."""
    selection = selection.strip()
    if not selection:
        return None

    if selection.isdigit():
        index = int(selection)
        if 1 <= index <= len(entries):
            return entries[index - 1]
        return None

    folded = selection.casefold()
    for entry in entries:
        if entry.name.casefold() == folded:
            return entry

    if os.path.isabs(selection):
        target = os.path.normcase(os.path.abspath(selection))
        for entry in entries:
            if os.path.normcase(entry.full_path) == target:
                return entry

    return None
