"""Filename index for a scope folder.

The index maps a bare markdown filename to its absolute path. A filename seen
twice is recorded as a duplicate and never resolved, so ambiguity surfaces to
the user instead of being guessed away.
"""

from __future__ import annotations

import logging
import os
import re

from .config import COMMON_TYPOS
from .models import CamelModel

log = logging.getLogger(__name__)


class CacheStats(CamelModel):
    total_files: int
    duplicates: int
    scope_folder: str
    real_scope_folder: str


class FileResolution(CamelModel):
    """Outcome of FileCache.resolve_file().

    Fields:
        found: Whether a unique file was found
        path: Absolute path when found
        reason: 'duplicate', 'duplicate_fuzzy' or 'not_found' when not found
        fuzzy_match: True when the filename had to be corrected
        corrected_filename: The corrected filename for fuzzy matches
        message: Human-readable explanation for fuzzy matches and failures
    """

    found: bool
    path: str | None = None
    reason: str | None = None
    fuzzy_match: bool = False
    corrected_filename: str | None = None
    message: str | None = None


class FileCache:
    """In-memory filename → path index, built once per invocation."""

    def __init__(self) -> None:
        self._cache: dict[str, str] = {}
        self._duplicates: set[str] = set()
        self._built = False

    @property
    def is_built(self) -> bool:
        return self._built

    def build_cache(self, scope_folder: str | os.PathLike) -> CacheStats:
        """Index every .md file under scope_folder.

        Symlinks are resolved on the scope folder itself so files are not counted
        twice when reachable through both a link and its target.
        """
        self._cache.clear()
        self._duplicates.clear()

        absolute_scope = os.path.abspath(scope_folder)
        try:
            real_scope = os.path.realpath(absolute_scope, strict=True)
        except OSError:
            real_scope = absolute_scope

        self._scan_directory(real_scope, set())
        self._built = True

        if self._duplicates:
            log.warning("Found duplicate filenames in scope: %s", ", ".join(sorted(self._duplicates)))

        log.debug("Indexed %d files under %s", len(self._cache), real_scope)
        return CacheStats(
            total_files=len(self._cache),
            duplicates=len(self._duplicates),
            scope_folder=absolute_scope,
            real_scope_folder=real_scope,
        )

    def _scan_directory(self, dir_path: str, visited: set[str]) -> None:
        real_dir = os.path.realpath(dir_path)
        if real_dir in visited:
            return
        visited.add(real_dir)

        try:
            entries = sorted(os.listdir(dir_path))
        except OSError as e:
            log.warning("Could not read directory %s: %s", dir_path, e)
            return

        for entry in entries:
            full_path = os.path.join(dir_path, entry)
            if os.path.isdir(full_path):
                self._scan_directory(full_path, visited)
            elif entry.endswith(".md") and os.path.isfile(full_path):
                self._add_to_cache(entry, full_path)

    def _add_to_cache(self, filename: str, full_path: str) -> None:
        if filename in self._cache:
            self._duplicates.add(filename)
        else:
            self._cache[filename] = full_path

    def resolve_file(self, filename: str) -> FileResolution:
        """Resolve a bare filename: exact, then with .md appended, then fuzzy."""
        for candidate in (filename, re.sub(r"\.md$", "", filename) + ".md"):
            if candidate in self._cache:
                if candidate in self._duplicates:
                    return FileResolution(
                        found=False,
                        reason="duplicate",
                        message=(
                            f'Multiple files named "{candidate}" found in scope. '
                            "Use relative path for disambiguation."
                        ),
                    )
                return FileResolution(found=True, path=self._cache[candidate])

        fuzzy = self._find_fuzzy_match(filename)
        if fuzzy is not None:
            return fuzzy

        return FileResolution(
            found=False,
            reason="not_found",
            message=f'File "{filename}" not found in scope folder.',
        )

    def _find_fuzzy_match(self, filename: str) -> FileResolution | None:
        if filename.endswith(".md.md"):
            fixed = filename[: -len(".md")]
            if fixed in self._cache:
                if fixed in self._duplicates:
                    return FileResolution(
                        found=False,
                        reason="duplicate_fuzzy",
                        message=(
                            f'Found potential match "{fixed}" (corrected double .md extension), '
                            "but multiple files with this name exist. Use relative path for disambiguation."
                        ),
                    )
                return self._fuzzy_hit(fixed, f'Auto-corrected double extension: "{filename}" → "{fixed}"')

        for typo, replacement in COMMON_TYPOS.items():
            if typo not in filename:
                continue
            corrected = filename.replace(typo, replacement)
            if corrected in self._cache:
                if corrected in self._duplicates:
                    return FileResolution(
                        found=False,
                        reason="duplicate_fuzzy",
                        message=(
                            f'Found potential typo correction "{corrected}", but multiple files '
                            "with this name exist. Use relative path for disambiguation."
                        ),
                    )
                return self._fuzzy_hit(corrected, f'Auto-corrected typo: "{filename}" → "{corrected}"')

        if "arch-" in filename or "architecture" in filename:
            base = re.sub(r"\.md$", "", re.sub(r"^arch-", "", filename))
            for candidate in self._cache:
                if "arch" not in candidate or candidate in self._duplicates:
                    continue
                candidate_base = re.sub(r"\.md$", "", re.sub(r"^arch.*?-", "", candidate))
                if base in candidate_base or candidate_base in base:
                    return self._fuzzy_hit(
                        candidate, f'Found similar architecture file: "{filename}" → "{candidate}"'
                    )

        return None

    def _fuzzy_hit(self, corrected: str, message: str) -> FileResolution:
        log.debug(message)
        return FileResolution(
            found=True,
            path=self._cache[corrected],
            fuzzy_match=True,
            corrected_filename=corrected,
            message=message,
        )

    def get_all_files(self) -> list[dict]:
        return [
            {"filename": filename, "path": path, "isDuplicate": filename in self._duplicates}
            for filename, path in self._cache.items()
        ]

    def get_cache_stats(self) -> dict:
        return {
            "totalFiles": len(self._cache),
            "duplicateCount": len(self._duplicates),
            "duplicates": sorted(self._duplicates),
        }
