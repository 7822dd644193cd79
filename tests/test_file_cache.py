"""Tests for FileCache filename resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from citation_manager.file_cache import FileCache

from conftest import write_md


@pytest.fixture
def scoped_vault(vault: Path) -> Path:
    write_md(vault, "docs/guide.md", "# Guide\n")
    write_md(vault, "docs/README.md", "# Docs\n")
    write_md(vault, "notes/README.md", "# Notes\n")
    write_md(vault, "reference/version-notes.md", "# Version Notes\n")
    write_md(vault, "design/arch-parser.md", "# Parser\n")
    (vault / "notes" / "image.png").write_bytes(b"\x89PNG")
    return vault


@pytest.fixture
def cache(scoped_vault: Path) -> FileCache:
    file_cache = FileCache()
    file_cache.build_cache(scoped_vault)
    return file_cache


class TestBuildCache:
    """Tests for scanning the scope folder."""

    def test_not_built_until_scanned(self):
        """A fresh cache reports itself as unbuilt."""
        assert FileCache().is_built is False

    def test_stats(self, scoped_vault: Path):
        """Only .md files are indexed, and repeated names count as duplicates."""
        stats = FileCache().build_cache(scoped_vault)

        assert stats.total_files == 4
        assert stats.duplicates == 1
        assert stats.scope_folder == str(scoped_vault)

    def test_all_files_marks_duplicates(self, cache: FileCache):
        """get_all_files flags names that occur more than once."""
        by_name = {entry["filename"]: entry for entry in cache.get_all_files()}

        assert by_name["README.md"]["isDuplicate"] is True
        assert by_name["guide.md"]["isDuplicate"] is False

    def test_symlinked_scope_is_not_scanned_twice(self, scoped_vault: Path):
        """A symlink back into the tree does not duplicate every file."""
        (scoped_vault / "loop").symlink_to(scoped_vault / "docs", target_is_directory=True)

        stats = FileCache().build_cache(scoped_vault)

        assert stats.duplicates == 1


class TestResolveFile:
    """Tests for resolve_file."""

    def test_exact_match(self, cache: FileCache, scoped_vault: Path):
        """Unique filenames resolve to their absolute path."""
        result = cache.resolve_file("guide.md")

        assert result.found is True
        assert result.path == str(scoped_vault / "docs" / "guide.md")
        assert result.fuzzy_match is False

    def test_missing_extension(self, cache: FileCache, scoped_vault: Path):
        """A name without .md resolves to the markdown file."""
        result = cache.resolve_file("guide")

        assert result.found is True
        assert result.path == str(scoped_vault / "docs" / "guide.md")

    def test_duplicate(self, cache: FileCache):
        """Ambiguous names are reported, not guessed."""
        result = cache.resolve_file("README.md")

        assert result.found is False
        assert result.reason == "duplicate"
        assert "Multiple files" in result.message

    def test_double_extension(self, cache: FileCache):
        """guide.md.md is corrected to guide.md."""
        result = cache.resolve_file("guide.md.md")

        assert result.found is True
        assert result.fuzzy_match is True
        assert result.corrected_filename == "guide.md"
        assert "double extension" in result.message

    def test_common_typo(self, cache: FileCache, scoped_vault: Path):
        """Known misspellings are corrected."""
        result = cache.resolve_file("verson-notes.md")

        assert result.found is True
        assert result.corrected_filename == "version-notes.md"
        assert result.path == str(scoped_vault / "reference" / "version-notes.md")

    def test_architecture_prefix(self, cache: FileCache):
        """arch- prefixed names match architecture files with a different prefix."""
        result = cache.resolve_file("arch-parser-notes.md")

        assert result.found is True
        assert result.corrected_filename == "arch-parser.md"

    def test_not_found(self, cache: FileCache):
        """Unknown names give reason not_found."""
        result = cache.resolve_file("missing.md")

        assert result.found is False
        assert result.reason == "not_found"
        assert 'File "missing.md" not found in scope folder.' == result.message
