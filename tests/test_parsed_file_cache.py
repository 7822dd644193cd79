"""Tests for ParsedFileCache: one parse per file, eviction on failure."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from citation_manager.parsed_document import ParsedDocument
from citation_manager.parsed_file_cache import ParsedFileCache
from citation_manager.parser import MarkdownParser

from conftest import GUIDE, write_md


class CountingParser(MarkdownParser):
    """MarkdownParser that counts parse_file calls and yields to the loop first."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def parse_file(self, file_path):
        self.calls += 1
        await asyncio.sleep(0)
        return await super().parse_file(file_path)


class TestResolveParsedFile:
    """Tests for ParsedFileCache.resolve_parsed_file."""

    @pytest.mark.asyncio
    async def test_returns_parsed_document(self, parsed_file_cache: ParsedFileCache, guide: Path):
        """Results are ParsedDocument facades."""
        document = await parsed_file_cache.resolve_parsed_file(guide)

        assert isinstance(document, ParsedDocument)
        assert document.file_path == str(guide)

    @pytest.mark.asyncio
    async def test_concurrent_calls_parse_once(self, guide: Path):
        """N concurrent requests for one path share a single parse and result."""
        parser = CountingParser()
        cache = ParsedFileCache(parser)

        results = await asyncio.gather(*(cache.resolve_parsed_file(guide) for _ in range(10)))

        assert parser.calls == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_sequential_calls_hit_cache(self, guide: Path):
        """A finished parse is reused."""
        parser = CountingParser()
        cache = ParsedFileCache(parser)

        first = await cache.resolve_parsed_file(guide)
        second = await cache.resolve_parsed_file(guide)

        assert first is second
        assert parser.calls == 1

    @pytest.mark.asyncio
    async def test_relative_and_absolute_paths_share_entry(
        self, guide: Path, monkeypatch: pytest.MonkeyPatch
    ):
        """Keys are normalized to absolute paths."""
        parser = CountingParser()
        cache = ParsedFileCache(parser)
        monkeypatch.chdir(guide.parent)

        relative = await cache.resolve_parsed_file("guide.md")
        absolute = await cache.resolve_parsed_file(guide)

        assert relative is absolute
        assert len(cache) == 1
        assert "guide.md" in cache

    @pytest.mark.asyncio
    async def test_failed_parse_is_evicted(self, vault: Path):
        """A failed parse does not poison the cache; a later call retries."""
        parser = CountingParser()
        cache = ParsedFileCache(parser)
        path = vault / "later.md"

        with pytest.raises(FileNotFoundError):
            await cache.resolve_parsed_file(path)
        assert path not in cache

        write_md(vault, "later.md", GUIDE)
        document = await cache.resolve_parsed_file(path)

        assert document.has_anchor("Intro")
        assert parser.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_failures_all_raise(self, vault: Path):
        """Every waiter on a failing parse sees the error."""
        cache = ParsedFileCache(CountingParser())
        path = vault / "missing.md"

        results = await asyncio.gather(
            *(cache.resolve_parsed_file(path) for _ in range(3)), return_exceptions=True
        )

        assert all(isinstance(result, FileNotFoundError) for result in results)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_clear(self, parsed_file_cache: ParsedFileCache, guide: Path):
        """clear() drops every entry."""
        await parsed_file_cache.resolve_parsed_file(guide)

        parsed_file_cache.clear()

        assert len(parsed_file_cache) == 0
