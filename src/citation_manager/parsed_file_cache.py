"""Per-invocation cache of parsed documents.

Each file is parsed at most once however many coroutines ask for it at the same
time: the in-flight task is stored under the path key before anything awaits,
so later callers find it and await the same task. A failed parse removes its
entry so a later call can try again.
"""

from __future__ import annotations

import asyncio
import logging
import os

from .parsed_document import ParsedDocument
from .parser.markdown import MarkdownParser

log = logging.getLogger(__name__)


class ParsedFileCache:
    """Maps absolute file paths to (pending or finished) ParsedDocument tasks."""

    def __init__(self, parser: MarkdownParser) -> None:
        self.parser = parser
        self._cache: dict[str, asyncio.Task[ParsedDocument]] = {}

    @staticmethod
    def cache_key(file_path: str | os.PathLike) -> str:
        return os.path.abspath(file_path)

    def __contains__(self, file_path: str | os.PathLike) -> bool:
        return self.cache_key(file_path) in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    async def resolve_parsed_file(self, file_path: str | os.PathLike) -> ParsedDocument:
        """Return the ParsedDocument for file_path, parsing it only once.

        Raises:
            OSError: If the file cannot be read.
            ParseError: If the file is not valid UTF-8.
        """
        key = self.cache_key(file_path)
        task = self._cache.get(key)
        if task is None:
            log.debug("Parse cache miss: %s", key)
            task = asyncio.ensure_future(self._parse(key))
            self._cache[key] = task
            task.add_done_callback(lambda done, key=key: self._evict_failed(key, done))
        else:
            log.debug("Parse cache hit: %s", key)
        # One cancelled caller must not cancel the parse the others wait on
        return await asyncio.shield(task)

    async def _parse(self, key: str) -> ParsedDocument:
        return ParsedDocument(await self.parser.parse_file(key))

    def _evict_failed(self, key: str, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            if self._cache.get(key) is task:
                del self._cache[key]

    def clear(self) -> None:
        self._cache.clear()
