"""Shared test fixtures for the citation-manager test suite.

Design:
- vault: empty temporary folder that markdown files are written into
- write_md: helper creating a markdown file (and parent folders) in the vault
- runner: CliRunner with proper isolation
- Async helpers: pytest-asyncio configured with function scope
"""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from citation_manager.parser import MarkdownParser
from citation_manager.parsed_file_cache import ParsedFileCache

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def write_md(root: Path, rel_path: str, content: str) -> Path:
    """Create a markdown file under root and return its path."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


GUIDE = """# Guide

## Intro

Welcome to the guide.

## Setup

Install the tool.

### Linux

Use the package manager.

## Usage

Run it. ^usage-block
"""


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's scope settings out of the tests."""
    monkeypatch.delenv("CITATION_MANAGER_SCOPE", raising=False)
    monkeypatch.delenv("CITATION_MANAGER_QUIET", raising=False)


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """Empty vault folder."""
    root = tmp_path.resolve() / "vault"
    root.mkdir()
    return root


@pytest.fixture
def guide(vault: Path) -> Path:
    """docs/guide.md with Intro/Setup/Linux/Usage sections and one block anchor."""
    return write_md(vault, "docs/guide.md", GUIDE)


@pytest.fixture
def parser() -> MarkdownParser:
    return MarkdownParser()


@pytest.fixture
def parsed_file_cache(parser: MarkdownParser) -> ParsedFileCache:
    return ParsedFileCache(parser)
