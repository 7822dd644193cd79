"""Tests for CitationValidator.

Coverage:
- Pattern classification and the caret/emphasis/wiki rules
- Cross-document resolution: direct, fuzzy via FileCache, folders, missing files
- Anchor checks and their suggestions
- Path conversion round trip
"""

from __future__ import annotations

from pathlib import Path

import pytest

from citation_manager.errors import CitationFileNotFoundError
from citation_manager.file_cache import FileCache
from citation_manager.parsed_file_cache import ParsedFileCache
from citation_manager.parser import MarkdownParser
from citation_manager.validator import (
    BETTER_FORMAT_PREFIX,
    CitationValidator,
    PatternType,
    classify_pattern,
    clean_markdown_for_comparison,
    encode_uri_component,
)

from conftest import write_md

# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def file_cache() -> FileCache:
    return FileCache()


@pytest.fixture
def validator(file_cache: FileCache) -> CitationValidator:
    return CitationValidator(ParsedFileCache(MarkdownParser()), file_cache)


@pytest.fixture
def other(vault: Path) -> Path:
    return write_md(vault, "docs/other.md", "# Intro\n\nHello.\n\n# Setup\n\nSteps. ^step-one\n")


async def validate_source(validator: CitationValidator, vault: Path, content: str, name: str = "docs/index.md"):
    """Write a source file with content and return its validated links."""
    source = write_md(vault, name, content)
    result = await validator.validate_file(source)
    return result.links


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class TestHelpers:
    """Tests for module-level helpers."""

    def test_encode_uri_component(self):
        """Spaces and colons are encoded, unreserved marks are not."""
        assert encode_uri_component("Getting Started: v1.0 (beta)") == "Getting%20Started%3A%20v1.0%20(beta)"

    def test_clean_markdown_for_comparison(self):
        """Inline markup is stripped."""
        assert clean_markdown_for_comparison("**Bold** `code` ==mark== [l](x.md)") == "Bold code mark l"

    def test_classify_pattern(self):
        """Classification order: caret, emphasis, cross-document, wiki, unknown."""
        parser = MarkdownParser()
        content = "\n\n".join(
            [
                "Req ^FR1",
                "[c](a.md#==**Comp**==)",
                "[x](a.md#Intro)",
                "[[#Intro|intro]]",
                "[i](#Intro)",
            ]
        )
        links = parser.parse_content(content + "\n", "/vault/index.md").links
        patterns = {link.full_match: classify_pattern(link) for link in links}

        assert patterns == {
            "^FR1": PatternType.CARET,
            "[c](a.md#==**Comp**==)": PatternType.EMPHASIS,
            "[x](a.md#Intro)": PatternType.CROSS_DOCUMENT,
            "[[#Intro|intro]]": PatternType.WIKI,
            "[i](#Intro)": PatternType.UNKNOWN,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────────────────────


class TestScenarios:
    """End-to-end validation scenarios."""

    @pytest.mark.asyncio
    async def test_valid_cross_document_link(self, validator, vault: Path, other: Path):
        """A link to an existing heading in an existing file is valid."""
        links = await validate_source(validator, vault, "[see](other.md#Intro)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_missing_target_file(self, validator, vault: Path):
        """A link to a missing file is an error with debug context."""
        links = await validate_source(validator, vault, "[see](other.md#Intro)\n")

        validation = links[0].validation
        assert validation.status == "error"
        assert validation.error.startswith("File not found:")
        assert "Tried:" in validation.suggestion

    @pytest.mark.asyncio
    async def test_fuzzy_match_in_other_directory(self, validator, file_cache, vault: Path):
        """A typo resolved through the FileCache is a warning with a path conversion."""
        write_md(vault, "reference/version-notes.md", "# Intro\n")
        file_cache.build_cache(vault)

        links = await validate_source(validator, vault, "[v](verson-notes.md#Intro)\n")

        validation = links[0].validation
        assert validation.status == "warning"
        assert validation.path_conversion.original == "verson-notes.md#Intro"
        assert validation.path_conversion.recommended == "../reference/version-notes.md#Intro"
        assert "different directory" in validation.suggestion

    @pytest.mark.asyncio
    async def test_missing_anchor_lists_headers(self, validator, vault: Path, other: Path):
        """An unknown anchor is an error that lists the available headers."""
        links = await validate_source(validator, vault, "[x](other.md#non-existent)\n")

        validation = links[0].validation
        assert validation.status == "error"
        assert validation.error == "Anchor not found: #non-existent"
        assert "Available headers:" in validation.suggestion
        assert '"Intro" → #Intro' in validation.suggestion
        assert '"Setup" → #Setup' in validation.suggestion
        assert "Available block refs: ^step-one" in validation.suggestion

    @pytest.mark.asyncio
    async def test_caret_and_semantic_version(self, validator, vault: Path):
        """^FR1 is a valid caret reference; ^14.0.1 is not a link at all."""
        links = await validate_source(validator, vault, "Requirement ^FR1\n\nRequires node ^14.0.1\n")

        assert [link.full_match for link in links] == ["^FR1"]
        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_round_trip_path_resolution(self, validator, file_cache, vault: Path):
        """Following a recommended path gives a valid link without a conversion."""
        write_md(vault, "reference/version-notes.md", "# Intro\n")
        file_cache.build_cache(vault)
        links = await validate_source(validator, vault, "[v](version-notes.md#Intro)\n")
        recommended = links[0].validation.path_conversion.recommended

        fixed = await validate_source(validator, vault, f"[v]({recommended})\n", name="docs/fixed.md")

        assert fixed[0].validation.status == "valid"
        assert getattr(fixed[0].validation, "path_conversion", None) is None


# ─────────────────────────────────────────────────────────────────────────────
# Cross-Document Details
# ─────────────────────────────────────────────────────────────────────────────


class TestCrossDocument:
    """Tests for resolution and anchor matching details."""

    @pytest.mark.asyncio
    async def test_link_without_anchor(self, validator, vault: Path, other: Path):
        """A whole-file link only needs the file."""
        links = await validate_source(validator, vault, "[o](other.md)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_block_reference(self, validator, vault: Path, other: Path):
        """#^id matches the block anchor id."""
        links = await validate_source(validator, vault, "[s](other.md#^step-one)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_url_encoded_anchor(self, validator, vault: Path):
        """%20-encoded anchors match headings with spaces."""
        write_md(vault, "docs/other.md", "## Getting Started\n")

        links = await validate_source(validator, vault, "[g](other.md#Getting%20Started)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_raw_anchor_with_spaces(self, validator, vault: Path):
        """Raw heading text with spaces is valid."""
        write_md(vault, "docs/other.md", "## Getting Started\n")

        links = await validate_source(validator, vault, "[g](other.md#Getting Started)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_markdown_in_heading(self, validator, vault: Path):
        """Inline markup in headings does not block a match."""
        write_md(vault, "docs/other.md", "## **Bold** Title\n")

        links = await validate_source(validator, vault, "[b](other.md#Bold%20Title)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_kebab_case_anchor_suggests_raw_header(self, validator, vault: Path):
        """Kebab-case anchors are errors that name the raw header form."""
        write_md(vault, "docs/other.md", "## Getting Started\n")

        links = await validate_source(validator, vault, "[g](other.md#getting-started)\n")

        validation = links[0].validation
        assert validation.status == "error"
        assert validation.suggestion == f"{BETTER_FORMAT_PREFIX}Getting%20Started"

    @pytest.mark.asyncio
    async def test_emphasis_anchor(self, validator, vault: Path, other: Path):
        """==**Name**== anchors are checked by shape."""
        links = await validate_source(validator, vault, "[c](other.md#==**Parser**==)\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_link_to_folder(self, validator, vault: Path):
        """A link to a directory is a warning."""
        (vault / "docs" / "assets").mkdir(parents=True)

        links = await validate_source(validator, vault, "[a](assets/)\n")

        validation = links[0].validation
        assert validation.status == "warning"
        assert validation.error == "Link points to a folder, not a file: assets/"

    @pytest.mark.asyncio
    async def test_vault_absolute_path(self, validator, vault: Path):
        """docs/file.md style paths are found by walking up from the source."""
        write_md(vault, "reference/api.md", "# API\n")

        links = await validate_source(validator, vault, "[api](reference/api.md#API)\n")

        assert links[0].validation.status == "warning"
        assert links[0].validation.path_conversion.recommended == "../reference/api.md#API"

    @pytest.mark.asyncio
    async def test_duplicate_filename_in_scope(self, validator, file_cache, vault: Path):
        """Ambiguous filenames explain the duplicate in the suggestion."""
        write_md(vault, "a/README.md", "# A\n")
        write_md(vault, "b/README.md", "# B\n")
        file_cache.build_cache(vault)

        links = await validate_source(validator, vault, "[r](README.md)\n")

        validation = links[0].validation
        assert validation.status == "error"
        assert "Multiple files" in validation.suggestion

    @pytest.mark.asyncio
    async def test_unreadable_target(self, validator, vault: Path):
        """A target that cannot be decoded is reported on the link."""
        (vault / "docs").mkdir(parents=True)
        (vault / "docs" / "other.md").write_bytes(b"# Intro\n\xff\n")

        links = await validate_source(validator, vault, "[x](other.md#Intro)\n")

        assert links[0].validation.status == "error"
        assert links[0].validation.suggestion.startswith("Error reading target file:")

    @pytest.mark.asyncio
    async def test_missing_anchor_in_other_directory(self, validator, file_cache, vault: Path):
        """A bad anchor on a file found elsewhere is one warning that keeps the path conversion."""
        target = write_md(vault, "reference/notes.md", "# Intro\n")
        file_cache.build_cache(vault)

        links = await validate_source(validator, vault, "[n](notes.md#Nope)\n")

        validation = links[0].validation
        assert validation.status == "warning"
        assert validation.error == (
            f"Found via file cache in different directory: {target}. Anchor not found: #Nope"
        )
        assert "Available headers" in validation.suggestion
        assert validation.path_conversion.original == "notes.md#Nope"
        assert validation.path_conversion.recommended == "../reference/notes.md#Nope"


class TestSymlinkedSource:
    """Tests for sources opened through a symlinked directory."""

    @pytest.fixture
    def linked_source(self, vault: Path) -> Path:
        """vault/linked points at vault/real/docs, which holds index.md."""
        write_md(vault, "real/shared/notes.md", "# Intro\n")
        write_md(
            vault,
            "real/docs/index.md",
            "[n](../shared/notes.md#Intro)\n\n[m](../shared/missing.md)\n",
        )
        (vault / "linked").symlink_to(vault / "real" / "docs", target_is_directory=True)
        return vault / "linked" / "index.md"

    def test_resolves_from_real_directory(self, validator, vault: Path, linked_source: Path):
        """Relative paths that only work from the real directory use the symlink strategy."""
        resolution = validator.resolve_target_path("../shared/notes.md", str(linked_source))

        assert resolution.found is True
        assert resolution.strategy == "symlink"
        assert resolution.path == str(vault / "real" / "shared" / "notes.md")

    @pytest.mark.asyncio
    async def test_verdicts(self, validator, vault: Path, linked_source: Path):
        """The found link carries a conversion; the missing one explains the symlink."""
        result = await validator.validate_file(linked_source)
        found, missing = result.links

        assert found.validation.status == "warning"
        assert found.validation.path_conversion.recommended == "../real/shared/notes.md#Intro"

        assert missing.validation.status == "error"
        assert missing.validation.error == "File not found: ../shared/missing.md"
        suggestion = missing.validation.suggestion
        assert f"Source via symlink: {linked_source} → {vault / 'real' / 'docs' / 'index.md'}" in suggestion
        assert f"Tried: {vault / 'shared' / 'missing.md'}" in suggestion
        assert f"Symlink-resolved: {vault / 'real' / 'shared' / 'missing.md'}" in suggestion


# ─────────────────────────────────────────────────────────────────────────────
# Pattern Rules
# ─────────────────────────────────────────────────────────────────────────────


class TestPatternRules:
    """Tests for caret, wiki and unknown patterns."""

    @pytest.mark.asyncio
    async def test_invalid_caret(self, validator, vault: Path):
        """Carets outside the requirement and kebab-case forms are errors."""
        links = await validate_source(validator, vault, "Odd ^x\n")

        validation = links[0].validation
        assert validation.status == "error"
        assert validation.error == "Invalid caret pattern: ^x"
        assert "^FR1" in validation.suggestion

    @pytest.mark.asyncio
    async def test_kebab_caret(self, validator, vault: Path):
        """Kebab-case block names are valid carets."""
        links = await validate_source(validator, vault, "Text ^black-box-interfaces\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_internal_wiki_link_is_valid(self, validator, vault: Path):
        """Internal wiki links are not checked against the document."""
        links = await validate_source(validator, vault, "[[#Anywhere|anywhere]]\n")

        assert links[0].validation.status == "valid"

    @pytest.mark.asyncio
    async def test_internal_markdown_link_is_unknown(self, validator, vault: Path):
        """[text](#anchor) has no validation rule."""
        links = await validate_source(validator, vault, "[i](#Intro)\n")

        assert links[0].validation.status == "error"
        assert links[0].validation.error == "Unknown citation pattern"


# ─────────────────────────────────────────────────────────────────────────────
# validate_file
# ─────────────────────────────────────────────────────────────────────────────


class TestValidateFile:
    """Tests for whole-file validation."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, validator, vault: Path, other: Path):
        """The summary counts each status."""
        source = write_md(
            vault,
            "docs/index.md",
            "[a](other.md#Intro)\n\n[b](other.md#Nope)\n\n[c](missing.md)\n\nReq ^FR1\n",
        )

        result = await validator.validate_file(source)

        assert result.summary.total == 4
        assert result.summary.valid == 2
        assert result.summary.errors == 2
        assert result.summary.warnings == 0
        assert result.file == str(source)

    @pytest.mark.asyncio
    async def test_links_keep_parser_fields(self, validator, vault: Path, other: Path):
        """Validated links are the parsed links plus a validation field."""
        source = write_md(vault, "docs/index.md", "See [a](other.md#Intro)\n")

        result = await validator.validate_file(source)
        dumped = result.model_dump(by_alias=True)

        link = dumped["links"][0]
        assert link["fullMatch"] == "[a](other.md#Intro)"
        assert link["column"] == 4
        assert link["validation"] == {"status": "valid"}
        assert set(dumped) == {"file", "summary", "links"}

    @pytest.mark.asyncio
    async def test_target_parsed_once(self, vault: Path, other: Path):
        """Many links to one target share one parse."""
        cache = ParsedFileCache(MarkdownParser())
        validator = CitationValidator(cache)
        source = write_md(vault, "docs/index.md", "".join(f"[l{n}](other.md#Intro)\n\n" for n in range(5)))

        await validator.validate_file(source)

        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_missing_source(self, validator, vault: Path):
        """A missing source file is fatal."""
        with pytest.raises(CitationFileNotFoundError):
            await validator.validate_file(vault / "nope.md")
