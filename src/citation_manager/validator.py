"""Citation validation.

Every link is classified by syntax and checked by the matching rule. Cross-document
links go through multi-strategy path resolution and then an anchor check against
the target's own parsed anchors. Broken links never raise: the verdict is attached
to the link, and the rest of the document is still validated.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from urllib.parse import quote, unquote

from .config import (
    CARET_EXAMPLES,
    CARET_PATTERN,
    MAX_AVAILABLE_BLOCKS,
    MAX_AVAILABLE_HEADERS,
    MAX_SUGGESTED_ANCHORS,
    MAX_VAULT_ROOT_DEPTH,
)
from .errors import CitationFileNotFoundError
from .file_cache import FileCache
from .models import (
    BlockAnchor,
    ErrorValidation,
    HeaderAnchor,
    LinkObject,
    PathConversion,
    ValidatedLink,
    ValidationResult,
    ValidationSummary,
    ValidValidation,
    WarningValidation,
    enrich_link,
)
from .parsed_file_cache import ParsedFileCache
from .parser.markdown import ParseError

log = logging.getLogger(__name__)

_CARET_REGEX = re.compile(CARET_PATTERN)
_EMPHASIS_REGEX = re.compile(r"^==\*\*[^*]+\*\*==$")

# "docs/guide.md": vault-relative path as Obsidian writes it
_VAULT_ABSOLUTE_REGEX = re.compile(r"^[A-Za-z0-9_-]+/")

UNKNOWN_PATTERN_SUGGESTION = (
    "Use one of: cross-document [text](file.md#anchor), caret ^FR1, or wiki-style [[#anchor|text]]"
)
BETTER_FORMAT_PREFIX = "Use raw header format for better Obsidian compatibility: #"

Verdict = ValidValidation | ErrorValidation | WarningValidation


class PatternType:
    CARET = "CARET_SYNTAX"
    EMPHASIS = "EMPHASIS_MARKED"
    CROSS_DOCUMENT = "CROSS_DOCUMENT"
    WIKI = "WIKI_STYLE"
    UNKNOWN = "UNKNOWN_PATTERN"


@dataclass
class TargetResolution:
    """Where a raw link path was found and how."""

    path: str  # Resolved path, or the standard path when nothing matched
    strategy: str  # decoded | original | vault-absolute | symlink | symlink-original | file-cache | none
    found: bool
    fuzzy_message: str | None = None


@dataclass
class AnchorCheck:
    valid: bool
    suggestion: str | None = None
    matched_as: str | None = None
    better_format: bool = False  # Anchor works but a raw-header form is preferred


def classify_pattern(link: LinkObject) -> str:
    """Classify a link: caret > emphasis-marked > cross-document > wiki-internal > unknown."""
    if link.scope == "internal" and link.anchor_type == "block":
        return PatternType.CARET
    if link.scope == "cross-document":
        anchor = link.target.anchor
        if anchor and anchor.startswith("==**") and anchor.endswith("**=="):
            return PatternType.EMPHASIS
        return PatternType.CROSS_DOCUMENT
    if link.link_type == "wiki" and link.scope == "internal":
        return PatternType.WIKI
    return PatternType.UNKNOWN


def clean_markdown_for_comparison(text: str | None) -> str:
    """Strip inline markdown (code, bold, italic, highlight, links) for loose comparison."""
    if not text:
        return ""
    text = text.replace("`", "").replace("**", "").replace("*", "")
    text = re.sub(r"==([^=]+)==", r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    return text.strip()


def encode_uri_component(value: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent, with ' as %27."""
    return quote(value, safe="-_.!~*()")


def is_vault_absolute_path(path: str) -> bool:
    return bool(_VAULT_ABSOLUTE_REGEX.match(path)) and not os.path.isabs(path)


def _is_file(path: str) -> bool:
    try:
        return os.path.isfile(path)
    except (OSError, ValueError):
        return False


def _safe_realpath(path: str) -> str:
    try:
        return os.path.realpath(path, strict=True)
    except (OSError, ValueError):
        return path


def _resolve(base_dir: str, path: str) -> str:
    return os.path.normpath(os.path.join(base_dir, path))


def relative_link_path(source_file: str, target_file: str) -> str:
    """Path from the source document's directory to target_file, with / separators."""
    return os.path.relpath(target_file, os.path.dirname(source_file)).replace(os.sep, "/")


def build_path_conversion(original_citation: str, source_file: str, target_file: str) -> PathConversion:
    anchor_match = re.search(r"#(.*)$", original_citation)
    anchor = f"#{anchor_match.group(1)}" if anchor_match and anchor_match.group(1) else ""
    return PathConversion(
        original=original_citation,
        recommended=f"{relative_link_path(source_file, target_file)}{anchor}",
    )


class CitationValidator:
    """Validates the links of markdown documents."""

    def __init__(self, parsed_file_cache: ParsedFileCache, file_cache: FileCache | None = None) -> None:
        self.parsed_file_cache = parsed_file_cache
        self.file_cache = file_cache

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    async def validate_file(self, file_path: str | os.PathLike) -> ValidationResult:
        """Validate every link in a file.

        Returns:
            ValidationResult whose links line up one to one with the parsed links.

        Raises:
            CitationFileNotFoundError: If file_path does not exist.
            OSError: If the file exists but cannot be read.
        """
        path = os.path.abspath(file_path)
        if not os.path.exists(path):
            raise CitationFileNotFoundError(str(file_path))

        document = await self.parsed_file_cache.resolve_parsed_file(path)
        links = document.get_links()
        validated = await asyncio.gather(*(self.validate_single_citation(link, path) for link in links))
        validated_links = list(validated)

        summary = ValidationSummary.from_links(validated_links)
        log.debug(
            "Validated %s: %d links, %d errors, %d warnings",
            path,
            summary.total,
            summary.errors,
            summary.warnings,
        )
        return ValidationResult(file=path, summary=summary, links=validated_links)

    async def validate_single_citation(self, link: LinkObject, context_file: str | None = None) -> ValidatedLink:
        """Validate one link and return it enriched with its verdict."""
        source_file = context_file or link.source.path.absolute
        pattern = classify_pattern(link)

        if pattern == PatternType.CARET:
            verdict = self._validate_caret(link)
        elif pattern == PatternType.EMPHASIS:
            verdict = self._validate_emphasis(link)
        elif pattern == PatternType.CROSS_DOCUMENT:
            verdict = await self._validate_cross_document(link, source_file)
        elif pattern == PatternType.WIKI:
            # Internal wiki anchors are not checked against the document
            verdict = ValidValidation()
        else:
            verdict = ErrorValidation(error="Unknown citation pattern", suggestion=UNKNOWN_PATTERN_SUGGESTION)

        return enrich_link(link, verdict)

    # ─────────────────────────────────────────────────────────────────────────
    # Pattern rules
    # ─────────────────────────────────────────────────────────────────────────

    def _validate_caret(self, link: LinkObject) -> Verdict:
        anchor = link.target.anchor or link.full_match[1:]
        candidate = anchor if anchor.startswith("^") else f"^{anchor}"
        if _CARET_REGEX.match(candidate):
            return ValidValidation()
        return ErrorValidation(
            error=f"Invalid caret pattern: {candidate}",
            suggestion=f"Use format: {CARET_EXAMPLES}",
        )

    def _validate_emphasis(self, link: LinkObject) -> Verdict:
        anchor = link.target.anchor or ""
        if _EMPHASIS_REGEX.match(anchor):
            return ValidValidation()
        if "==" in anchor and "**" in anchor:
            error = "Malformed emphasis anchor - incorrect marker placement"
        else:
            error = "Malformed emphasis anchor - missing ** markers"
        return ErrorValidation(error=error, suggestion=f"Use format: ==**ComponentName**== (found: {anchor})")

    # ─────────────────────────────────────────────────────────────────────────
    # Cross-document links
    # ─────────────────────────────────────────────────────────────────────────

    async def _validate_cross_document(self, link: LinkObject, source_file: str) -> Verdict:
        raw_path = link.target.path.raw or ""
        anchor = link.target.anchor
        standard_path = _resolve(os.path.dirname(source_file), unquote(raw_path))

        if os.path.isdir(standard_path):
            return WarningValidation(
                error=f"Link points to a folder, not a file: {raw_path}",
                suggestion="Link to a markdown file inside the folder instead",
            )

        resolution = self.resolve_target_path(raw_path, source_file)
        if not resolution.found:
            return self._file_not_found(raw_path, source_file)

        target_path = resolution.path
        cross_directory = target_path != standard_path
        cross_message = None
        if cross_directory:
            if resolution.fuzzy_message and os.path.dirname(target_path) == os.path.dirname(standard_path):
                cross_message = resolution.fuzzy_message
            else:
                cross_message = f"Found via file cache in different directory: {target_path}"
                if resolution.fuzzy_message:
                    cross_message = f"{cross_message} ({resolution.fuzzy_message})"
            log.debug("Resolved %s via %s: %s", raw_path, resolution.strategy, target_path)

        conversion = None
        if cross_directory:
            original = f"{raw_path}#{anchor}" if anchor else raw_path
            conversion = build_path_conversion(original, source_file, target_path)

        if anchor:
            check = await self.validate_anchor_exists(anchor, target_path)
            if not check.valid:
                if check.better_format:
                    suggestion = f"{cross_message}. {check.suggestion}" if cross_message else check.suggestion
                    return WarningValidation(suggestion=suggestion, path_conversion=conversion)
                anchor_message = f"Anchor not found: #{anchor}"
                if cross_directory:
                    return WarningValidation(
                        error=f"{cross_message}. {anchor_message}",
                        suggestion=check.suggestion,
                        path_conversion=conversion,
                    )
                return ErrorValidation(error=anchor_message, suggestion=check.suggestion)

        if cross_directory:
            return WarningValidation(suggestion=cross_message, path_conversion=conversion)
        return ValidValidation()

    def _file_not_found(self, raw_path: str, source_file: str) -> ErrorValidation:
        debug_info = self.path_resolution_debug_info(raw_path, source_file)
        error = f"File not found: {raw_path}"

        if self.file_cache is not None and self.file_cache.is_built:
            filename = unquote(raw_path).split("/")[-1]
            cached = self.file_cache.resolve_file(filename)
            if cached.reason in ("duplicate", "duplicate_fuzzy"):
                return ErrorValidation(error=error, suggestion=f"{cached.message}. {debug_info}")
            if cached.reason == "not_found":
                return ErrorValidation(
                    error=error,
                    suggestion=f'File "{filename}" not found in scope folder. {debug_info}',
                )

        return ErrorValidation(error=error, suggestion=f"Check if file exists or fix path. {debug_info}")

    def resolve_target_path(self, raw_path: str, source_file: str) -> TargetResolution:
        """Find the file a raw link path refers to.

        Strategies, first hit wins:
        1. URL-decoded path relative to the source directory
        2. The path as written (for names that were never meant to be decoded)
        3. Vault-absolute path (docs/guide.md), walking up from the source directory
        4. Strategies 1 and 2 against the symlink-resolved source file
        5. FileCache lookup of the bare filename

        Returns:
            TargetResolution. When nothing matched, path is the strategy-1 path
            and found is False.
        """
        decoded = unquote(raw_path)
        source_dir = os.path.dirname(source_file)
        standard_path = _resolve(source_dir, decoded)

        if _is_file(standard_path):
            return TargetResolution(standard_path, "decoded", True)

        if decoded != raw_path:
            original_path = _resolve(source_dir, raw_path)
            if _is_file(original_path):
                return TargetResolution(original_path, "original", True)

        if is_vault_absolute_path(decoded):
            vault_path = self._find_vault_absolute(decoded, source_file)
            if vault_path:
                return TargetResolution(vault_path, "vault-absolute", True)

        real_source = _safe_realpath(source_file)
        if real_source != source_file:
            real_dir = os.path.dirname(real_source)
            symlink_path = _resolve(real_dir, decoded)
            if _is_file(symlink_path):
                return TargetResolution(symlink_path, "symlink", True)
            if decoded != raw_path:
                symlink_original = _resolve(real_dir, raw_path)
                if _is_file(symlink_original):
                    return TargetResolution(symlink_original, "symlink-original", True)
            if is_vault_absolute_path(decoded):
                vault_path = self._find_vault_absolute(decoded, real_source)
                if vault_path:
                    return TargetResolution(vault_path, "symlink", True)

        if self.file_cache is not None and self.file_cache.is_built:
            cached = self.file_cache.resolve_file(decoded.split("/")[-1])
            if cached.found and cached.path:
                return TargetResolution(
                    cached.path,
                    "file-cache",
                    True,
                    fuzzy_message=cached.message if cached.fuzzy_match else None,
                )

        return TargetResolution(standard_path, "none", False)

    def _find_vault_absolute(self, vault_path: str, source_file: str) -> str | None:
        current = os.path.dirname(source_file)
        for _ in range(MAX_VAULT_ROOT_DEPTH):
            parent = os.path.dirname(current)
            if parent == current:
                break
            candidate = os.path.join(current, vault_path)
            if _is_file(candidate):
                return os.path.normpath(candidate)
            current = parent
        return None

    def path_resolution_debug_info(self, raw_path: str, source_file: str) -> str:
        """Describe the paths tried for a link, for 'File not found' suggestions."""
        source_dir = os.path.dirname(source_file)
        real_source = _safe_realpath(source_file)
        via_symlink = real_source != source_file

        parts = []
        if via_symlink:
            parts.append(f"Source via symlink: {source_file} → {real_source}")
        parts.append(f"Tried: {_resolve(source_dir, raw_path)}")
        if via_symlink:
            parts.append(f"Symlink-resolved: {_resolve(os.path.dirname(real_source), raw_path)}")
        if is_vault_absolute_path(raw_path):
            parts.append("Detected Obsidian absolute path format")
        return "; ".join(parts)

    # ─────────────────────────────────────────────────────────────────────────
    # Anchors
    # ─────────────────────────────────────────────────────────────────────────

    async def validate_anchor_exists(self, anchor: str, target_file: str) -> AnchorCheck:
        """Check that anchor exists in target_file, with increasingly loose matching.

        A kebab-case anchor that has a raw-header equivalent comes back as
        valid=False with better_format=True and the preferred form as suggestion.
        """
        try:
            document = await self.parsed_file_cache.resolve_parsed_file(target_file)
        except (OSError, ParseError) as e:
            return AnchorCheck(valid=False, suggestion=f"Error reading target file: {e}")

        anchors = document.anchors

        if document.has_anchor(anchor):
            better = self.suggest_better_format(anchor, anchors)
            if better:
                return AnchorCheck(valid=False, suggestion=f"{BETTER_FORMAT_PREFIX}{better}", better_format=True)
            return AnchorCheck(valid=True, matched_as="exact")

        if "%20" in anchor and document.has_anchor(unquote(anchor)):
            return AnchorCheck(valid=True, matched_as="url-decoded")

        if anchor.startswith("^") and document.has_anchor(anchor[1:]):
            return AnchorCheck(valid=True, matched_as="block-ref")

        flexible = self.find_flexible_anchor_match(anchor, anchors)
        if flexible:
            return AnchorCheck(valid=True, matched_as=flexible)

        better = self.suggest_better_format(anchor, anchors)
        if better:
            # The kebab-case form does not resolve in Obsidian: a real failure
            return AnchorCheck(valid=False, suggestion=f"{BETTER_FORMAT_PREFIX}{better}")

        similar = document.find_similar_anchors(anchor)
        headers = [f'"{a.raw_text}" → #{a.id}' for a in anchors if isinstance(a, HeaderAnchor)]
        blocks = [f"^{a.id}" for a in anchors if isinstance(a, BlockAnchor)]

        parts = []
        if similar:
            parts.append(f"Available anchors: {', '.join(similar[:MAX_SUGGESTED_ANCHORS])}")
        if headers:
            parts.append(f"Available headers: {', '.join(headers[:MAX_AVAILABLE_HEADERS])}")
        if blocks:
            parts.append(f"Available block refs: {', '.join(blocks[:MAX_AVAILABLE_BLOCKS])}")
        return AnchorCheck(valid=False, suggestion="; ".join(parts) if parts else "No similar anchors found")

    @staticmethod
    def find_flexible_anchor_match(search_anchor: str, anchors: list[HeaderAnchor | BlockAnchor]) -> str | None:
        """Match tolerant of inline markdown in headings. Returns the match kind or None."""
        search = unquote(search_anchor)
        cleaned_search = clean_markdown_for_comparison(search)

        for anchor in anchors:
            raw_text = anchor.raw_text
            if anchor.id == search:
                return "exact"
            if raw_text == search:
                return "raw-text"
            if len(search) > 1 and search.startswith("`") and search.endswith("`"):
                unwrapped = search[1:-1]
                if unwrapped in (raw_text, anchor.id):
                    return "backtick-unwrapped"
            if raw_text and "`" in raw_text and raw_text == f"`{search}`":
                return "backtick-wrapped"
            if clean_markdown_for_comparison(raw_text or anchor.id) == cleaned_search:
                return "markdown-cleaned"
        return None

    @staticmethod
    def suggest_better_format(used_anchor: str, anchors: list[HeaderAnchor | BlockAnchor]) -> str | None:
        """Raw-header form of a kebab-case anchor, when it differs from what was used."""
        for anchor in anchors:
            if not isinstance(anchor, HeaderAnchor):
                continue
            kebab = re.sub(r"\s+", "-", anchor.raw_text.lower())
            if kebab == used_anchor:
                suggestion = encode_uri_component(anchor.id)
                if suggestion != used_anchor:
                    return suggestion
        return None
