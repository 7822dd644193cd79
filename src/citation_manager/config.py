"""Configuration management for citation-manager.

This module contains all configurable constants for parsing, validation and
extraction. Magic numbers are documented here rather than scattered throughout
the codebase.
"""

import os
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when a configuration file exists but cannot be used."""

    pass


PROJECT_CONFIG_NAME = ".citation-manager.yaml"


def get_default_scope(start_dir: Path | None = None) -> Path | None:
    """Get the scope folder used when --scope is not given.

    Discovery order:
    1. CITATION_MANAGER_SCOPE environment variable (explicit override)
    2. `scope` key of the nearest .citation-manager.yaml walking up from cwd

    Returns:
        Resolved scope directory, or None when nothing is configured.

    Raises:
        ConfigurationError: If the configured scope is not a directory.
    """
    env_scope = os.environ.get("CITATION_MANAGER_SCOPE")
    if env_scope:
        scope = Path(env_scope).expanduser().resolve()
        if not scope.is_dir():
            raise ConfigurationError(f"CITATION_MANAGER_SCOPE is not a directory: {env_scope}")
        return scope

    discovered = _discover_project_config(start_dir)
    if discovered:
        _config_path, scope = discovered
        return scope
    return None


def _discover_project_config(start_dir: Path | None = None, max_depth: int = 10) -> tuple[Path, Path] | None:
    """Walk up from start_dir looking for .citation-manager.yaml with a scope key.

    Args:
        start_dir: Directory to start from (defaults to cwd)
        max_depth: Maximum directories to traverse up

    Returns:
        Tuple of (config_path, scope_path) if found, None otherwise.

    Raises:
        ConfigurationError: If the file is unreadable or its scope is not a directory.
    """
    import yaml

    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(max_depth):
        config_file = current / PROJECT_CONFIG_NAME
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Cannot read {config_file}: {e}") from e
            if "scope" in data:
                scope = (current / str(data["scope"])).resolve()
                if not scope.is_dir():
                    raise ConfigurationError(f"Scope in {config_file} is not a directory: {data['scope']}")
                return (config_file, scope)

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


# =============================================================================
# Anchor Suggestions
# =============================================================================

# Minimum normalized Levenshtein similarity for an anchor to be suggested.
# 0.3 keeps short typos ("intro" vs "Intro") while dropping unrelated ids.
ANCHOR_SIMILARITY_THRESHOLD = 0.3

# Maximum results returned by ParsedDocument.find_similar_anchors()
MAX_SIMILAR_ANCHORS = 5

# How many similar anchors are quoted in an "Available anchors:" suggestion
MAX_SUGGESTED_ANCHORS = 3

# Caps for the "Available headers:" and "Available block refs:" lists
MAX_AVAILABLE_HEADERS = 5
MAX_AVAILABLE_BLOCKS = 5


# =============================================================================
# File Resolution
# =============================================================================

# Fixed typo corrections applied by FileCache fuzzy matching, in order.
COMMON_TYPOS: dict[str, str] = {
    "verson": "version",
    "architeture": "architecture",
    "managment": "management",
}

# Upward directory walk limit for vault-absolute paths (docs/guide.md style)
MAX_VAULT_ROOT_DEPTH = 32


# =============================================================================
# Caret Block References
# =============================================================================

# Requirement ids (FR1, US1-4bT1-1, NFR2, MVP-P1) or kebab-case block names
CARET_PATTERN = (
    r"^\^([A-Za-z]{2,3}\d+(?:-\d+[a-z]?(?:AC\d+|T\d+(?:-\d+)?)?)?"
    r"|[A-Za-z]+\d+|MVP-P\d+|[a-z][a-z0-9-]+[a-z0-9])$"
)

CARET_EXAMPLES = "^FR1, ^US1-1AC1, ^NFR2, ^MVP-P1, ^black-box-interfaces"


# =============================================================================
# Content Extraction
# =============================================================================

# Hex characters kept from the SHA-256 digest for content ids
CONTENT_ID_LENGTH = 16

# Extraction marker inner texts recognised by the eligibility strategies
STOP_EXTRACT_MARKER = "stop-extract-link"
FORCE_EXTRACT_MARKER = "force-extract"
