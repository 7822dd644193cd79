"""Content extraction for validated citations."""

from .content_extractor import (
    ContentExtractor,
    ContentNotFoundError,
    decode_url_anchor,
    generate_content_id,
    normalize_block_id,
)
from .strategies import (
    CliFlagStrategy,
    ExtractionFlags,
    ExtractionStrategy,
    ForceMarkerStrategy,
    SectionLinkStrategy,
    StopMarkerStrategy,
    analyze_eligibility,
    create_eligibility_strategies,
)

__all__ = [
    "CliFlagStrategy",
    "ContentExtractor",
    "ContentNotFoundError",
    "ExtractionFlags",
    "ExtractionStrategy",
    "ForceMarkerStrategy",
    "SectionLinkStrategy",
    "StopMarkerStrategy",
    "analyze_eligibility",
    "create_eligibility_strategies",
    "decode_url_anchor",
    "generate_content_id",
    "normalize_block_id",
]
