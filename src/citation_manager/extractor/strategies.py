"""Extraction eligibility strategies.

Each strategy returns a decision, or None to defer to the next strategy in the
chain. The first decision wins.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import FORCE_EXTRACT_MARKER, STOP_EXTRACT_MARKER
from ..models import EligibilityDecision, LinkObject


@dataclass
class ExtractionFlags:
    """Command-line switches that affect extraction."""

    full_files: bool = False  # Extract links without an anchor as whole files


class ExtractionStrategy:
    """Base class for eligibility strategies."""

    def get_decision(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision | None:
        return None


class StopMarkerStrategy(ExtractionStrategy):
    """%%stop-extract-link%% excludes a link whatever else applies."""

    def get_decision(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision | None:
        if link.extraction_marker and link.extraction_marker.inner_text == STOP_EXTRACT_MARKER:
            return EligibilityDecision(eligible=False, reason="stop-extract-link marker prevents extraction")
        return None


class ForceMarkerStrategy(ExtractionStrategy):
    """%%force-extract%% includes a link, even a full-file one without --full-files."""

    def get_decision(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision | None:
        if link.extraction_marker and link.extraction_marker.inner_text == FORCE_EXTRACT_MARKER:
            return EligibilityDecision(eligible=True, reason="force-extract overrides defaults")
        return None


class SectionLinkStrategy(ExtractionStrategy):
    def get_decision(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision | None:
        if link.anchor_type is not None:
            return EligibilityDecision(eligible=True, reason="Markdown anchor links eligible by default")
        return None


class CliFlagStrategy(ExtractionStrategy):
    """Terminal strategy: full-file links follow --full-files."""

    def get_decision(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision | None:
        if flags.full_files:
            return EligibilityDecision(eligible=True, reason="CLI flag --full-files forces extraction")
        return EligibilityDecision(eligible=False, reason="Full-file link ineligible without --full-files flag")


def create_eligibility_strategies() -> list[ExtractionStrategy]:
    """Default chain in precedence order."""
    return [
        StopMarkerStrategy(),
        ForceMarkerStrategy(),
        SectionLinkStrategy(),
        CliFlagStrategy(),
    ]


def analyze_eligibility(
    link: LinkObject,
    flags: ExtractionFlags,
    strategies: list[ExtractionStrategy],
) -> EligibilityDecision:
    for strategy in strategies:
        decision = strategy.get_decision(link, flags)
        if decision is not None:
            return decision
    return EligibilityDecision(eligible=False, reason="No strategy matched")
