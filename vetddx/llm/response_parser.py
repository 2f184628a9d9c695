"""
Normalize the free-text differential-diagnosis reply into structured data.

The upstream model is asked for a fixed layout but is not bound to it, so
every step here is best-effort and never raises:
1. Split the reply into sections by heading (differentials, diagnostics,
   red flags, treatment), falling back to ``other``
2. Pull ranked (percentage, name, description) records out of the
   differentials section, rescaling compressed percentages
3. Split the treatment section into named categories
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from vetddx.api.analysis_models import (
    AnalysisBuckets,
    DifferentialRecord,
    NormalizedAnalysis,
    TreatmentCategory,
)

logger = logging.getLogger(__name__)


def _valid_utf8(text: str) -> str:
    # Lone surrogates would fail pydantic string validation
    return text.encode("utf-8", "replace").decode("utf-8")


# ---------------------------------------------------------------------------
# Section splitting
# ---------------------------------------------------------------------------

# Bucket key -> accepted heading titles. Matched case-insensitively.
_SECTION_TITLES: list[tuple[str, list[str]]] = [
    ("differentials", [
        "ranked differential diagnoses",
        "ranked differentials",
        "differential diagnoses",
        "differential diagnosis",
    ]),
    ("diagnostics", [
        "suggested diagnostic steps",
        "diagnostic steps",
        "diagnostic plan",
        "recommended diagnostics",
    ]),
    ("red_flags", [
        "red flags",
        "warning signs",
    ]),
    ("treatment", [
        "treatment recommendations",
        "treatment plan",
        "treatment protocol",
    ]),
]

# Trailing decoration after a title: "(most to least likely)", "**", ":".
_HEADING_TAIL = r"[^\S\n]*(?:\([^)\n]*\))?[^\S\n]*(?:\*\*|__)?[^\S\n]*:?[^\S\n]*(?:\*\*|__)?"


def _hash_heading(title: str) -> re.Pattern:
    # "## Ranked Differential Diagnoses", "### 1. Ranked Differential Diagnoses"
    # A hash heading owns its whole line.
    return re.compile(
        r"^[^\S\n]*#{1,6}[^\S\n]*(?:\*\*|__)?[^\S\n]*(?:\d+[.)][^\S\n]*)?"
        + re.escape(title) + r"[^\n]*",
        re.IGNORECASE | re.MULTILINE,
    )


def _bold_heading(title: str) -> re.Pattern:
    # "**Ranked Differential Diagnoses**", "**1. Red Flags:**"
    return re.compile(
        r"^[^\S\n]*(?:\*\*|__)[^\S\n]*(?:\d+[.)][^\S\n]*)?"
        + re.escape(title) + _HEADING_TAIL,
        re.IGNORECASE | re.MULTILINE,
    )


def _numbered_heading(title: str) -> re.Pattern:
    # Legacy lead-in: "1. Ranked differential diagnoses (most to least likely)"
    return re.compile(
        r"^[^\S\n]*\d+[.)][^\S\n]*" + re.escape(title) + _HEADING_TAIL,
        re.IGNORECASE | re.MULTILINE,
    )


_HEADING_FORMATS: list[Callable[[str], re.Pattern]] = [
    _hash_heading,
    _bold_heading,
    _numbered_heading,
]

SECTION_MARKERS: list[tuple[str, list[re.Pattern]]] = [
    (key, [fmt(title) for title in titles for fmt in _HEADING_FORMATS])
    for key, titles in _SECTION_TITLES
]


@dataclass
class _SectionHit:
    key: str
    start: int
    end: int  # end of the heading itself


def split_sections(raw_text: str) -> AnalysisBuckets:
    """Split a reply into the four named buckets.

    The earliest heading of each bucket wins; later repeats stay inside
    whichever section they fall in. With no recognised heading at all the
    whole reply lands in ``other``.
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return AnalysisBuckets()
    raw_text = _valid_utf8(raw_text)

    hits: list[_SectionHit] = []
    for key, patterns in SECTION_MARKERS:
        for pattern in patterns:
            match = pattern.search(raw_text)
            if match:
                hits.append(_SectionHit(key, match.start(), match.end()))

    hits.sort(key=lambda h: (h.start, -h.end))

    retained: list[_SectionHit] = []
    seen: set[str] = set()
    for hit in hits:
        if hit.key in seen:
            continue
        # A hit inside an already retained heading is the same heading
        if retained and hit.start < retained[-1].end:
            continue
        seen.add(hit.key)
        retained.append(hit)

    if not retained:
        return AnalysisBuckets(other=raw_text.strip())

    sections: dict[str, str] = {}
    for i, hit in enumerate(retained):
        stop = retained[i + 1].start if i + 1 < len(retained) else len(raw_text)
        sections[hit.key] = raw_text[hit.end:stop].strip()

    return AnalysisBuckets(**sections)


# ---------------------------------------------------------------------------
# Differential extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RescaleConfig:
    """Tuning constants for percentage normalization.

    The model is asked for a 5-95% spread. When the largest value it returns
    is below ``compressed_below`` the list is stretched so the top item lands
    near ``target_ceiling``, decaying by ``rank_decay`` per rank.
    """

    compressed_below: int = 30
    target_ceiling: int = 75
    rank_decay: float = 0.05
    floor: int = 5
    ceiling: int = 95
    fallback_start: int = 80
    fallback_step: int = 15
    fallback_min: int = 10


DEFAULT_RESCALE = RescaleConfig()

_BULLET = r"(?:[-*•+][^\S\n]*)?"
_DASH = r"[-–—]"
# "(85%)", "(80-90%)", "(85% likely)"
_PAREN_PERCENT = r"\((\d{1,3})(?:[^\S\n]*" + _DASH + r"[^\S\n]*\d{1,3})?[^\S\n]*%[^)]*\)"
_SEPARATOR_AND_REST = r"[^\S\n]*(?:[-–—:|][^\S\n]*)?(.*)$"

# 85% | Parvovirus | Young unvaccinated dog with haemorrhagic diarrhoea
# | 85% | Parvovirus | Young unvaccinated dog |
_PIPE_LINE = re.compile(
    r"^(?:\|[^\S\n]*)?" + _BULLET + r"(?:\d+[.)][^\S\n]*)?(?:\*\*)?(\d{1,3})[^\S\n]*%(?:\*\*)?"
    r"[^\S\n]*\|[^\S\n]*([^|]+?)[^\S\n]*(?:\|[^\S\n]*(.*))?$"
)
# 1. Parvovirus (85%) - Young unvaccinated dog
_NUMBERED_LINE = re.compile(
    r"^" + _BULLET + r"\d+[.)][^\S\n]*(.+?)[^\S\n]*" + _PAREN_PERCENT + r"(?:\*\*)?" + _SEPARATOR_AND_REST
)
# **Parvovirus** (85%): Young unvaccinated dog
# **Parvovirus (85%)**: Young unvaccinated dog
_BOLD_LINE = re.compile(
    r"^" + _BULLET + r"\*\*(.+?)\*\*[^\S\n]*" + _PAREN_PERCENT + _SEPARATOR_AND_REST
    + r"|^" + _BULLET + r"\*\*(.+?)[^\S\n]*" + _PAREN_PERCENT + r"[^\S\n]*\*\*" + _SEPARATOR_AND_REST
)
# 85% - Parvovirus - Young unvaccinated dog
_DASH_LINE = re.compile(
    r"^" + _BULLET + r"(?:\d+[.)][^\S\n]*)?(?:\*\*)?(\d{1,3})[^\S\n]*%(?:\*\*)?"
    r"[^\S\n]*" + _DASH + r"[^\S\n]*(.+?)(?:[^\S\n]+" + _DASH + r"[^\S\n]+(.*))?$"
)

_EMPHASIS = re.compile(r"\*\*|__|\*|`")


def _clean_name(name: str) -> str:
    name = _EMPHASIS.sub("", name).strip()
    return name.strip(" #:|-–—").strip()


def _clean_description(description: str) -> str:
    return _EMPHASIS.sub("", description).strip().rstrip("|").strip()


def _match_pipe(line: str) -> Optional[tuple[int, str, str]]:
    m = _PIPE_LINE.match(line)
    if not m:
        return None
    return int(m.group(1)), m.group(2), m.group(3) or ""


def _match_numbered(line: str) -> Optional[tuple[int, str, str]]:
    m = _NUMBERED_LINE.match(line)
    if not m:
        return None
    return int(m.group(2)), m.group(1), m.group(3) or ""


def _match_bold(line: str) -> Optional[tuple[int, str, str]]:
    m = _BOLD_LINE.match(line)
    if not m:
        return None
    if m.group(1) is not None:
        return int(m.group(2)), m.group(1), m.group(3) or ""
    return int(m.group(5)), m.group(4), m.group(6) or ""


def _match_dash(line: str) -> Optional[tuple[int, str, str]]:
    m = _DASH_LINE.match(line)
    if not m:
        return None
    return int(m.group(1)), m.group(2), m.group(3) or ""


# Tried in order; the first grammar that matches a line wins.
LINE_GRAMMARS: list[Callable[[str], Optional[tuple[int, str, str]]]] = [
    _match_pipe,
    _match_numbered,
    _match_bold,
    _match_dash,
]


def _parse_line(line: str) -> Optional[DifferentialRecord]:
    for grammar in LINE_GRAMMARS:
        parsed = grammar(line)
        if parsed is None:
            continue
        percentage, name, description = parsed
        name = _clean_name(name)
        if not name:
            return None
        try:
            return DifferentialRecord(
                percentage=min(percentage, 100),
                name=_valid_utf8(name),
                description=_valid_utf8(_clean_description(description)),
            )
        except ValidationError:
            logger.debug("Skipping unparseable differential line: %r", line)
            return None
    return None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def rescale_percentages(
    records: list[DifferentialRecord],
    config: RescaleConfig = DEFAULT_RESCALE,
) -> list[DifferentialRecord]:
    """Sort descending and repair compressed or missing percentages."""
    ordered = sorted(records, key=lambda r: r.percentage, reverse=True)
    if not ordered:
        return ordered

    top = ordered[0].percentage
    if top == 0:
        return [
            r.model_copy(update={
                "percentage": max(config.fallback_min, config.fallback_start - i * config.fallback_step),
            })
            for i, r in enumerate(ordered)
        ]

    if top < config.compressed_below:
        scale = config.target_ceiling / top
        rescaled = []
        for i, r in enumerate(ordered):
            value = _round_half_up(r.percentage * scale * (1 - i * config.rank_decay))
            value = max(config.floor, min(config.ceiling, value))
            rescaled.append(r.model_copy(update={"percentage": value}))
        return rescaled

    return ordered


def extract_differentials(
    differentials_text: str,
    config: RescaleConfig = DEFAULT_RESCALE,
) -> list[DifferentialRecord]:
    """Parse the differentials section into ranked records."""
    if not differentials_text:
        return []

    records: list[DifferentialRecord] = []
    for raw_line in differentials_text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        record = _parse_line(line)
        if record is not None:
            records.append(record)

    return rescale_percentages(records, config)


# ---------------------------------------------------------------------------
# Treatment categories
# ---------------------------------------------------------------------------

_CATEGORY_MARKER = re.compile(r"(?:\*\*|__)?[^\S\n]*CATEGORY[^\S\n]*:", re.IGNORECASE)


def has_categories(treatment_text: str) -> bool:
    return bool(treatment_text) and _CATEGORY_MARKER.search(treatment_text) is not None


def extract_categories(treatment_text: str) -> list[TreatmentCategory]:
    """Split the treatment section on ``CATEGORY:`` markers.

    Text before the first marker is not a category. Fragments without a
    title or without body text are dropped.
    """
    if not treatment_text:
        return []

    fragments = _CATEGORY_MARKER.split(treatment_text)
    categories: list[TreatmentCategory] = []
    for fragment in fragments[1:]:
        first, _, rest = fragment.partition("\n")
        title = _valid_utf8(_clean_name(first))
        body = _valid_utf8(rest.strip())
        if title and body:
            categories.append(TreatmentCategory(title=title, body=body))
    return categories


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


def normalize_reply(
    raw_text: str,
    config: RescaleConfig = DEFAULT_RESCALE,
) -> NormalizedAnalysis:
    buckets = split_sections(raw_text)
    differentials = extract_differentials(buckets.differentials, config)
    categories = extract_categories(buckets.treatment)
    has_structure = any(
        (buckets.differentials, buckets.diagnostics, buckets.red_flags, buckets.treatment)
    )
    if not has_structure:
        logger.info("No section headings recognised; reply kept as unclassified text")
    return NormalizedAnalysis(
        buckets=buckets,
        differentials=differentials,
        treatment_categories=categories,
        has_structure=has_structure,
    )
