"""Severity-marker heuristics for classifying review text.

The judge backend is asked to restate a review as ``- [P0]``..``- [P4]``
bullet lines. Everything here is plain text scanning; when the text cannot
be read with confidence the result is the blocking fail-safe judgment.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

SEVERITIES = ("P0", "P1", "P2", "P3", "P4")
BLOCKER_SEVERITIES = frozenset({"P0", "P1", "P2", "P3"})

SUMMARY_FALLBACK_CHARS = 200
NO_DESCRIPTION = "(no description)"

_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_CONCERN_RE = re.compile(r"^[ \t]*(?:[-*]|\d+\.)\s*\[(P[0-4])\]\s*(.*)", re.MULTILINE)
_MARKER_RE = re.compile(r"\[P[0-4]\]")
_BARE_TOKEN_RE = re.compile(r"\bP[0-3]\b")
_SUMMARY_SECTION_RE = re.compile(
    r"#{2,3}[ \t]*Summary[ \t]*\n(.*?)(?=\n#{2,3}\s|\Z)", re.DOTALL | re.IGNORECASE
)
_CONCERNS_SECTION_RE = re.compile(
    r"#{2,3}[ \t]*Concerns[ \t]*\n(.*?)(?=\n#{2,3}\s|\Z)", re.DOTALL | re.IGNORECASE
)

_UNABLE_TO_REVIEW_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"nothing to review",
        r"no (?:code |changes |plan )?to review",
        r"unable to (?:perform |conduct )?(?:the )?review",
        r"cannot (?:perform |conduct )?(?:the |a )?review",
        r"review target (?:is )?(?:missing|not (?:included|present|found))",
        r"no review target",
    )
]
_NO_CONCERNS_PATTERNS = [
    re.compile(p, re.IGNORECASE | re.MULTILINE)
    for p in (
        r"^[ \t]*no concerns[ \t]*\.?[ \t]*$",
        r"^.*\b(?:there are )?no (?:concerns|issues|problems)(?: (?:were )?found)?[ \t]*\.?[ \t]*$",
        r"^.*\b(?:concerns|issues|problems) (?:were )?not found[ \t]*\.?[ \t]*$",
    )
]
_DOUBLE_NEGATION_RE = re.compile(r"\b(?:cannot say|not (?:necessarily|to say)|doesn't mean)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ReviewConcern:
    severity: str
    description: str

    @property
    def is_blocker(self) -> bool:
        return self.severity in BLOCKER_SEVERITIES


@dataclass(frozen=True)
class ReviewQuestion:
    question: str
    choices: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReviewJudgment:
    has_blockers: bool
    concerns: list[ReviewConcern]
    questions: list[ReviewQuestion]
    summary: str


def fail_safe_judgment() -> ReviewJudgment:
    """Blocking judgment used whenever review text cannot be classified."""
    return ReviewJudgment(
        has_blockers=True,
        concerns=[ReviewConcern("P0", "Review judgment could not be parsed (undecidable)")],
        questions=[],
        summary="The review judgment could not be parsed, so it is treated as blocking.",
    )


def strip_code_blocks(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text)


def extract_concerns(text: str) -> list[ReviewConcern]:
    concerns = []
    for match in _CONCERN_RE.finditer(strip_code_blocks(text)):
        severity, description = match.group(1), match.group(2).strip()
        if not description:
            log.warning("Concern with severity %s has no description", severity)
            description = NO_DESCRIPTION
        concerns.append(ReviewConcern(severity, description))
    return concerns


def has_blockers(concerns: list[ReviewConcern]) -> bool:
    return any(c.is_blocker for c in concerns)


def extract_summary(text: str) -> str:
    """Summary section, else text before the first marker, else a prefix."""
    section = _SUMMARY_SECTION_RE.search(text)
    if section and section.group(1).strip():
        return section.group(1).strip()

    first_marker = _CONCERN_RE.search(text)
    if first_marker and first_marker.start() > 0:
        before = text[: first_marker.start()].strip()
        if before:
            return before

    trimmed = text.strip()
    if len(trimmed) <= SUMMARY_FALLBACK_CHARS:
        return trimmed
    return trimmed[:SUMMARY_FALLBACK_CHARS] + "…"


def has_bare_severity_tokens(text: str) -> bool:
    """True when P0-P3 appear outside ``[Pn]`` markers."""
    without_markers = _MARKER_RE.sub("", strip_code_blocks(text))
    return _BARE_TOKEN_RE.search(without_markers) is not None


def has_unable_to_review_indicator(text: str) -> bool:
    cleaned = strip_code_blocks(text)
    return any(p.search(cleaned) for p in _UNABLE_TO_REVIEW_PATTERNS)


def has_no_concerns_indicator(text: str) -> bool:
    """Look for an explicit "no concerns" line, scoped to a Concerns section if present."""
    cleaned = strip_code_blocks(text)
    section = _CONCERNS_SECTION_RE.search(cleaned)
    target = section.group(1) if section else cleaned
    for pattern in _NO_CONCERNS_PATTERNS:
        match = pattern.search(target)
        if match and not _DOUBLE_NEGATION_RE.search(match.group(0)):
            return True
    return False


def judge_text(text: str) -> ReviewJudgment:
    """Classify a judge response. Markers win; ambiguity is blocking."""
    if not text.strip():
        log.warning("Review judgment output is empty; treating as blocking")
        return fail_safe_judgment()

    concerns = extract_concerns(text)
    if concerns:
        return ReviewJudgment(has_blockers(concerns), concerns, [], extract_summary(text))

    if has_bare_severity_tokens(text):
        log.warning("Severity tokens found without [Pn] markers; treating as blocking")
        return fail_safe_judgment()

    if has_unable_to_review_indicator(text):
        log.warning("Reviewer reported nothing to review; treating as blocking")
        return fail_safe_judgment()

    if not has_no_concerns_indicator(text):
        log.warning("No severity markers found in review judgment; treating as no concerns")
    return ReviewJudgment(False, [], [], extract_summary(text))


def format_concerns(concerns: list[ReviewConcern]) -> str:
    return "\n".join(f"- [{c.severity}] {c.description}" for c in concerns)
