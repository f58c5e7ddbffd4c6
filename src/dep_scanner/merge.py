"""
Merge vulnerability results from multiple database sources.

Merge strategy:
- Dedupe by advisory id
- Severity: take highest, ties keep the first seen
- References: union, deduped by url
- Summary: prefer the longer description
- fixed_in: prefer the first explicit version
- Aliases: union in first-seen order
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .vulnerability import Reference, Severity, Vulnerability, VulnerabilityMap

SEVERITY_RANKS = (
    ("CRITICAL", 4),
    ("HIGH", 3),
    ("MODERATE", 2),
    ("MEDIUM", 2),
    ("LOW", 1),
)


def severity_rank(severity: Sequence[Severity]) -> int:
    """Rank a severity list by its first entry's score text; 0 if unrecognized."""
    if not severity:
        return 0

    score = (severity[0].score or "").upper()
    for label, rank in SEVERITY_RANKS:
        if label in score:
            return rank
    return 0


def _pick_longer(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if not a:
        return b
    if not b:
        return a
    return a if len(a) >= len(b) else b


def _pick_higher_severity(
    a: Tuple[Severity, ...], b: Tuple[Severity, ...]
) -> Tuple[Severity, ...]:
    if not a:
        return b
    if not b:
        return a
    return a if severity_rank(a) >= severity_rank(b) else b


def _union(a: Iterable, b: Iterable, key=lambda item: item) -> tuple:
    seen = set()
    merged = []
    for item in list(a) + list(b):
        if key(item) not in seen:
            seen.add(key(item))
            merged.append(item)
    return tuple(merged)


def merge_vulnerability(a: Vulnerability, b: Vulnerability) -> Vulnerability:
    """
    Merge two records of the same advisory.

    Args:
        a: Record seen first
        b: Record seen second

    Returns:
        Vulnerability: New record; neither input is modified
    """
    references: Tuple[Reference, ...] = _union(
        a.references, b.references, key=lambda ref: ref.url
    )
    return replace(
        a,
        aliases=_union(a.aliases, b.aliases),
        summary=_pick_longer(a.summary, b.summary),
        severity=_pick_higher_severity(a.severity, b.severity),
        references=references,
        fixed_in=a.fixed_in or b.fixed_in,
    )


def merge_vulnerabilities(
    a: Sequence[Vulnerability], b: Sequence[Vulnerability]
) -> List[Vulnerability]:
    """Union two advisory lists, merging records that share an id."""
    merged: Dict[str, Vulnerability] = {}

    for vuln in a:
        existing = merged.get(vuln.id)
        merged[vuln.id] = merge_vulnerability(existing, vuln) if existing else vuln

    for vuln in b:
        existing = merged.get(vuln.id)
        merged[vuln.id] = merge_vulnerability(existing, vuln) if existing else vuln

    return list(merged.values())


def merge_vuln_maps(maps: Iterable[VulnerabilityMap]) -> VulnerabilityMap:
    """
    Merge per-dependency maps from any number of sources.

    Every dependency id present in any input map is present in the result.
    """
    result: VulnerabilityMap = {}

    for vuln_map in maps:
        for dep_id, vulns in vuln_map.items():
            result[dep_id] = merge_vulnerabilities(result.get(dep_id, []), vulns)

    return result
