"""
Advisory records shared by the vulnerability clients, merge engine and reports.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Severity:
    """One severity rating; the first entry of a record is authoritative."""

    type: str
    score: str


@dataclass(frozen=True)
class Reference:
    type: str
    url: str


@dataclass(frozen=True)
class Vulnerability:
    """A published advisory as it applies to one dependency."""

    id: str
    aliases: Tuple[str, ...] = ()
    summary: Optional[str] = None
    severity: Tuple[Severity, ...] = ()
    references: Tuple[Reference, ...] = ()
    fixed_in: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "aliases": list(self.aliases),
            "summary": self.summary,
            "severity": [{"type": s.type, "score": s.score} for s in self.severity],
            "references": [{"type": r.type, "url": r.url} for r in self.references],
            "fixed_in": self.fixed_in,
        }

    @classmethod
    def from_osv(cls, record: Dict[str, Any]) -> "Vulnerability":
        """
        Build from an OSV record (full or id-only stub).

        fixed_in is the first "fixed" event across affected ranges.
        """
        fixed_in = None
        for affected in record.get("affected") or []:
            for version_range in affected.get("ranges") or []:
                for event in version_range.get("events") or []:
                    if event.get("fixed"):
                        fixed_in = event["fixed"]
                        break
                if fixed_in:
                    break
            if fixed_in:
                break

        return cls(
            id=record["id"],
            aliases=tuple(record.get("aliases") or ()),
            summary=record.get("summary") or None,
            severity=tuple(
                Severity(type=s.get("type", ""), score=str(s.get("score", "")))
                for s in record.get("severity") or []
            ),
            references=_unique_references(
                Reference(type=r.get("type", ""), url=r["url"])
                for r in record.get("references") or []
                if r.get("url")
            ),
            fixed_in=fixed_in,
        )

    @classmethod
    def from_ghsa_node(cls, node: Dict[str, Any]) -> "Vulnerability":
        """Build from a GitHub securityVulnerabilities node."""
        advisory = node.get("advisory") or {}
        patched = node.get("firstPatchedVersion") or {}
        severity = advisory.get("severity")

        return cls(
            id=advisory["ghsaId"],
            aliases=tuple(
                ident["value"]
                for ident in advisory.get("identifiers") or []
                if ident.get("type") != "GHSA" and ident.get("value")
            ),
            summary=advisory.get("summary") or None,
            severity=(Severity(type="GHSA", score=severity),) if severity else (),
            references=_unique_references(
                Reference(type="WEB", url=r["url"])
                for r in advisory.get("references") or []
                if r.get("url")
            ),
            fixed_in=patched.get("identifier"),
        )


def _unique_references(references) -> Tuple[Reference, ...]:
    seen = set()
    unique = []
    for ref in references:
        if ref.url not in seen:
            seen.add(ref.url)
            unique.append(ref)
    return tuple(unique)


# dependency node id -> advisories affecting it
VulnerabilityMap = Dict[str, List[Vulnerability]]
