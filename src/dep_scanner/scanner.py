"""
Core scanning engine for dependency vulnerability checks.

Parses a dependency file, queries the selected vulnerability databases
concurrently, reconciles their answers and assembles the Report value.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .cli_config import get_config
from .dependency import DependencyGraph, DependencyNode, DependencyType
from .error_handling import ErrorHandler, get_error_handler
from .ignore import filter_ignored, load_ignore_list
from .merge import merge_vuln_maps
from .parsers import parse_dependency_file
from .structured_logging import log_scan_complete, log_scan_start
from .traversal import get_all_dependencies
from .vulnerability import Vulnerability, VulnerabilityMap
from .vulnerability_clients import (
    BaseVulnerabilityClient,
    ScanSource,
    get_vulnerability_client,
)


@dataclass(frozen=True)
class Finding:
    """One reachable dependency and the advisories that affect it."""

    id: str
    name: str
    version: str
    dependency_type: DependencyType
    vulnerabilities: Tuple[Vulnerability, ...] = ()

    @property
    def is_vulnerable(self) -> bool:
        return len(self.vulnerabilities) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "dependency_type": self.dependency_type.value,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
        }


@dataclass(frozen=True)
class ReportSummary:
    total_dependencies: int
    direct_dependencies: int
    transitive_dependencies: int
    vulnerable_dependencies: int
    vulnerable_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_dependencies": self.total_dependencies,
            "direct_dependencies": self.direct_dependencies,
            "transitive_dependencies": self.transitive_dependencies,
            "vulnerable_dependencies": self.vulnerable_dependencies,
            "vulnerable_percentage": self.vulnerable_percentage,
        }


@dataclass(frozen=True)
class ReportMetadata:
    """Provenance of a scan."""

    scanned_file: str
    sources: Tuple[str, ...]
    timestamp: str
    duration_ms: int
    suppressed_count: int = 0
    suppressed_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned_file": self.scanned_file,
            "sources": list(self.sources),
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "suppressed_count": self.suppressed_count,
            "suppressed_ids": list(self.suppressed_ids),
        }


@dataclass(frozen=True)
class Report:
    """Complete scan results for a dependency file."""

    summary: ReportSummary
    findings: Tuple[Finding, ...]
    metadata: ReportMetadata

    @property
    def vulnerable_findings(self) -> List[Finding]:
        """Get all findings with at least one advisory."""
        return [f for f in self.findings if f.is_vulnerable]

    @property
    def has_vulnerabilities(self) -> bool:
        return self.summary.vulnerable_dependencies > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "metadata": self.metadata.to_dict(),
        }


def generate_report(
    graph: DependencyGraph, vuln_map: VulnerabilityMap, metadata: ReportMetadata
) -> Report:
    """
    Summarize dependency and vulnerability findings.

    Args:
        graph: Parsed dependency graph
        vuln_map: Merged and filtered advisories per dependency id
        metadata: Scan provenance

    Returns:
        Report: Findings in traversal order with aggregate counts
    """
    findings = tuple(
        Finding(
            id=dep.id,
            name=dep.name,
            version=dep.version,
            dependency_type=dep.dependency_type,
            vulnerabilities=tuple(vuln_map.get(dep.id, ())),
        )
        for dep in get_all_dependencies(graph)
    )

    total = len(findings)
    direct = sum(1 for f in findings if f.dependency_type == DependencyType.DIRECT)
    vulnerable = sum(1 for f in findings if f.is_vulnerable)

    summary = ReportSummary(
        total_dependencies=total,
        direct_dependencies=direct,
        transitive_dependencies=total - direct,
        vulnerable_dependencies=vulnerable,
        vulnerable_percentage=round(vulnerable / total * 100, 1) if total else 0.0,
    )
    return Report(summary=summary, findings=findings, metadata=metadata)


class VulnerabilityScanner:
    """
    Main scanner: parse, traverse, query, merge, filter, report.

    Follows the RORO pattern: receives a file path, returns a Report.
    """

    def __init__(
        self,
        source: ScanSource = ScanSource.ALL,
        github_token: Optional[str] = None,
        ignored_ids: Optional[Set[str]] = None,
        ignore_file: Optional[str] = None,
        error_handler: Optional[ErrorHandler] = None,
        clients: Optional[Sequence[BaseVulnerabilityClient]] = None,
    ):
        """
        Initialize the scanner.

        Args:
            source: Databases to query
            github_token: Token for the GHSA GraphQL API
            ignored_ids: Suppressed advisory ids; when None, a .scanignore
                file is looked up for each scanned file
            ignore_file: Explicit suppression list path
            error_handler: Diagnostics sink shared with parsers and clients
            clients: Pre-built clients, replacing the ones source selects
        """
        self.source = source
        self.github_token = github_token
        self.ignored_ids = ignored_ids
        self.ignore_file = ignore_file
        self.error_handler = error_handler or get_error_handler()
        self._clients = list(clients) if clients is not None else None

    def _build_clients(self) -> List[BaseVulnerabilityClient]:
        if self._clients is not None:
            return self._clients
        return [
            get_vulnerability_client(
                source, github_token=self.github_token, error_handler=self.error_handler
            )
            for source in self.source.clients()
        ]

    async def _query_client(
        self, client: BaseVulnerabilityClient, dependencies: List[DependencyNode]
    ) -> VulnerabilityMap:
        async with client:
            return await client.query(dependencies)

    async def query_vulnerabilities(
        self,
        dependencies: List[DependencyNode],
        clients: Optional[Sequence[BaseVulnerabilityClient]] = None,
    ) -> Tuple[VulnerabilityMap, Tuple[str, ...]]:
        """
        Query every selected database concurrently and merge the answers.

        All clients run to completion before the first failure, if any, is
        re-raised.

        Args:
            dependencies: Flat dependency list from traversal
            clients: Clients to run; defaults to the ones source selects

        Returns:
            Tuple of the merged map and the names of the sources that
            actually sent a request
        """
        if clients is None:
            clients = self._build_clients()
        results = await asyncio.gather(
            *(self._query_client(client, dependencies) for client in clients),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException):
                raise result

        sources = tuple(client.source_name for client in clients if client.queried)
        return merge_vuln_maps(results), sources

    async def scan_dependency_file(self, file_path: str) -> Report:
        """
        Scan a dependency file.

        Args:
            file_path: Path to a supported lockfile or manifest

        Returns:
            Report with findings, counts and provenance

        Raises:
            UnsupportedFileError, ParseError, ValueError: Unusable input file
            VulnerabilityQueryError: OSV request failed
            FileNotFoundError: Explicit ignore file does not exist
        """
        start_time = time.time()
        scan_id = uuid.uuid4().hex[:12]

        ignored = self.ignored_ids
        if ignored is None:
            ignored = load_ignore_list(file_path, self.ignore_file, self.error_handler)

        graph = parse_dependency_file(file_path, self.error_handler)
        dependencies = get_all_dependencies(graph)
        clients = self._build_clients()
        log_scan_start(
            scan_id,
            file_path,
            len(dependencies),
            sources=[client.source_name for client in clients],
        )

        merged, sources = await self.query_vulnerabilities(dependencies, clients)
        filtered = filter_ignored(merged, ignored)

        duration_ms = int((time.time() - start_time) * 1000)
        metadata = ReportMetadata(
            scanned_file=file_path,
            sources=sources,
            timestamp=datetime.now(timezone.utc).isoformat(),
            duration_ms=duration_ms,
            suppressed_count=filtered.removed_count,
            suppressed_ids=tuple(filtered.removed_ids),
        )
        report = generate_report(graph, filtered.filtered, metadata)

        log_scan_complete(
            scan_id,
            duration_ms,
            report.summary.vulnerable_dependencies,
            filtered.removed_count,
        )
        return report


def get_vulnerability_scanner(
    source: Optional[str] = None,
    github_token: Optional[str] = None,
    ignore_file: Optional[str] = None,
    error_handler: Optional[ErrorHandler] = None,
) -> VulnerabilityScanner:
    """
    Factory function to create a scanner.

    Args:
        source: "osv", "ghsa" or "all" (defaults to config value)
        github_token: GHSA token (defaults to config / GITHUB_TOKEN)
        ignore_file: Explicit suppression list path (defaults to config value)
        error_handler: Diagnostics sink

    Returns:
        Configured VulnerabilityScanner instance
    """
    config = get_config()
    return VulnerabilityScanner(
        source=ScanSource(source or config.scan.sources),
        github_token=github_token or config.credentials.github_token,
        ignore_file=ignore_file or config.scan.ignore_file,
        error_handler=error_handler,
    )
