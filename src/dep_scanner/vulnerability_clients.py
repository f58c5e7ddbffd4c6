"""
Vulnerability database clients.

Implements the OSV.dev batch REST client and the GitHub Security Advisory
GraphQL client. Both map every queried dependency id to the advisories that
affect it.
"""

import asyncio
import json
import re
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx
from httpx import HTTPStatusError, RequestError

from .cli_config import get_config
from .dependency import DependencyNode, Registry
from .error_handling import (
    ErrorCategory,
    ErrorHandler,
    VulnerabilityQueryError,
    get_error_handler,
    log_credential_error,
    log_network_error,
)
from .structured_logging import log_vulnerability_query
from .version_matcher import is_affected
from .vulnerability import Vulnerability, VulnerabilityMap

# Valid credential characters
CREDENTIAL_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+=/.]+$")

OSV_ECOSYSTEMS: Dict[Registry, str] = {
    Registry.NPM: "npm",
    Registry.PYPI: "PyPI",
}

GHSA_ECOSYSTEMS: Dict[Registry, str] = {
    Registry.NPM: "NPM",
    Registry.PYPI: "PIP",
}

GHSA_NODE_FIELDS = """
      nodes {
        advisory {
          ghsaId
          summary
          severity
          identifiers { type value }
          references { url }
        }
        vulnerableVersionRange
        firstPatchedVersion { identifier }
      }"""

# Keys present on a full OSV record but not on a querybatch stub
_OSV_DETAIL_KEYS = ("summary", "details", "aliases", "affected", "severity", "references")


class ScanSource(Enum):
    """Vulnerability databases a scan can query."""

    OSV = "osv"
    GHSA = "ghsa"
    ALL = "all"

    def clients(self) -> List["ScanSource"]:
        """Expand to the concrete databases to query."""
        if self is ScanSource.ALL:
            return [ScanSource.OSV, ScanSource.GHSA]
        return [self]


def _validate_credential(credential: str, credential_type: str = "API token") -> str:
    """
    Validate and sanitize credential inputs.

    Args:
        credential: The credential to validate
        credential_type: Type of credential for error messages

    Returns:
        str: Validated credential

    Raises:
        ValueError: If credential is invalid or unsafe
    """
    if not credential or not isinstance(credential, str):
        raise ValueError(f"Invalid {credential_type}: must be a non-empty string")

    credential = credential.strip()

    config = get_config()
    max_credential_length = config.security.max_credential_length
    min_credential_length = config.security.min_credential_length

    if len(credential) > max_credential_length:
        raise ValueError(
            f"{credential_type} too long: {len(credential)} chars (max: {max_credential_length})"
        )

    if not CREDENTIAL_PATTERN.match(credential):
        raise ValueError(f"Invalid {credential_type}: contains unsafe characters")

    if len(credential) < min_credential_length:
        raise ValueError(
            f"{credential_type} too short (minimum {min_credential_length} characters)"
        )

    return credential


def make_query_alias(name: str, index: int) -> str:
    """
    Build the GraphQL alias for one package sub-query.

    The index is unique across the whole query call, so aliases never
    collide even when sanitized names do ("a.b" and "a-b" both become "a_b").
    """
    return f"pkg_{index}_{re.sub(r'[^a-zA-Z0-9]', '_', name)}"


class BaseVulnerabilityClient(ABC):
    """
    Base class for vulnerability database clients.

    Uses the async context manager pattern for httpx.AsyncClient resource
    management. The HTTP client is created on context entry and closed on exit.
    """

    def __init__(
        self,
        error_handler: Optional[ErrorHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.config = config
        self.error_handler = error_handler or get_error_handler()
        self.transport = transport
        self.timeout = httpx.Timeout(
            config.network.read_timeout, connect=config.network.connect_timeout
        )
        self.client: Optional[httpx.AsyncClient] = None
        # Set by query() once a request has actually been sent
        self.queried = False

        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/json",
        }

    async def __aenter__(self):
        """Initialize the HTTP client when entering the context."""
        self.client = httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers, transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Clean up the HTTP client when exiting the context."""
        if self.client:
            await self.client.aclose()
            self.client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise RuntimeError(
                "HTTP client not initialized - use within async context manager"
            )
        return self.client

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Identifier of the database, as recorded in report metadata."""

    @abstractmethod
    async def query(self, dependencies: Sequence[DependencyNode]) -> VulnerabilityMap:
        """Map every dependency id to the advisories affecting it."""


class OSVClient(BaseVulnerabilityClient):
    """
    Client for the OSV.dev database.

    Sends every distinct (ecosystem, name, version) in one querybatch request
    and matches versions server-side. No authentication is required.
    """

    def __init__(
        self,
        error_handler: Optional[ErrorHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        hydrate: Optional[bool] = None,
    ):
        super().__init__(error_handler, transport)
        self.base_url = self.config.network.osv_api_url.rstrip("/")
        self.hydrate = self.config.scan.hydrate_osv if hydrate is None else hydrate

    @property
    def source_name(self) -> str:
        return "osv"

    async def query(self, dependencies: Sequence[DependencyNode]) -> VulnerabilityMap:
        """
        Query OSV for all dependencies in a single batch request.

        Args:
            dependencies: Flat dependency list, typically from traversal

        Returns:
            VulnerabilityMap: Every dependency id, possibly with an empty list

        Raises:
            VulnerabilityQueryError: If the request fails or the response
                has no "results" array
        """
        self.queried = False
        results: VulnerabilityMap = {dep.id: [] for dep in dependencies}
        if not dependencies:
            return results

        # Distinct node ids can share coordinates
        coordinates: Dict[Tuple[str, str, str], List[str]] = {}
        for dep in dependencies:
            key = (OSV_ECOSYSTEMS[dep.registry], dep.name, dep.version)
            coordinates.setdefault(key, []).append(dep.id)

        queries = [
            {"package": {"ecosystem": ecosystem, "name": name}, "version": version}
            for ecosystem, name, version in coordinates
        ]

        self.queried = True
        entries = await self._post_batch(queries)
        if len(entries) != len(queries):
            self.error_handler.warning(
                ErrorCategory.NETWORK,
                f"OSV returned {len(entries)} results for {len(queries)} queries",
                "vulnerability_clients",
                "OSVClient.query",
            )

        records_per_query: List[List[Dict[str, Any]]] = []
        for entry in entries:
            vulns = entry.get("vulns") if isinstance(entry, dict) else None
            records_per_query.append(
                [v for v in vulns or [] if isinstance(v, dict) and v.get("id")]
            )

        if self.hydrate:
            full_records = await self._hydrate(records_per_query)
            records_per_query = [
                [full_records.get(record["id"], record) for record in records]
                for records in records_per_query
            ]

        for node_ids, records in zip(coordinates.values(), records_per_query):
            vulns = [Vulnerability.from_osv(record) for record in records]
            for node_id in node_ids:
                results[node_id] = list(vulns)

        return results

    async def _post_batch(self, queries: List[Dict[str, Any]]) -> List[Any]:
        client = self._require_client()
        url = f"{self.base_url}/v1/querybatch"
        start_time = time.time()

        try:
            response = await client.post(url, json={"queries": queries})
            response.raise_for_status()
            data = response.json()
        except HTTPStatusError as e:
            log_vulnerability_query(
                "osv", len(queries), success=False, status_code=e.response.status_code
            )
            raise VulnerabilityQueryError(
                f"Vulnerability check failed: HTTP {e.response.status_code}"
            ) from e
        except RequestError as e:
            log_vulnerability_query("osv", len(queries), success=False, error=str(e))
            raise VulnerabilityQueryError(f"Vulnerability check failed: {e}") from e
        except ValueError as e:
            raise VulnerabilityQueryError(f"Invalid JSON from OSV: {e}") from e

        entries = data.get("results") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise VulnerabilityQueryError("Invalid OSV response: missing 'results' array")

        log_vulnerability_query(
            "osv", len(queries), response_time_ms=int((time.time() - start_time) * 1000)
        )
        return entries

    async def _hydrate(
        self, records_per_query: List[List[Dict[str, Any]]]
    ) -> Dict[str, Dict[str, Any]]:
        """Fetch full records for id-only stubs, once per distinct id."""
        stub_ids: List[str] = []
        for records in records_per_query:
            for record in records:
                is_stub = not any(key in record for key in _OSV_DETAIL_KEYS)
                if is_stub and record["id"] not in stub_ids:
                    stub_ids.append(record["id"])

        if not stub_ids:
            return {}

        semaphore = asyncio.Semaphore(self.config.scan.max_concurrent)

        async def fetch(vuln_id: str) -> Optional[Dict[str, Any]]:
            async with semaphore:
                return await self._fetch_record(vuln_id)

        fetched = await asyncio.gather(*(fetch(vuln_id) for vuln_id in stub_ids))
        return {
            vuln_id: record
            for vuln_id, record in zip(stub_ids, fetched)
            if record is not None
        }

    async def _fetch_record(self, vuln_id: str) -> Optional[Dict[str, Any]]:
        client = self._require_client()
        url = f"{self.base_url}/v1/vulns/{quote(vuln_id, safe='')}"

        try:
            response = await client.get(url)
            response.raise_for_status()
            record = response.json()
        except HTTPStatusError as e:
            self.error_handler.warning(
                ErrorCategory.NETWORK,
                f"Could not fetch details for {vuln_id}, keeping summary record",
                "vulnerability_clients",
                "OSVClient._fetch_record",
                details={"status_code": e.response.status_code},
            )
            return None
        except (RequestError, ValueError) as e:
            self.error_handler.warning(
                ErrorCategory.NETWORK,
                f"Could not fetch details for {vuln_id}, keeping summary record",
                "vulnerability_clients",
                "OSVClient._fetch_record",
                exception=e,
            )
            return None

        if not isinstance(record, dict) or record.get("id") != vuln_id:
            return None
        return record


class GHSAClient(BaseVulnerabilityClient):
    """
    Client for the GitHub Security Advisory database.

    Uses the GraphQL API with one aliased sub-query per package name and
    matches versions client-side. The REST API cannot filter by package, so
    GraphQL is the only per-package option; it requires a token.
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        error_handler: Optional[ErrorHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        batch_size: Optional[int] = None,
        max_concurrent: Optional[int] = None,
    ):
        super().__init__(error_handler, transport)
        self.api_url = self.config.network.ghsa_api_url
        self.batch_size = batch_size or self.config.scan.ghsa_batch_size
        self.max_concurrent = max_concurrent or self.config.scan.max_concurrent
        self.page_size = self.config.scan.ghsa_page_size
        self.token = self._resolve_token(github_token)

        if self.token:
            self._headers["Authorization"] = f"Bearer {self.token}"

    @property
    def source_name(self) -> str:
        return "ghsa"

    def _resolve_token(self, github_token: Optional[str]) -> Optional[str]:
        token = github_token or self.config.credentials.github_token
        if not token:
            return None

        try:
            return _validate_credential(token, "GitHub token")
        except ValueError as e:
            log_credential_error(
                "Invalid GitHub token, GHSA lookups disabled",
                "vulnerability_clients",
                "GHSAClient._resolve_token",
                credential_type="github_token",
                exception=e,
                error_handler=self.error_handler,
            )
            return None

    def build_query(self, registry: Registry, names: Sequence[str], start_index: int) -> str:
        """
        Build one GraphQL document with an aliased sub-query per name.

        Args:
            registry: Registry all names belong to
            names: Distinct package names of one batch
            start_index: Alias index of the first name

        Returns:
            str: GraphQL query document
        """
        ecosystem = GHSA_ECOSYSTEMS[registry]
        parts = [
            f"  {make_query_alias(name, start_index + offset)}: securityVulnerabilities("
            f"ecosystem: {ecosystem}, package: {json.dumps(name)}, first: {self.page_size}) {{"
            f"{GHSA_NODE_FIELDS}\n  }}"
            for offset, name in enumerate(names)
        ]
        return "query {\n" + "\n".join(parts) + "\n}"

    async def query(self, dependencies: Sequence[DependencyNode]) -> VulnerabilityMap:
        """
        Query GHSA for all dependencies.

        Without a valid token every dependency maps to an empty list and no
        request is made. A failed batch only empties the packages it covered.
        """
        self.queried = False
        results: VulnerabilityMap = {dep.id: [] for dep in dependencies}
        if not dependencies:
            return results

        if not self.token:
            log_credential_error(
                "GitHub GraphQL API requires authentication, skipping GHSA lookups",
                "vulnerability_clients",
                "GHSAClient.query",
                credential_type="github_token",
                error_handler=self.error_handler,
            )
            return results

        by_registry: Dict[Registry, List[DependencyNode]] = {}
        for dep in dependencies:
            by_registry.setdefault(dep.registry, []).append(dep)

        # Alias indexes run across all registries and batches of this call
        batches: List[Tuple[Registry, int, List[str]]] = []
        alias_index = 0
        for registry, registry_deps in by_registry.items():
            unique_names = list(dict.fromkeys(dep.name for dep in registry_deps))
            for start in range(0, len(unique_names), self.batch_size):
                names = unique_names[start : start + self.batch_size]
                batches.append((registry, alias_index, names))
                alias_index += len(names)

        self.queried = True
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(registry: Registry, start_index: int, names: List[str]):
            async with semaphore:
                return await self._run_batch(registry, start_index, names)

        batch_results = await asyncio.gather(*(run(*batch) for batch in batches))

        advisories: Dict[Tuple[Registry, str], List[Dict[str, Any]]] = {}
        for (registry, _start, _names), nodes_by_name in zip(batches, batch_results):
            for name, nodes in nodes_by_name.items():
                advisories[(registry, name)] = nodes

        for dep in dependencies:
            results[dep.id] = self._match(dep, advisories.get((dep.registry, dep.name), []))

        return results

    async def _run_batch(
        self, registry: Registry, start_index: int, names: List[str]
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Execute one batch; returns package name -> raw advisory nodes.

        Failures are reported and yield an empty mapping for the batch.
        """
        client = self._require_client()
        batch = [
            (name, make_query_alias(name, start_index + offset))
            for offset, name in enumerate(names)
        ]
        document = self.build_query(registry, names, start_index)
        start_time = time.time()

        try:
            response = await client.post(self.api_url, json={"query": document})
            response.raise_for_status()
            payload = response.json()
        except HTTPStatusError as e:
            log_network_error(
                f"GHSA query failed for {registry.value} batch of {len(batch)} packages",
                "vulnerability_clients",
                "GHSAClient._run_batch",
                url=self.api_url,
                status_code=e.response.status_code,
                exception=e,
                error_handler=self.error_handler,
            )
            log_vulnerability_query("ghsa", len(batch), success=False)
            return {}
        except (RequestError, ValueError) as e:
            log_network_error(
                f"GHSA query failed for {registry.value} batch of {len(batch)} packages",
                "vulnerability_clients",
                "GHSAClient._run_batch",
                url=self.api_url,
                exception=e,
                error_handler=self.error_handler,
            )
            log_vulnerability_query("ghsa", len(batch), success=False)
            return {}

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            errors = payload.get("errors") if isinstance(payload, dict) else None
            log_network_error(
                f"GHSA query returned no data for {registry.value} batch: "
                f"{json.dumps(errors)[:200] if errors else 'empty response'}",
                "vulnerability_clients",
                "GHSAClient._run_batch",
                url=self.api_url,
                error_handler=self.error_handler,
            )
            log_vulnerability_query("ghsa", len(batch), success=False)
            return {}

        log_vulnerability_query(
            "ghsa",
            len(batch),
            response_time_ms=int((time.time() - start_time) * 1000),
            registry=registry.value,
        )

        nodes_by_name = {}
        for name, alias in batch:
            sub_result = data.get(alias) or {}
            nodes_by_name[name] = sub_result.get("nodes") or []
        return nodes_by_name

    def _match(
        self, dep: DependencyNode, nodes: List[Dict[str, Any]]
    ) -> List[Vulnerability]:
        matching: List[Vulnerability] = []
        seen_ids = set()

        for node in nodes:
            advisory = node.get("advisory") or {}
            ghsa_id = advisory.get("ghsaId")
            if not ghsa_id or ghsa_id in seen_ids:
                continue

            if is_affected(
                dep.version, node.get("vulnerableVersionRange") or "", dep.registry
            ):
                seen_ids.add(ghsa_id)
                matching.append(Vulnerability.from_ghsa_node(node))

        return matching


def get_vulnerability_client(
    source: ScanSource,
    github_token: Optional[str] = None,
    error_handler: Optional[ErrorHandler] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseVulnerabilityClient:
    """
    Factory function to get the client for one database.

    Args:
        source: ScanSource.OSV or ScanSource.GHSA
        github_token: Token for GHSA; falls back to configuration
        error_handler: Diagnostics sink passed to the client
        transport: Optional httpx transport

    Returns:
        Configured vulnerability client

    Raises:
        ValueError: If source is not a single database
    """
    if source == ScanSource.OSV:
        return OSVClient(error_handler=error_handler, transport=transport)
    elif source == ScanSource.GHSA:
        return GHSAClient(
            github_token=github_token, error_handler=error_handler, transport=transport
        )
    else:
        raise ValueError(f"Unsupported vulnerability source: {source}")
