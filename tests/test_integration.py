"""
Integration tests for dep-scanner.
Tests complete end-to-end workflows: parse -> traverse -> query -> merge -> filter -> report.
"""

import json
from unittest.mock import patch

import httpx
import pytest

from dep_scanner.dependency import DependencyType
from dep_scanner.error_handling import ErrorCategory, VulnerabilityQueryError
from dep_scanner.scanner import VulnerabilityScanner, get_vulnerability_scanner
from dep_scanner.vulnerability import Severity
from dep_scanner.vulnerability_clients import GHSAClient, OSVClient, ScanSource

from conftest import GITHUB_TOKEN

LODASH_OSV_RECORD = {
    "id": "GHSA-jf85-cpcp-j695",
    "summary": "Command Injection in lodash",
    "aliases": ["CVE-2021-23337"],
    "severity": [
        {"type": "CVSS_V3", "score": "CVSS:3.1/AV:N/AC:L/PR:H/UI:N/S:U/C:H/I:H/A:H"}
    ],
    "affected": [
        {
            "package": {"ecosystem": "npm", "name": "lodash"},
            "ranges": [
                {"type": "SEMVER", "events": [{"introduced": "0"}, {"fixed": "4.17.21"}]}
            ],
        }
    ],
    "references": [
        {"type": "ADVISORY", "url": "https://nvd.nist.gov/vuln/detail/CVE-2021-23337"}
    ],
}

GHSA_ADVISORIES = {
    "lodash": [
        {
            "advisory": {
                "ghsaId": "GHSA-jf85-cpcp-j695",
                "summary": "Command Injection in lodash",
                "severity": "HIGH",
                "identifiers": [
                    {"type": "GHSA", "value": "GHSA-jf85-cpcp-j695"},
                    {"type": "CVE", "value": "CVE-2021-23337"},
                ],
                "references": [
                    {"url": "https://nvd.nist.gov/vuln/detail/CVE-2021-23337"},
                    {"url": "https://github.com/advisories/GHSA-jf85-cpcp-j695"},
                ],
            },
            "vulnerableVersionRange": "< 4.17.21",
            "firstPatchedVersion": {"identifier": "4.17.21"},
        }
    ],
    "minimist": [
        {
            "advisory": {
                "ghsaId": "GHSA-xvch-5gv4-984h",
                "summary": "Prototype Pollution in minimist",
                "severity": "CRITICAL",
                "identifiers": [
                    {"type": "GHSA", "value": "GHSA-xvch-5gv4-984h"},
                    {"type": "CVE", "value": "CVE-2021-44906"},
                ],
                "references": [],
            },
            "vulnerableVersionRange": "< 1.2.6",
            "firstPatchedVersion": {"identifier": "1.2.6"},
        }
    ],
}


class FakeDatabases:
    """One MockTransport answering both OSV.dev and the GitHub GraphQL API."""

    def __init__(self, osv_status=200):
        self.osv_status = osv_status
        self.osv_requests = []
        self.ghsa_requests = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request):
        if request.url.host == "api.osv.dev":
            return self.handle_osv(request)
        return self.handle_ghsa(request)

    def handle_osv(self, request):
        self.osv_requests.append(request)
        if self.osv_status != 200:
            return httpx.Response(self.osv_status)

        queries = json.loads(request.content)["queries"]
        results = [
            {"vulns": [LODASH_OSV_RECORD]} if q["package"]["name"] == "lodash" else {}
            for q in queries
        ]
        return httpx.Response(200, json={"results": results})

    def handle_ghsa(self, request):
        self.ghsa_requests.append(request)
        document = json.loads(request.content)["query"]
        data = {}
        for line in document.splitlines():
            if "securityVulnerabilities(" not in line:
                continue
            alias = line.strip().split(":", 1)[0]
            name = json.loads(line.split("package: ", 1)[1].split(", first:", 1)[0])
            data[alias] = {"nodes": GHSA_ADVISORIES.get(name, [])}
        return httpx.Response(200, json={"data": data})

    def scanner(self, ignored_ids=frozenset(), **kwargs):
        return VulnerabilityScanner(
            ignored_ids=ignored_ids,
            clients=[
                OSVClient(transport=self.transport),
                GHSAClient(github_token=GITHUB_TOKEN, transport=self.transport),
            ],
            **kwargs,
        )


class TestEndToEndScanning:
    """Test complete scanning workflows."""

    @pytest.mark.asyncio
    async def test_complete_package_lock_scan(self, sample_package_lock):
        """Test a complete package-lock.json scan."""
        databases = FakeDatabases()

        report = await databases.scanner().scan_dependency_file(str(sample_package_lock))

        assert report.summary.total_dependencies == 5
        assert report.summary.direct_dependencies == 2
        assert report.summary.transitive_dependencies == 3
        assert report.summary.vulnerable_dependencies == 2
        assert report.summary.vulnerable_percentage == 40.0

        assert [f.name for f in report.findings] == [
            "lodash",
            "minimist",
            "express",
            "debug",
            "ms",
        ]
        assert [f.name for f in report.vulnerable_findings] == ["lodash", "minimist"]
        assert report.findings[1].dependency_type == DependencyType.TRANSITIVE
        assert report.metadata.sources == ("osv", "ghsa")
        assert report.metadata.suppressed_count == 0
        assert len(databases.osv_requests) == 1
        assert len(databases.ghsa_requests) == 1

    @pytest.mark.asyncio
    async def test_same_advisory_from_both_databases_is_merged(self, sample_package_lock):
        """Test one advisory from both databases becomes one finding."""
        report = await FakeDatabases().scanner().scan_dependency_file(
            str(sample_package_lock)
        )

        lodash = report.findings[0]
        assert len(lodash.vulnerabilities) == 1
        vuln = lodash.vulnerabilities[0]
        assert vuln.id == "GHSA-jf85-cpcp-j695"
        assert vuln.aliases == ("CVE-2021-23337",)
        # The GHSA label outranks an unlabelled CVSS vector
        assert vuln.severity == (Severity("GHSA", "HIGH"),)
        assert [r.url for r in vuln.references] == [
            "https://nvd.nist.gov/vuln/detail/CVE-2021-23337",
            "https://github.com/advisories/GHSA-jf85-cpcp-j695",
        ]
        assert vuln.fixed_in == "4.17.21"

    @pytest.mark.asyncio
    async def test_osv_failure_aborts_after_all_sources_finish(self, sample_package_lock):
        """Test an OSV failure aborts the scan after GitHub finishes."""
        databases = FakeDatabases(osv_status=500)

        with pytest.raises(VulnerabilityQueryError):
            await databases.scanner().scan_dependency_file(str(sample_package_lock))

        assert len(databases.ghsa_requests) == 1

    @pytest.mark.asyncio
    async def test_suppressed_alias_removes_finding(self, sample_package_lock):
        """Test suppressing an alias removes the finding."""
        scanner = FakeDatabases().scanner(ignored_ids={"CVE-2021-44906"})

        report = await scanner.scan_dependency_file(str(sample_package_lock))

        assert report.summary.total_dependencies == 5
        assert report.summary.vulnerable_dependencies == 1
        assert report.summary.vulnerable_percentage == 20.0
        assert report.metadata.suppressed_count == 1
        assert report.metadata.suppressed_ids == ("CVE-2021-44906",)
        assert report.findings[1].vulnerabilities == ()

    @pytest.mark.asyncio
    async def test_scanignore_is_discovered_next_to_file(self, sample_package_lock, temp_dir):
        """Test .scanignore next to the scanned file is used."""
        (temp_dir / ".scanignore").write_text(
            "# accepted risk\nGHSA-jf85-cpcp-j695\n", encoding="utf-8"
        )
        scanner = FakeDatabases().scanner(ignored_ids=None)

        report = await scanner.scan_dependency_file(str(sample_package_lock))

        assert [f.name for f in report.vulnerable_findings] == ["minimist"]
        assert report.metadata.suppressed_ids == ("GHSA-jf85-cpcp-j695",)

    @pytest.mark.asyncio
    async def test_manifest_without_dependencies(self, write_file):
        """Test a manifest without dependencies sends no requests."""
        manifest = write_file("package.json", {"name": "empty-app", "version": "1.0.0"})
        databases = FakeDatabases()

        report = await databases.scanner().scan_dependency_file(str(manifest))

        assert report.summary.total_dependencies == 0
        assert report.summary.vulnerable_percentage == 0.0
        assert report.findings == ()
        assert databases.osv_requests == []
        assert databases.ghsa_requests == []
        assert report.metadata.sources == ()

    @pytest.mark.asyncio
    async def test_poetry_lock_uses_pypi_ecosystems(self, sample_poetry_lock):
        """Test poetry.lock scans query PyPI ecosystems."""
        databases = FakeDatabases()

        report = await databases.scanner().scan_dependency_file(str(sample_poetry_lock))

        ecosystems = {
            q["package"]["ecosystem"]
            for q in json.loads(databases.osv_requests[0].content)["queries"]
        }
        assert ecosystems == {"PyPI"}
        assert "ecosystem: PIP" in json.loads(databases.ghsa_requests[0].content)["query"]
        assert report.summary.vulnerable_dependencies == 0

    @pytest.mark.asyncio
    async def test_report_is_json_serializable(self, sample_package_lock):
        """Test the report serializes to JSON."""
        report = await FakeDatabases().scanner().scan_dependency_file(
            str(sample_package_lock)
        )

        data = json.loads(json.dumps(report.to_dict()))
        assert data["summary"]["vulnerable_percentage"] == 40.0
        assert data["findings"][0]["dependency_type"] == "direct"
        assert data["findings"][0]["vulnerabilities"][0]["fixed_in"] == "4.17.21"
        assert data["metadata"]["sources"] == ["osv", "ghsa"]

    @pytest.mark.asyncio
    async def test_missing_token_degrades_to_osv_only(self, sample_package_lock, diagnostics):
        """Test a missing token degrades the scan to OSV only."""
        databases = FakeDatabases()
        scanner = VulnerabilityScanner(
            ignored_ids=set(),
            error_handler=diagnostics,
            clients=[
                OSVClient(transport=databases.transport),
                GHSAClient(error_handler=diagnostics, transport=databases.transport),
            ],
        )

        report = await scanner.scan_dependency_file(str(sample_package_lock))

        assert [f.name for f in report.vulnerable_findings] == ["lodash"]
        assert databases.ghsa_requests == []
        assert any(r.category == ErrorCategory.CREDENTIAL for r in diagnostics.records)
        assert report.metadata.sources == ("osv",)

    @pytest.mark.asyncio
    async def test_scan_start_lists_injected_clients(self, sample_package_lock):
        """Test the scan start log names the clients actually used."""
        scanner = FakeDatabases().scanner(source=ScanSource.OSV)

        with patch("dep_scanner.scanner.log_scan_start") as mock_log:
            await scanner.scan_dependency_file(str(sample_package_lock))

        assert mock_log.call_args.kwargs["sources"] == ["osv", "ghsa"]


class TestScannerFactory:
    """Test scanner construction from configuration."""

    def test_defaults_from_config(self, monkeypatch):
        """Test scanner defaults come from config."""
        from dep_scanner.cli_config import reset_config

        monkeypatch.setenv("DEP_SCANNER_SOURCES", "osv")
        reset_config()

        scanner = get_vulnerability_scanner()
        assert scanner.source == ScanSource.OSV
        assert scanner.ignored_ids is None

    def test_explicit_arguments_win(self):
        """Test explicit arguments override config."""
        scanner = get_vulnerability_scanner(
            source="ghsa", github_token=GITHUB_TOKEN, ignore_file="custom-ignore"
        )
        assert scanner.source == ScanSource.GHSA
        assert scanner.github_token == GITHUB_TOKEN
        assert scanner.ignore_file == "custom-ignore"
