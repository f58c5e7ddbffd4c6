"""
Shared fixtures for dep-scanner tests.
"""

import json
import os

import pytest

from dep_scanner.cli_config import reset_config
from dep_scanner.dependency import DependencyType
from dep_scanner.error_handling import ErrorHandler
from dep_scanner.scanner import (
    Finding,
    Report,
    ReportMetadata,
    ReportSummary,
)
from dep_scanner.vulnerability import Reference, Severity, Vulnerability

# lodash -> minimist, express -> debug -> ms
SAMPLE_PACKAGE_LOCK = {
    "name": "demo-app",
    "version": "1.0.0",
    "lockfileVersion": 3,
    "requires": True,
    "packages": {
        "": {
            "name": "demo-app",
            "version": "1.0.0",
            "dependencies": {"lodash": "^4.17.20"},
            "devDependencies": {"express": "^4.18.2"},
        },
        "node_modules/lodash": {
            "version": "4.17.20",
            "dependencies": {"minimist": "^1.2.5"},
        },
        "node_modules/minimist": {"version": "1.2.5"},
        "node_modules/express": {
            "version": "4.18.2",
            "dependencies": {"debug": "^4.3.4"},
        },
        "node_modules/debug": {
            "version": "4.3.4",
            "dependencies": {"ms": "2.1.3"},
            "optionalDependencies": {"supports-color": "^8.1.1"},
        },
        "node_modules/ms": {"version": "2.1.3"},
    },
}

SAMPLE_POETRY_LOCK = """
[[package]]
name = "requests"
version = "2.31.0"
description = "Python HTTP for Humans."
category = "main"
optional = false
python-versions = ">=3.7"

[package.dependencies]
certifi = ">=2017.4.17"
charset-normalizer = ">=2,<4"
urllib3 = ">=1.21.1,<3"

[[package]]
name = "urllib3"
version = "2.0.4"
category = "main"
optional = false
python-versions = ">=3.7"

[[package]]
name = "certifi"
version = "2023.7.22"
category = "main"
optional = false
python-versions = ">=3.6"

[[package]]
name = "pytest"
version = "7.4.0"
category = "dev"
optional = false
python-versions = ">=3.7"

[metadata]
lock-version = "1.1"
python-versions = "^3.9"
"""

SAMPLE_YARN_V1 = """# THIS IS AN AUTOGENERATED FILE. DO NOT EDIT THIS FILE DIRECTLY.
# yarn lockfile v1


"@babel/code-frame@^7.0.0", "@babel/code-frame@^7.22.5":
  version "7.22.5"
  resolved "https://registry.yarnpkg.com/@babel/code-frame/-/code-frame-7.22.5.tgz#234d98e1551960604f1246e6475891a570ad5658"
  integrity sha512-Xmwn266vad+6DAqEB2A6V/CcZVp62BbwVmcOJc2RPuwih1kw02TjQvWVWlcKGbBPd+8/0V5DEkOcizRGYsspYQ==
  dependencies:
    "@babel/highlight" "^7.22.5"

"@babel/highlight@^7.22.5":
  version "7.22.10"
  resolved "https://registry.yarnpkg.com/@babel/highlight/-/highlight-7.22.10.tgz"

debug@^4.3.4:
  version "4.3.4"
  resolved "https://registry.yarnpkg.com/debug/-/debug-4.3.4.tgz#1319f6579357f2338d3337d2cdd4914bb5dcc664"
  dependencies:
    ms "2.1.2"

ms@2.1.2:
  version "2.1.2"
  resolved "https://registry.yarnpkg.com/ms/-/ms-2.1.2.tgz"
"""

SAMPLE_YARN_BERRY = """# This file is generated by running "yarn install" inside your project.
# Manual changes might be lost - proceed with caution!

__metadata:
  version: 6
  cacheKey: 8

"debug@npm:^4.3.4":
  version: 4.3.4
  resolution: "debug@npm:4.3.4"
  dependencies:
    ms: 2.1.2
  peerDependenciesMeta:
    supports-color:
      optional: true
  checksum: 3dbad3f94ea64f34431a9cbf0bafb61853eda57bff2880036153438f50fb5a84f27683ba0d8e5426bf41a8c6ff03879488120cf5b3a761e77953169c0600a708
  languageName: node
  linkType: hard

"demo-app@workspace:.":
  version: 0.0.0-use.local
  resolution: "demo-app@workspace:."
  dependencies:
    debug: ^4.3.4
  languageName: unknown
  linkType: soft

"ms@npm:2.1.2":
  version: 2.1.2
  resolution: "ms@npm:2.1.2"
  checksum: 673cdb2c3133eb050c745908d8ce632ed2c02d85640e2edb3ace856a2266a813b30c613569bf3354fdf4ea7d1a1494add3bfa95e2713baa27d0c2c71fc44f58f
  languageName: node
  linkType: hard
"""

GITHUB_TOKEN = "ghp_" + "a1B2c3D4e5" * 3 + "f6G7h8"

LODASH_VULN = Vulnerability(
    id="GHSA-jf85-cpcp-j695",
    aliases=("CVE-2021-23337",),
    summary="Command Injection in lodash",
    severity=(Severity("GHSA", "HIGH"),),
    references=(Reference("WEB", "https://nvd.nist.gov/vuln/detail/CVE-2021-23337"),),
    fixed_in="4.17.21",
)

MINIMIST_VULN = Vulnerability(
    id="GHSA-xvch-5gv4-984h",
    aliases=("CVE-2021-44906",),
    summary="Prototype Pollution in minimist",
    severity=(Severity("GHSA", "CRITICAL"),),
    fixed_in="1.2.6",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config files, tokens and ignore lists out of every test."""
    for key in list(os.environ):
        if key.startswith("DEP_SCANNER_") or key == "GITHUB_TOKEN":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    """Directory for fixture files."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def write_file(temp_dir):
    """Write a fixture file into the project directory and return its path."""

    def _write(name, content):
        path = temp_dir / name
        if not isinstance(content, str):
            content = json.dumps(content, indent=2)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_package_lock(write_file):
    return write_file("package-lock.json", SAMPLE_PACKAGE_LOCK)


@pytest.fixture
def sample_poetry_lock(write_file):
    return write_file("poetry.lock", SAMPLE_POETRY_LOCK)


@pytest.fixture
def diagnostics():
    """ErrorHandler that records every reported context in .records."""
    handler = ErrorHandler(logger_name="dep_scanner.tests")
    records = []
    handler.register_callback(records.append)
    handler.records = records
    return handler


def build_report(vulnerable=True, suppressed_ids=()):
    """Small two-dependency report for output and CLI tests."""
    findings = (
        Finding(
            id="npm:lodash@4.17.20",
            name="lodash",
            version="4.17.20",
            dependency_type=DependencyType.DIRECT,
            vulnerabilities=(LODASH_VULN,) if vulnerable else (),
        ),
        Finding(
            id="npm:ms@2.1.3",
            name="ms",
            version="2.1.3",
            dependency_type=DependencyType.TRANSITIVE,
        ),
    )
    summary = ReportSummary(
        total_dependencies=2,
        direct_dependencies=1,
        transitive_dependencies=1,
        vulnerable_dependencies=1 if vulnerable else 0,
        vulnerable_percentage=50.0 if vulnerable else 0.0,
    )
    metadata = ReportMetadata(
        scanned_file="package-lock.json",
        sources=("osv", "ghsa"),
        timestamp="2024-01-01T00:00:00+00:00",
        duration_ms=1234,
        suppressed_count=len(suppressed_ids),
        suppressed_ids=tuple(suppressed_ids),
    )
    return Report(summary=summary, findings=findings, metadata=metadata)
