"""
Version range matching for advisory ranges such as ">= 1.0.0, < 2.0.0".

npm versions follow semver, including its prerelease rule: a prerelease
version only satisfies a range when some comparator shares its
major.minor.patch and carries a prerelease tag itself. Python versions
follow PEP 440.
"""

import operator
import re
from typing import List, Tuple

import semver
from packaging.specifiers import InvalidSpecifier, Specifier
from packaging.version import InvalidVersion, Version

from .dependency import Registry

_SEMVER_CLAUSE = re.compile(r"^(<=|>=|<|>|==|=)?(.+)$")

_SEMVER_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
    "==": operator.eq,
}


def to_semver_range(range_expr: str) -> str:
    """Normalize comma-separated clauses into one space-joined range."""
    clauses = [re.sub(r"\s+", "", clause) for clause in range_expr.split(",")]
    return " ".join(clause for clause in clauses if clause)


def clean_version(version: str) -> str:
    """Strip whitespace and a leading "v" or "=" from a version string."""
    return re.sub(r"^[v=]+", "", version.strip(), flags=re.IGNORECASE).strip()


def _clause_specifier(clause: str) -> Specifier:
    # A lone "=" is an exact match in advisory ranges
    if clause.startswith("=") and not clause.startswith("=="):
        clause = "=" + clause
    return Specifier(clause)


def _semver_comparators(clauses: List[str]) -> List[Tuple[str, semver.Version]]:
    """
    Raises:
        ValueError: If a clause has no recognized operator or bound
    """
    comparators = []
    for clause in clauses:
        match = _SEMVER_CLAUSE.match(clause)
        if not match:
            raise ValueError(f"Invalid range clause: {clause}")
        comparators.append(
            (match.group(1) or "=", semver.Version.parse(clean_version(match.group(2))))
        )
    return comparators


def _semver_satisfies(version: str, clauses: List[str], range_expr: str) -> bool:
    try:
        parsed = semver.Version.parse(clean_version(version))
    except ValueError:
        return False

    try:
        comparators = _semver_comparators(clauses)
    except ValueError:
        return version in range_expr

    if not all(_SEMVER_OPERATORS[op](parsed, bound) for op, bound in comparators):
        return False

    if parsed.prerelease:
        core = (parsed.major, parsed.minor, parsed.patch)
        return any(
            bound.prerelease and (bound.major, bound.minor, bound.patch) == core
            for _op, bound in comparators
        )
    return True


def _pep440_satisfies(version: str, clauses: List[str], range_expr: str) -> bool:
    try:
        parsed = Version(clean_version(version))
    except InvalidVersion:
        return False

    try:
        return all(
            _clause_specifier(clause).contains(parsed, prereleases=True)
            for clause in clauses
        )
    except InvalidSpecifier:
        return version in range_expr


def is_affected(
    version: str, range_expr: str, registry: Registry = Registry.NPM
) -> bool:
    """
    Decide whether a version falls inside an advisory's vulnerable range.

    Args:
        version: Installed version, e.g. "v4.17.20"
        range_expr: Comma-separated clauses, e.g. ">= 4.0.0, < 4.17.21"
        registry: Selects semver (npm) or PEP 440 (PyPI) semantics

    Returns:
        bool: False for unparseable versions and empty ranges. A malformed
        clause falls back to a substring check of the raw texts.
    """
    normalized = to_semver_range(range_expr or "")
    if not normalized:
        return False

    clauses = normalized.split(" ")
    if registry == Registry.PYPI:
        return _pep440_satisfies(version, clauses, range_expr)
    return _semver_satisfies(version, clauses, range_expr)
