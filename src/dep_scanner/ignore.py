"""
Support for .scanignore files to suppress specific advisories.

Format: one advisory id per line (GHSA-xxxx, CVE-xxxx, PYSEC-xxxx, ...).
Anything after a "#" is a comment; blank lines are ignored. Ids are
compared verbatim against advisory ids and aliases.

Example .scanignore:
    PYSEC-2022-9
    # Not relevant to this project
    GHSA-1234-5678-abcd
    CVE-2024-12345 # False positive
"""

from pathlib import Path
from typing import List, NamedTuple, Optional, Set

from .error_handling import ErrorCategory, ErrorHandler, get_error_handler
from .vulnerability import VulnerabilityMap

IGNORE_FILENAME = ".scanignore"


class IgnoreResult(NamedTuple):
    filtered: VulnerabilityMap
    removed_count: int
    removed_ids: List[str]


def parse_ignore_text(text: str) -> Set[str]:
    """Extract suppressed ids from .scanignore content."""
    ignored = set()
    for line in text.splitlines():
        identifier = line.split("#", 1)[0].strip()
        if identifier:
            ignored.add(identifier)
    return ignored


def find_ignore_file(
    scanned_file: str, explicit_path: Optional[str] = None
) -> Optional[Path]:
    """
    Locate the suppression list for a scan.

    Priority: explicit path > directory of the scanned file > current directory.

    Raises:
        FileNotFoundError: If an explicit path is given but does not exist
    """
    if explicit_path:
        path = Path(explicit_path)
        if not path.is_file():
            raise FileNotFoundError(f"Ignore file not found: {explicit_path}")
        return path

    for candidate in (
        Path(scanned_file).resolve().parent / IGNORE_FILENAME,
        Path.cwd() / IGNORE_FILENAME,
    ):
        if candidate.is_file():
            return candidate

    return None


def load_ignore_list(
    scanned_file: str,
    explicit_path: Optional[str] = None,
    error_handler: Optional[ErrorHandler] = None,
) -> Set[str]:
    """Load suppressed advisory ids; an absent .scanignore yields an empty set."""
    ignore_path = find_ignore_file(scanned_file, explicit_path)
    if ignore_path is None:
        return set()

    ignored = parse_ignore_text(ignore_path.read_text(encoding="utf-8"))
    if ignored:
        (error_handler or get_error_handler()).info(
            ErrorCategory.CONFIGURATION,
            f"Loaded {len(ignored)} ignored advisory ID(s) from {ignore_path.name}",
            "ignore",
            "load_ignore_list",
        )
    return ignored


def filter_ignored(vuln_map: VulnerabilityMap, suppressed: Set[str]) -> IgnoreResult:
    """
    Drop advisories whose id or any alias is suppressed.

    Dependencies whose advisories are all removed keep an empty list. With no
    suppressed ids the input map itself is returned.

    Returns:
        IgnoreResult: filtered map, number of advisory instances removed, and
        every suppressed id that matched, in first-match order
    """
    if not suppressed:
        return IgnoreResult(vuln_map, 0, [])

    removed_count = 0
    removed_ids: List[str] = []
    filtered: VulnerabilityMap = {}

    for dep_id, vulns in vuln_map.items():
        kept = []
        for vuln in vulns:
            matched = [i for i in (vuln.id,) + tuple(vuln.aliases) if i in suppressed]
            if not matched:
                kept.append(vuln)
                continue

            removed_count += 1
            for identifier in matched:
                if identifier not in removed_ids:
                    removed_ids.append(identifier)
        filtered[dep_id] = kept

    return IgnoreResult(filtered, removed_count, removed_ids)
