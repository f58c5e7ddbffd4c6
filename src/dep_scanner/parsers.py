import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import toml

from .cli_config import get_config
from .dependency import (
    DependencyGraph,
    DependencyType,
    GraphBuilder,
    Registry,
    normalize_name,
)
from .error_handling import (
    ErrorHandler,
    ParseError,
    UnsupportedFileError,
    get_error_handler,
    log_parsing_error,
)

# Final "node_modules/<name>" segment of a package-lock installation path
_LOCK_PATH_NAME = re.compile(r"node_modules/(@[^/]+/[^/]+|[^/]+)$")

# Dependency maps of an installed package that become graph edges
_LOCK_EDGE_SECTIONS = ("dependencies", "peerDependencies", "optionalDependencies")

_REQ_NAME = r"([A-Za-z0-9][A-Za-z0-9_.-]*)(?:\[[^\]]*\])?"
_REQ_EXACT = re.compile(_REQ_NAME + r"\s*==\s*([^\s,;#]+)")
_REQ_MINIMUM = re.compile(_REQ_NAME + r"\s*(>=|~=)\s*([^\s,;#]+)")
_REQ_BARE = re.compile(_REQ_NAME + r"\s*(?:;.*)?$")


def _validate_file_path(file_path: str) -> Path:
    """
    Validate that a dependency file exists and is safe to read.

    Args:
        file_path: The file path to validate

    Returns:
        Path: Validated and resolved path object

    Raises:
        ValueError: If path is invalid or unsafe
    """
    if not file_path or not isinstance(file_path, str):
        raise ValueError("File path must be a non-empty string")

    try:
        path = Path(file_path).resolve()
    except (OSError, ValueError) as e:
        raise ValueError(f"Invalid file path: {e}")

    if not path.exists():
        raise ValueError(f"File does not exist: {path}")

    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    config = get_config()
    allowed_extensions = set(config.security.allowed_file_extensions)
    if path.suffix.lower() not in allowed_extensions:
        raise ValueError(f"File type not allowed: {path.suffix}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ValueError(f"Cannot access file: {e}")

    max_file_size = config.security.max_file_size_bytes
    if file_size > max_file_size:
        raise ValueError(f"File too large: {file_size} bytes (max: {max_file_size})")

    return path


def _safe_read_file(file_path: str) -> str:
    """
    Validate and read a dependency file.

    Raises:
        ValueError: If file cannot be read safely
    """
    validated_path = _validate_file_path(file_path)

    try:
        with open(validated_path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except PermissionError:
        raise ValueError("Permission denied reading file")
    except OSError as e:
        raise ValueError(f"Error reading file: {e}")


def _load_json(file_path: str, label: str) -> Any:
    content = _safe_read_file(file_path)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON format in {label}: {e}")


# npm


def _lock_path_name(path: str) -> Optional[str]:
    """Declared package name of a package-lock installation path."""
    match = _LOCK_PATH_NAME.search(path)
    return match.group(1) if match else None


def resolve_lock_dependency(
    packages: Dict[str, Dict[str, Any]], from_path: str, dep_name: str
) -> Optional[Dict[str, Any]]:
    """
    Find the installed entry a package at from_path gets for dep_name.

    Mirrors node's module resolution: the requirer's own node_modules first,
    then each ancestor's node_modules, then the top-level node_modules.
    """
    nested_path = f"{from_path}/node_modules/{dep_name}"
    if nested_path in packages:
        return packages[nested_path]

    current = from_path
    while "/node_modules/" in current:
        current = current[: current.rindex("/node_modules/")]
        check_path = f"{current}/node_modules/{dep_name}"
        if check_path in packages:
            return packages[check_path]

    return packages.get(f"node_modules/{dep_name}")


def parse_package_lock(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a package-lock.json (lockfileVersion 2 or 3) into a dependency graph.

    Args:
        file_path: Path to the package-lock.json file
        error_handler: Diagnostics sink for skipped entries

    Returns:
        DependencyGraph: Installed packages with nested-resolution edges

    Raises:
        ParseError: If the lockfile has no "packages" map
    """
    data = _load_json(file_path, "package-lock.json")

    packages = data.get("packages") if isinstance(data, dict) else None
    if not isinstance(packages, dict):
        raise ParseError(
            'Missing "packages" field. This parser requires lockfileVersion 2+ (npm 7+).'
        )

    root_entry = packages.get("") or {}
    direct_names: Set[str] = set(root_entry.get("dependencies") or {})
    direct_names.update(root_entry.get("devDependencies") or {})

    builder = GraphBuilder(Registry.NPM)
    installed: List[Tuple[str, str, Dict[str, Any]]] = []

    for path, entry in packages.items():
        if path == "":
            continue

        name = _lock_path_name(path)
        if not name:
            # Workspace links and other non node_modules paths
            continue

        version = entry.get("version") if isinstance(entry, dict) else None
        if not version:
            log_parsing_error(
                f"Skipping {path}: no version recorded",
                "parsers",
                "parse_package_lock",
                file_path=file_path,
                error_handler=error_handler,
            )
            continue

        installed.append((path, builder.node_id(name, version), entry))

        is_direct = name in direct_names
        dependency_type = DependencyType.DIRECT if is_direct else DependencyType.TRANSITIVE
        if builder.add_node(name, version, dependency_type) and is_direct:
            builder.add_root(builder.node_id(name, version))

    for path, parent_id, entry in installed:
        for section in _LOCK_EDGE_SECTIONS:
            for dep_name in entry.get(section) or {}:
                resolved = resolve_lock_dependency(packages, path, dep_name)
                if not resolved or not resolved.get("version"):
                    continue
                builder.add_edge(parent_id, builder.node_id(dep_name, resolved["version"]))

    return builder.build()


def parse_package_json(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a package.json manifest: every declared dependency is a direct root.

    Extracts dependencies from:
    - dependencies
    - devDependencies

    The declared range is kept as the version; no transitive information exists.
    """
    data = _load_json(file_path, "package.json")
    if not isinstance(data, dict):
        raise ParseError("package.json must contain a JSON object")

    declared: Dict[str, Any] = {}
    for section in ("dependencies", "devDependencies"):
        section_deps = data.get(section) or {}
        if isinstance(section_deps, dict):
            declared.update(section_deps)

    builder = GraphBuilder(Registry.NPM)
    for name, version in declared.items():
        if not isinstance(version, str) or not version.strip():
            log_parsing_error(
                f"Skipping {name}: invalid version specifier",
                "parsers",
                "parse_package_json",
                file_path=file_path,
                error_handler=error_handler,
            )
            continue

        version = version.strip()
        builder.add_node(name, version, DependencyType.DIRECT)
        builder.add_root(builder.node_id(name, version))

    return builder.build()


def _yarn_descriptor_name(descriptor: str) -> Optional[str]:
    """Package name of a yarn descriptor such as "@scope/pkg@npm:^1.0.0"."""
    at_index = descriptor.find("@", 1)
    if at_index <= 0:
        return None
    return descriptor[:at_index]


def _unquote(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _parse_yarn_entries(content: str, berry: bool) -> List[Dict[str, Any]]:
    """
    Split yarn.lock text into entries.

    Each entry is {"descriptors": [...], "version": str | None,
    "dependencies": {name: range}, "line": int}.
    """
    entries: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None
    block: Optional[str] = None
    block_indent = 0

    for line_num, line in enumerate(content.splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        indent = len(line) - len(line.lstrip(" "))

        if indent == 0:
            current = None
            block = None
            if not stripped.endswith(":") or stripped.startswith("__metadata"):
                continue

            descriptors = [_unquote(d) for d in _unquote(stripped[:-1]).split(",")]
            current = {
                "descriptors": [d for d in descriptors if d],
                "version": None,
                "dependencies": {},
                "line": line_num,
            }
            entries.append(current)
            continue

        if current is None:
            continue

        if block is not None and indent > block_indent:
            if block in ("dependencies", "optionalDependencies"):
                if berry:
                    dep_name, _, dep_range = stripped.partition(":")
                else:
                    dep_name, _, dep_range = stripped.partition(" ")
                if dep_name and dep_range:
                    current["dependencies"][_unquote(dep_name)] = _unquote(dep_range)
            continue

        block = None
        if stripped.endswith(":"):
            block = _unquote(stripped[:-1])
            block_indent = indent
            continue

        if berry:
            key, _, value = stripped.partition(":")
        else:
            key, _, value = stripped.partition(" ")
        if _unquote(key) == "version":
            current["version"] = _unquote(value)

    return entries


def parse_yarn_lock(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a yarn.lock file (v1 classic or v2+ berry) into a dependency graph.

    yarn.lock does not record the project manifest, so an entry is treated
    as direct when no other entry depends on it.
    """
    content = _safe_read_file(file_path)
    berry = "__metadata:" in content

    builder = GraphBuilder(Registry.NPM)
    descriptor_ids: Dict[str, str] = {}
    parsed: List[Tuple[str, Dict[str, str]]] = []

    for entry in _parse_yarn_entries(content, berry):
        descriptors = entry["descriptors"]
        if any("@workspace:" in d for d in descriptors):
            continue

        name = next(filter(None, map(_yarn_descriptor_name, descriptors)), None)
        if not name or not entry["version"]:
            log_parsing_error(
                f"Skipping yarn entry {', '.join(descriptors)[:100]}: "
                "missing package name or version",
                "parsers",
                "parse_yarn_lock",
                line_number=entry["line"],
                file_path=file_path,
                error_handler=error_handler,
            )
            continue

        node_id = builder.node_id(name, entry["version"])
        builder.add_node(name, entry["version"])
        for descriptor in descriptors:
            descriptor_ids.setdefault(descriptor, node_id)
        parsed.append((node_id, entry["dependencies"]))

    for node_id, dependencies in parsed:
        for dep_name, dep_range in dependencies.items():
            child_id = descriptor_ids.get(f"{dep_name}@{dep_range}") or descriptor_ids.get(
                f"{dep_name}@npm:{dep_range}"
            )
            if child_id:
                builder.add_edge(node_id, child_id)

    has_dependents = {
        child_id for node_id in builder.node_ids() for child_id in builder.children(node_id)
    }
    for node_id in builder.node_ids():
        if node_id not in has_dependents:
            builder.set_dependency_type(node_id, DependencyType.DIRECT)
            builder.add_root(node_id)

    return builder.build()


# pypi


def _link_by_name(
    builder: GraphBuilder,
    links: Iterable[Tuple[str, Iterable[str]]],
    versions: Dict[str, str],
) -> None:
    for parent_id, dep_names in links:
        for dep_name in dep_names:
            normalized = normalize_name(dep_name)
            version = versions.get(normalized)
            if version is not None:
                builder.add_edge(parent_id, builder.node_id(normalized, version))


def parse_poetry_lock(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a poetry.lock file into a dependency graph.

    Poetry lock files use TOML format; each [[package]] table carries the
    resolved version and its [package.dependencies] names, which are linked
    to the locked version of the same (normalized) name.

    Raises:
        ParseError: If the file is not TOML or has no [[package]] sections
    """
    content = _safe_read_file(file_path)
    try:
        data = toml.loads(content)
    except toml.TomlDecodeError as e:
        raise ParseError(f"Invalid TOML format in poetry.lock: {e}")

    packages = data.get("package")
    if not isinstance(packages, list) or not packages:
        raise ParseError("Invalid poetry.lock: missing [[package]] sections")

    builder = GraphBuilder(Registry.PYPI)
    versions: Dict[str, str] = {}
    links: List[Tuple[str, List[str]]] = []

    for package in packages:
        name = package.get("name") if isinstance(package, dict) else None
        version = package.get("version") if isinstance(package, dict) else None
        if not name or not version:
            log_parsing_error(
                f"Skipping poetry package without name or version: {str(name)[:50]}",
                "parsers",
                "parse_poetry_lock",
                file_path=file_path,
                error_handler=error_handler,
            )
            continue

        name = normalize_name(str(name))
        version = str(version)
        versions.setdefault(name, version)

        is_direct = package.get("category") != "dev"
        node_id = builder.node_id(name, version)
        builder.add_node(
            name, version, DependencyType.DIRECT if is_direct else DependencyType.TRANSITIVE
        )
        if is_direct:
            builder.add_root(node_id)

        dependencies = package.get("dependencies") or {}
        links.append((node_id, list(dependencies) if isinstance(dependencies, dict) else []))

    _link_by_name(builder, links, versions)
    return builder.build()


def parse_pipfile_lock(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a Pipfile.lock file.

    "default" packages are direct roots; "develop" packages are recorded as
    transitive unless already present from "default".

    Raises:
        ParseError: If neither section is present
    """
    data = _load_json(file_path, "Pipfile.lock")

    if not isinstance(data, dict) or ("default" not in data and "develop" not in data):
        raise ParseError("Invalid Pipfile.lock: missing 'default' or 'develop' sections")

    builder = GraphBuilder(Registry.PYPI)
    sections = (("default", DependencyType.DIRECT), ("develop", DependencyType.TRANSITIVE))

    for section, dependency_type in sections:
        section_deps = data.get(section) or {}
        if not isinstance(section_deps, dict):
            continue

        for raw_name, package_info in section_deps.items():
            version = None
            if isinstance(package_info, dict):
                version = package_info.get("version")
            elif isinstance(package_info, str):
                version = package_info

            if not version:
                log_parsing_error(
                    f"Skipping {raw_name}: no pinned version in '{section}'",
                    "parsers",
                    "parse_pipfile_lock",
                    file_path=file_path,
                    error_handler=error_handler,
                )
                continue

            name = normalize_name(raw_name)
            version = re.sub(r"^==", "", version.strip())
            if builder.add_node(name, version, dependency_type) and (
                dependency_type == DependencyType.DIRECT
            ):
                builder.add_root(builder.node_id(name, version))

    return builder.build()


def _parse_requirement_line(line: str) -> Optional[Tuple[str, str]]:
    """Return (name, version) for a pinned requirement line, None otherwise."""
    exact = _REQ_EXACT.match(line)
    if exact:
        return exact.group(1), exact.group(2)

    minimum = _REQ_MINIMUM.match(line)
    if minimum:
        return minimum.group(1), f"{minimum.group(2)}{minimum.group(3)}"

    return None


def parse_requirements_txt(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parses a requirements.txt file; every pinned requirement is a direct root.

    Handles pip requirement formats:
    - Exact pins: package==1.0.0
    - Minimum/compatible pins: package>=1.0.0, package~=1.0 (kept unresolved)
    - Comment lines, blank lines, pip options and URL references (ignored)
    - Bare names without a version (skipped with a warning)
    """
    content = _safe_read_file(file_path)
    builder = GraphBuilder(Registry.PYPI)

    for line_num, raw_line in enumerate(content.splitlines(), 1):
        line = raw_line.strip()

        if not line or line.startswith("#") or line.startswith("-") or "://" in line:
            continue

        requirement = _parse_requirement_line(line)
        if requirement is None:
            bare = _REQ_BARE.match(line.split("#", 1)[0].strip())
            message = (
                f"Skipping {bare.group(1)}: no version specified"
                if bare
                else f"Could not parse requirement: {line[:100]}"
            )
            log_parsing_error(
                message,
                "parsers",
                "parse_requirements_txt",
                line_number=line_num,
                file_path=file_path,
                error_handler=error_handler,
            )
            continue

        name, version = normalize_name(requirement[0]), requirement[1]
        if builder.add_node(name, version, DependencyType.DIRECT):
            builder.add_root(builder.node_id(name, version))

    return builder.build()


_PARSERS = {
    "package_lock": parse_package_lock,
    "package_json": parse_package_json,
    "yarn_lock": parse_yarn_lock,
    "poetry_lock": parse_poetry_lock,
    "pipfile_lock": parse_pipfile_lock,
    "requirements": parse_requirements_txt,
}


def get_supported_file_types() -> List[str]:
    """Return a list of supported dependency file types."""
    return [
        "package-lock.json",
        "package.json",
        "yarn.lock",
        "poetry.lock",
        "Pipfile.lock",
        "requirements.txt",
    ]


def detect_file_type(file_path: str) -> str:
    """
    Detect the dependency file type based on filename.

    Raises:
        UnsupportedFileError: If file type is not supported
    """
    filename = Path(file_path).name.lower()

    if filename.endswith("package-lock.json"):
        return "package_lock"
    if filename.endswith("package.json"):
        return "package_json"
    if filename.endswith("yarn.lock"):
        return "yarn_lock"
    if filename.endswith("poetry.lock"):
        return "poetry_lock"
    if filename.endswith("pipfile.lock"):
        return "pipfile_lock"
    if filename.endswith(".txt"):
        return "requirements"

    raise UnsupportedFileError(
        f"Unsupported file type: {file_path}\n"
        f"Supported formats: {', '.join(get_supported_file_types())}"
    )


def parse_dependency_file(
    file_path: str, error_handler: Optional[ErrorHandler] = None
) -> DependencyGraph:
    """
    Parse any supported dependency file type into a dependency graph.

    Args:
        file_path: Path to the dependency file
        error_handler: Diagnostics sink for skipped entries

    Returns:
        DependencyGraph: Freshly built graph

    Raises:
        UnsupportedFileError: If file type is not supported
        ParseError: If a required top-level structure is missing
        ValueError: If the file cannot be read
    """
    parser = _PARSERS[detect_file_type(file_path)]
    return parser(file_path, error_handler or get_error_handler())
