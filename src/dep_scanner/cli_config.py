"""
Configuration management for dep-scanner.

Provides configurable settings for vulnerability sources, batching,
network timeouts, file validation limits and logging.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)

VALID_SOURCES = ("osv", "ghsa", "all")
VALID_OUTPUT_FORMATS = ("console", "json")


@dataclass
class ScanConfig:
    """Core scanning configuration."""

    sources: str = "all"
    max_concurrent: int = 4
    ghsa_batch_size: int = 50
    ghsa_page_size: int = 100
    hydrate_osv: bool = True
    ignore_file: Optional[str] = None
    fail_on_vulnerable: bool = True
    quiet: bool = False
    verbose: bool = False
    output_format: str = "console"
    output_file: Optional[str] = None


@dataclass
class SecurityConfig:
    """File and credential validation limits."""

    max_file_size_mb: int = 50
    max_credential_length: int = 500
    min_credential_length: int = 8
    allowed_file_extensions: List[str] = field(
        default_factory=lambda: [".txt", ".json", ".lock"]
    )

    @property
    def max_file_size_bytes(self) -> int:
        """Convert MB to bytes for internal use."""
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class NetworkConfig:
    """Network and vulnerability database configuration."""

    user_agent: str = "dep-scanner/1.0.0 (Security Scanner)"
    osv_api_url: str = "https://api.osv.dev"
    ghsa_api_url: str = "https://api.github.com/graphql"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class CredentialConfig:
    """Credentials for authenticated databases."""

    github_token: Optional[str] = field(default=None, repr=False)


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    scan: ScanConfig = field(default_factory=ScanConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)

    def to_sanitized_dict(self) -> Dict[str, Any]:
        """Configuration as a dictionary with credentials redacted."""
        data = asdict(self)
        data["credentials"] = {
            "github_token": "[REDACTED]" if self.credentials.github_token else None
        }
        return data


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.scan.sources not in VALID_SOURCES:
        errors.append(f"scan.sources must be one of: {', '.join(VALID_SOURCES)}")
    if config.scan.max_concurrent <= 0:
        errors.append("scan.max_concurrent must be positive")
    if config.scan.ghsa_batch_size <= 0:
        errors.append("scan.ghsa_batch_size must be positive")
    if not (1 <= config.scan.ghsa_page_size <= 100):
        errors.append("scan.ghsa_page_size must be between 1 and 100")
    if config.scan.output_format not in VALID_OUTPUT_FORMATS:
        errors.append(
            f"scan.output_format must be one of: {', '.join(VALID_OUTPUT_FORMATS)}"
        )

    if config.security.max_file_size_mb <= 0:
        errors.append("security.max_file_size_mb must be positive")
    if config.security.min_credential_length > config.security.max_credential_length:
        errors.append("security.min_credential_length must be <= max_credential_length")

    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or YAML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")
        return None

    if not isinstance(data, dict):
        console.print(
            f"⚠️  Config file {config_path} must contain a mapping", style="yellow"
        )
        return None
    return data


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".dep-scanner.json",
        Path.cwd() / ".dep-scanner.yaml",
        Path.cwd() / ".dep-scanner.yml",
        Path.home() / ".config" / "dep-scanner" / "config.json",
        Path.home() / ".config" / "dep-scanner" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Load environment variable overrides."""

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if sources := os.environ.get("DEP_SCANNER_SOURCES"):
        config.scan.sources = sources.lower()
    if max_concurrent := get_env_int("DEP_SCANNER_MAX_CONCURRENT"):
        config.scan.max_concurrent = max_concurrent
    if batch_size := get_env_int("DEP_SCANNER_GHSA_BATCH_SIZE"):
        config.scan.ghsa_batch_size = batch_size

    if timeout := get_env_float("DEP_SCANNER_TIMEOUT"):
        config.network.read_timeout = timeout
    if osv_url := os.environ.get("DEP_SCANNER_OSV_URL"):
        config.network.osv_api_url = osv_url
    if ghsa_url := os.environ.get("DEP_SCANNER_GHSA_URL"):
        config.network.ghsa_api_url = ghsa_url

    if log_level := os.environ.get("DEP_SCANNER_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()

    if token := os.environ.get("GITHUB_TOKEN"):
        config.credentials.github_token = token.strip()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def load_config() -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file) or {}
        for section_name in ("scan", "security", "network", "logging"):
            if isinstance(file_config.get(section_name), dict):
                apply_config_section(
                    getattr(config, section_name), file_config[section_name], section_name
                )

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = _restore_defaults(config, validation_errors)

    _global_config = config
    return config


def _restore_defaults(
    config: ComprehensiveConfig, validation_errors: List[str]
) -> ComprehensiveConfig:
    """Reset every setting named in a validation error to its default."""
    defaults = ComprehensiveConfig()
    for error in validation_errors:
        section_name, _, rest = error.partition(".")
        key = rest.split(" ", 1)[0]
        section = getattr(config, section_name, None)
        if section is not None and hasattr(section, key):
            setattr(section, key, getattr(getattr(defaults, section_name), key))
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file."""
    sample = ComprehensiveConfig().to_sanitized_dict()
    del sample["credentials"]
    return json.dumps(sample, indent=2)
