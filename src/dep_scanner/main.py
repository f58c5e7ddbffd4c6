import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .cli_config import VALID_SOURCES, create_sample_config, get_config, load_config
from .error_handling import setup_error_handling
from .parsers import get_supported_file_types
from .reporting import SecurityReporter, create_progress_spinner, report_to_json
from .scanner import Report, get_vulnerability_scanner
from .structured_logging import configure_logging

console = Console()


def write_json_report(report: Report, output_file: str) -> None:
    """Save a report as JSON."""
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(report_to_json(report))


async def async_scan_dependencies(
    file_path: str,
    source: str,
    github_token: Optional[str],
    ignore_file: Optional[str],
) -> Report:
    """Run one scan with the effective settings."""
    scanner = get_vulnerability_scanner(
        source=source, github_token=github_token, ignore_file=ignore_file
    )
    return await scanner.scan_dependency_file(file_path)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🔍 Dep-Scanner: dependency vulnerability scanner

    Builds the dependency graph of an npm or Python project and checks every
    package against the OSV.dev and GitHub Security Advisory databases.
    """
    if version:
        console.print(f"Dep-Scanner version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument(
    "file_path", type=click.Path(exists=True, readable=True, dir_okay=False)
)
@click.option(
    "--source",
    type=click.Choice(VALID_SOURCES, case_sensitive=False),
    help="Vulnerability database(s) to query (default from config or 'all')",
)
@click.option(
    "--github-token",
    help="GitHub token for the GHSA GraphQL API (default: GITHUB_TOKEN)",
)
@click.option(
    "--ignore-file",
    type=click.Path(),
    help="Suppression list (default: .scanignore next to the file or in cwd)",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Output format for results (default from config or 'console')",
)
@click.option(
    "--output-file",
    "-o",
    type=click.Path(),
    help="Save the report to a file (JSON format)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-critical output")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output with additional details",
)
@click.option(
    "--no-fail",
    is_flag=True,
    help="Exit with code 0 even when vulnerable dependencies are found",
)
def scan(
    file_path: str,
    source: Optional[str],
    github_token: Optional[str],
    ignore_file: Optional[str],
    output_format: Optional[str],
    output_file: Optional[str],
    quiet: bool,
    verbose: bool,
    no_fail: bool,
) -> None:
    """
    Scan a lockfile or manifest for known vulnerabilities.

    Examples:

      dep-scanner scan package-lock.json

      dep-scanner scan poetry.lock --source osv

      dep-scanner scan yarn.lock --output-format json -o report.json

      dep-scanner scan requirements.txt --ignore-file .scanignore --quiet
    """
    try:
        config = load_config()

        final_source = (source or config.scan.sources).lower()
        final_format = (output_format or config.scan.output_format).lower()
        final_output_file = output_file or config.scan.output_file
        final_ignore_file = ignore_file or config.scan.ignore_file
        final_quiet = quiet or config.scan.quiet
        final_verbose = verbose or config.scan.verbose
        fail_on_vulnerable = config.scan.fail_on_vulnerable and not no_fail

        if final_verbose:
            log_level = "INFO"
        elif final_quiet:
            log_level = "ERROR"
        else:
            log_level = config.logging.log_level
        configure_logging(log_level)
        setup_error_handling(
            getattr(logging, log_level.upper(), logging.WARNING),
            log_format=config.logging.log_format,
        )

        show_console = final_format == "console" and not final_quiet
        if show_console:
            console.print(
                Panel(
                    f"🔍 [bold blue]Dep-Scanner[/bold blue] v{__version__}",
                    border_style="blue",
                )
            )

        scan_coro = async_scan_dependencies(
            file_path,
            final_source,
            github_token or config.credentials.github_token,
            final_ignore_file,
        )
        if show_console:
            with create_progress_spinner() as progress:
                progress.add_task("Querying vulnerability databases...", total=None)
                report = asyncio.run(scan_coro)
        else:
            report = asyncio.run(scan_coro)

        if final_format == "json":
            click.echo(report_to_json(report))
        elif show_console:
            SecurityReporter(console).print_scan_results(report)
        elif report.has_vulnerabilities:
            Console(stderr=True).print(
                f"🚨 {report.summary.vulnerable_dependencies} vulnerable dependencies "
                f"in {file_path}",
                style="red",
            )

        if final_output_file:
            write_json_report(report, final_output_file)
            if not final_quiet:
                Console(stderr=True).print(
                    f"✅ Results saved to {final_output_file}", style="green"
                )

    except KeyboardInterrupt:
        Console(stderr=True).print("\n⚠️  Scan interrupted by user", style="yellow")
        sys.exit(130)
    except Exception as e:
        Console(stderr=True).print(f"❌ Error: {str(e)}", style="red")
        if verbose:
            Console(stderr=True).print_exception()
        sys.exit(1)

    if report.has_vulnerabilities and fail_on_vulnerable:
        sys.exit(1)


@cli.command()
def info():
    """Show information about supported file types and usage examples."""
    file_types = "\n".join(
        f"• [green]{file_type}[/green]" for file_type in get_supported_file_types()
    )
    info_text = f"""
[bold blue]📋 Supported File Types:[/bold blue]

{file_types}

[bold blue]🛡️  Vulnerability Databases:[/bold blue]

• [yellow]OSV.dev[/yellow] - Batch query, no authentication (--source osv)
• [yellow]GitHub Security Advisories[/yellow] - GraphQL, requires a token (--source ghsa)
• Both are queried by default and their results merged (--source all)

[bold blue]🔇 Suppressing Advisories:[/bold blue]

• List advisory ids (GHSA-..., CVE-..., PYSEC-...) one per line in [green].scanignore[/green]
• Looked up next to the scanned file, then in the current directory

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]GITHUB_TOKEN[/cyan] - Token for GHSA lookups
• [cyan]DEP_SCANNER_SOURCES[/cyan] - Default database selection
• [cyan]DEP_SCANNER_MAX_CONCURRENT[/cyan] - Concurrent GHSA batches
• [cyan]DEP_SCANNER_GHSA_BATCH_SIZE[/cyan] - Packages per GHSA request
• [cyan]DEP_SCANNER_TIMEOUT[/cyan] - Request read timeout
• [cyan]DEP_SCANNER_LOG_LEVEL[/cyan] - Structured log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].dep-scanner.json[/green] or [green].dep-scanner.yaml[/green] - Project-level config
• [green]~/.config/dep-scanner/config.json[/green] (or config.yaml) - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Scan an npm lockfile against both databases
  dep-scanner scan package-lock.json

  # JSON output for automation
  dep-scanner scan poetry.lock --output-format json

  # Report without failing the build
  dep-scanner scan yarn.lock --no-fail

  # Generate sample config
  dep-scanner config init
"""
    console.print(
        Panel(
            info_text,
            title="[bold]Dep-Scanner Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".dep-scanner.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())

        console.print(f"✅ Created configuration file at {config_path}", style="green")
        console.print("Edit this file to customize your settings", style="dim")

    except OSError as e:
        console.print(f"❌ Failed to create config file: {e}", style="red")
        sys.exit(1)


@config.command("show")
def config_show():
    """Show the effective configuration (credentials redacted)."""
    current_config = get_config()

    console.print(
        Panel("[bold blue]🔧 Effective Configuration[/bold blue]", border_style="blue")
    )
    console.print_json(data=current_config.to_sanitized_dict())


if __name__ == "__main__":
    cli()
