"""
Reporting and output formatting for vulnerability scan results.

Provides color-coded console output using Rich library.
"""

import json
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .merge import severity_rank
from .scanner import Finding, Report

SEVERITY_STYLES = {4: "bold red", 3: "red", 2: "yellow", 1: "green", 0: "dim"}


class SecurityReporter:
    """Formats and displays vulnerability scan results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_scan_results(self, report: Report) -> None:
        """
        Print scan results in a user-friendly format.

        Args:
            report: The scan report to display
        """
        self.console.print()
        self._print_header(report)

        if report.findings:
            self._print_summary(report)
            if report.vulnerable_findings:
                self._print_findings(report.vulnerable_findings)
        else:
            self.console.print("✅ No dependencies found to scan.", style="green")

        self._print_footer(report)

    def _print_header(self, report: Report) -> None:
        """Print scan header with file info."""
        sources = ", ".join(s.upper() for s in report.metadata.sources) or "none"
        header_text = (
            f"🔍 Vulnerability Scan Results: {report.metadata.scanned_file}\n"
            f"[dim]Databases: {sources}[/dim]"
        )
        self.console.print(
            Panel(
                header_text,
                title="[bold blue]Dep-Scanner Vulnerability Scanner[/bold blue]",
                border_style="blue",
            )
        )

    def _print_summary(self, report: Report) -> None:
        """Print dependency and vulnerability counts."""
        summary = report.summary

        table = Table(title="📊 Scan Summary", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="center")

        table.add_row("📦 Total dependencies", str(summary.total_dependencies))
        table.add_row("   Direct", str(summary.direct_dependencies))
        table.add_row("   Transitive", str(summary.transitive_dependencies))

        vulnerable_style = "bold red" if summary.vulnerable_dependencies else "green"
        table.add_row(
            "🚨 Vulnerable",
            f"[{vulnerable_style}]{summary.vulnerable_dependencies} "
            f"({summary.vulnerable_percentage}%)[/{vulnerable_style}]",
        )

        self.console.print(table)
        self.console.print()

    def _print_findings(self, findings: List[Finding]) -> None:
        """Print one row per advisory affecting a dependency."""
        table = Table(
            title="🚨 Vulnerable Dependencies", box=box.SIMPLE, title_style="bold red"
        )
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Type", justify="center")
        table.add_column("Advisory")
        table.add_column("Severity", justify="center")
        table.add_column("Fixed In", justify="center")

        for finding in findings:
            for index, vuln in enumerate(finding.vulnerabilities):
                advisory = vuln.id
                if vuln.aliases:
                    advisory += f" [dim]({', '.join(vuln.aliases)})[/dim]"

                severity = vuln.severity[0].score if vuln.severity else "UNKNOWN"
                style = SEVERITY_STYLES[severity_rank(vuln.severity)]

                table.add_row(
                    finding.name if index == 0 else "",
                    finding.version if index == 0 else "",
                    finding.dependency_type.value if index == 0 else "",
                    advisory,
                    f"[{style}]{severity}[/{style}]",
                    vuln.fixed_in or "[dim]-[/dim]",
                )

        self.console.print(table)
        self.console.print()

    def _print_footer(self, report: Report) -> None:
        """Print scan footer with timing, suppressions and verdict."""
        duration_seconds = report.metadata.duration_ms / 1000

        footer_text = (
            f"Scanned {report.summary.total_dependencies} dependencies "
            f"in {duration_seconds:.2f} seconds"
        )
        self.console.print(f"\n[dim]{footer_text}[/dim]")

        if report.metadata.suppressed_count:
            self.console.print(
                f"[dim]🔇 Suppressed {report.metadata.suppressed_count} advisory "
                f"match(es) via ignore list: {', '.join(report.metadata.suppressed_ids)}[/dim]"
            )

        if report.has_vulnerabilities:
            self.console.print(
                f"\n[bold red]🚨 SCAN FAILED - {report.summary.vulnerable_dependencies} "
                "vulnerable dependencies found![/bold red]"
            )
        else:
            self.console.print(
                "\n[bold green]✅ SCAN PASSED - No known vulnerabilities detected.[/bold green]"
            )


def report_to_json(report: Report) -> str:
    """Serialize a report for machine consumption."""
    return json.dumps(report.to_dict(), indent=2)


def create_progress_spinner(console: Optional[Console] = None) -> Progress:
    """Create a progress spinner for long-running operations."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console or Console(stderr=True),
        transient=True,
    )
