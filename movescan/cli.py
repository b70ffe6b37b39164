"""Command-line front end: scan Move files and print findings."""

import argparse
import sys
from collections import defaultdict
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import AnalysisConfig
from .exceptions import ConfigError
from .models import AnalysisResult, Severity, SourceFile
from .pipeline import AnalysisPipeline

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}


def collect_sources(paths: list[str]) -> list[SourceFile]:
    """Resolve files and directories (searched for ``*.move``) into SourceFiles."""
    sources = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            candidates = sorted(
                p for p in path.rglob("*.move") if not any(part.startswith(".") for part in p.relative_to(path).parts)
            )
        elif path.is_file():
            candidates = [path]
        else:
            logger.warning(f"Path not found: {path}")
            continue
        for file_path in candidates:
            try:
                content = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Error reading {file_path}: {e}")
                sources.append(SourceFile(name=str(file_path), content="", parse_error=f"Unreadable file: {e}"))
                continue
            sources.append(SourceFile(name=str(file_path), content=content))
    return sources


def print_report(result: AnalysisResult) -> None:
    meta = result.metadata
    counts = ", ".join(f"{engine}: {count}" for engine, count in meta.per_engine_counts.items())
    status = "[yellow]partial[/yellow]" if meta.partial else "[green]complete[/green]"
    console.print(
        Panel(
            f"[bold]Move Security Scan[/bold]\nFiles: {len(meta.files)}  Status: {status}\nRaw findings: {counts}",
            style="blue",
        )
    )

    for name, error in meta.files.items():
        if error:
            console.print(f"[yellow]Skipped {name}:[/yellow] {error}")
    if meta.error:
        console.print(f"[red]Pipeline error, static results only:[/red] {meta.error}")

    by_severity = defaultdict(int)
    for finding in result.findings:
        by_severity[finding.severity] += 1

    summary = Table(title="Findings by Severity")
    summary.add_column("Severity", style="bold")
    summary.add_column("Count")
    for severity in sorted(SEVERITY_STYLES, reverse=True):
        summary.add_row(f"[{SEVERITY_STYLES[severity]}]{severity.value.upper()}[/]", str(by_severity[severity]))
    console.print(summary)

    if result.findings:
        table = Table(title="Findings")
        table.add_column("Location", style="cyan")
        table.add_column("Severity")
        table.add_column("Rule", style="magenta")
        table.add_column("Source")
        table.add_column("Description")
        for finding in result.findings:
            table.add_row(
                f"{Path(finding.file).name}:{finding.line}",
                f"[{SEVERITY_STYLES[finding.severity]}]{finding.severity.value}[/]",
                finding.rule_id,
                finding.source.value,
                finding.description,
            )
        console.print(table)

    if result.simulations:
        sims = Table(title="Dry-run Simulations (placeholder)")
        sims.add_column("Function", style="cyan")
        sims.add_column("Target")
        sims.add_column("Arguments")
        sims.add_column("Status")
        for sim in result.simulations:
            sims.add_row(
                sim.function,
                sim.descriptor.target if sim.descriptor else "-",
                ", ".join(sim.descriptor.arguments) if sim.descriptor else "-",
                sim.status if sim.status == "success" else f"[red]{sim.status}[/red]",
            )
        console.print(sims)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Scan Sui Move source files for security vulnerabilities")
    parser.add_argument("paths", nargs="+", help="Move files or directories to scan")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--no-llm", action="store_true", help="Disable contextual (LLM) analysis")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--fail-on",
        choices=[s.value for s in Severity],
        default=Severity.CRITICAL.value,
        help="Exit non-zero when a finding of this severity or higher exists",
    )
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    try:
        config = AnalysisConfig.load(args.config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 2
    if args.no_llm:
        config.llm_api_key = None

    sources = collect_sources(args.paths)
    if not sources:
        console.print("[red]No Move source files found[/red]")
        return 1

    pipeline = AnalysisPipeline(config)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Scanning {len(sources)} files...", total=None)
        result = pipeline.analyze_sync(sources)

    print_report(result)

    threshold = Severity.parse(args.fail_on)
    if any(f.severity >= threshold for f in result.findings):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
