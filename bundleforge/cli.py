"""
bundleforge CLI.

Command-line interface for one-shot builds, the development server and
project housekeeping.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .core.config import BuildTarget, Config, get_config, load_build_target
from .core.exceptions import BundleForgeError, ConfigError
from .core.logging import setup_logging

app = typer.Typer(
    name="bundleforge",
    help="Build Rust/WebAssembly + TypeScript front-ends",
    add_completion=False,
)

console = Console()

EXIT_FAILURE = 1
EXIT_CONFIG = 2

RootOption = typer.Option(
    None,
    "--root",
    "-r",
    help="Project root (defaults to the config file directory or cwd)",
    file_okay=False,
    dir_okay=True,
    resolve_path=True,
)
ConfigFileOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to bundleforge.json",
    dir_okay=False,
    resolve_path=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from . import __version__
        console.print(f"bundleforge v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """bundleforge: compile, bundle and serve WebAssembly front-ends."""
    pass


def _setup(verbose: bool) -> Config:
    config = get_config()
    if verbose:
        # the cached config is shared by every caller
        config = config.model_copy(update={"log_level": "DEBUG"})
    setup_logging(config)
    return config


def _report_error(error: BundleForgeError, stage: str | None = None) -> int:
    """Print a failure and return the exit code for it."""
    where = f" at stage [bold]{stage}[/bold]" if stage else ""
    console.print(f"\n[bold red]✗ Build failed{where}[/bold red]")
    console.print(f"[red]{escape(str(error))}[/red]")
    return EXIT_CONFIG if isinstance(error, ConfigError) else EXIT_FAILURE


def _load_target(root: Optional[Path], config_file: Optional[Path], **overrides: object) -> BuildTarget:
    try:
        return load_build_target(root=root, config_file=config_file, **overrides)
    except ConfigError as e:
        raise typer.Exit(_report_error(e)) from e


@app.command()
def build(
    root: Optional[Path] = RootOption,
    config_file: Optional[Path] = ConfigFileOption,
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="development or production"),
    entry: Optional[Path] = typer.Option(None, "--entry", "-e", help="Entry module"),
    output_dir: Optional[Path] = typer.Option(None, "--out", "-o", help="Output directory"),
    use_flow: Optional[bool] = typer.Option(
        None,
        "--flow/--no-flow",
        help="Run inside a Prefect flow (default from BUNDLEFORGE_USE_PREFECT)",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Run one build cycle and write the output directory."""
    config = _setup(verbose)
    target = _load_target(root, config_file, mode=mode, entry=entry, output_dir=output_dir)
    if use_flow is None:
        use_flow = config.use_prefect

    console.print(f"[bold]Building[/bold] {target.entry} ({target.mode}) -> {target.output_path}")

    async def run_async() -> None:
        from .orchestration import run_build

        result = await run_build(target, use_flow=use_flow)
        if result.error is not None:
            stage = result.failed_stage.value if result.failed_stage else None
            raise typer.Exit(_report_error(result.error, stage))

        console.print("\n[bold green]✓ Build completed[/bold green]\n")
        table = Table(title="Build Results")
        table.add_column("Stage", style="cyan")
        table.add_column("Status")
        table.add_column("Duration", justify="right")
        for record in result.cycle.stages:
            table.add_row(record.stage.value, record.status.value, f"{record.duration_seconds:.2f}s")
        console.print(table)
        if result.bundle is not None:
            console.print(f"Modules bundled: {result.bundle.module_count}")
            for warning in result.bundle.warnings:
                console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
        if result.assets is not None:
            console.print(f"Static assets copied: {len(result.assets.files)}")
        console.print(f"\n[bold]Output:[/bold] {result.output_dir}")

    asyncio.run(run_async())


@app.command()
def serve(
    root: Optional[Path] = RootOption,
    config_file: Optional[Path] = ConfigFileOption,
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Dev server port"),
    mode: str = typer.Option("development", "--mode", "-m", help="development or production"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Build, serve the output and rebuild on changes with live reload."""
    config = _setup(verbose)
    target = _load_target(root, config_file, mode=mode, dev_server_port=port)

    console.print(Panel.fit(
        "[bold blue]bundleforge dev server[/bold blue]\n"
        f"http://{config.devserver.host}:{target.dev_server_port}/  ({target.mode})",
        border_style="blue",
    ))

    from .devserver import serve as serve_async

    try:
        asyncio.run(serve_async(target, config))
    except BundleForgeError as e:
        raise typer.Exit(_report_error(e)) from e
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


@app.command()
def config(
    root: Optional[Path] = RootOption,
    config_file: Optional[Path] = ConfigFileOption,
) -> None:
    """Show the resolved configuration."""
    cfg = get_config()
    target = _load_target(root, config_file)

    table = Table(title="Build Target")
    table.add_column("Option", style="cyan")
    table.add_column("Value")
    table.add_row("root", str(target.root))
    table.add_row("entry", str(target.entry_path))
    table.add_row("outputDir", str(target.output_path))
    table.add_row("outputFilename", target.output_filename)
    table.add_row("mode", target.mode)
    table.add_row("staticAssetDirs", ", ".join(str(p) for p in target.asset_paths) or "-")
    table.add_row("crateDir", str(target.crate_path))
    table.add_row("stagingDir", str(target.staging_path))
    table.add_row("devServerPort", str(target.dev_server_port))
    table.add_row("resolveExtensions", ", ".join(target.resolve_extensions))
    table.add_row("compress", str(target.compress))
    console.print(table)

    settings = Table(title="Process Settings")
    settings.add_column("Setting", style="cyan")
    settings.add_column("Value")
    settings.add_row("Log Level", cfg.log_level)
    settings.add_row("Cache Dir", str(cfg.cache_dir))
    settings.add_row("Prefect Flow", str(cfg.use_prefect))
    settings.add_row("wasm-pack", str(cfg.tools.wasm_pack_path or "(PATH)"))
    settings.add_row("tsc", str(cfg.tools.tsc_path or "(node_modules/.bin or PATH)"))
    settings.add_row("esbuild", str(cfg.tools.esbuild_path or "(node_modules/.bin or PATH)"))
    settings.add_row("Dev Host", cfg.devserver.host)
    settings.add_row("Poll Interval", f"{cfg.devserver.poll_interval_seconds}s")
    console.print(settings)

    console.print("\n[dim]Configure via bundleforge.json or environment variables:[/dim]")
    console.print("  BUNDLEFORGE_LOG_LEVEL, BUNDLEFORGE_MODE, BUNDLEFORGE_OUTPUT_DIR")
    console.print("  WASM_PACK_PATH, TSC_PATH, ESBUILD_PATH")


@app.command()
def clean(
    root: Optional[Path] = RootOption,
    config_file: Optional[Path] = ConfigFileOption,
) -> None:
    """Remove the output directory, staged artifacts and the build cache."""
    setup_logging(get_config())
    target = _load_target(root, config_file)

    async def run_async() -> None:
        from .orchestration import make_coordinator

        removed = await make_coordinator(target).clean()
        if not removed:
            console.print("[dim]Nothing to clean[/dim]")
        for path in removed:
            console.print(f"  [dim]removed[/dim] {path}")

    asyncio.run(run_async())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
