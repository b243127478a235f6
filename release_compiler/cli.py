"""Thin CLI wrapper for release_compiler.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from release_compiler import __version__
from release_compiler.config import get_settings, print_settings_json
from release_compiler.releases.models import Release
from release_compiler.types import ImageInfo

app = typer.Typer(
    name="relc",
    help="Release Compiler - compile release packages in dependency order",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

ReleaseOption = Annotated[
    list[Path],
    typer.Option(
        "--release",
        "-r",
        help="Release index file (YAML/JSON, can be repeated)",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"release-compiler version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route library logging through rich at ``level``."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Release Compiler - compile release packages in dependency order."""
    configure_logging(get_settings().log_level)


def _load_releases_or_exit(paths: list[Path]) -> list[Release]:
    from release_compiler.releases.io import ReleaseLoadError, load_releases

    if not paths:
        console.print("[red]Error: At least one --release must be specified[/red]")
        raise typer.Exit(code=1)
    for path in paths:
        if not path.exists():
            console.print(f"[red]Release index not found: {path}[/red]")
            raise typer.Exit(code=1)
    try:
        return load_releases(paths)
    except ReleaseLoadError as e:
        console.print(f"[red]Failed to load releases: {e}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
    else:
        metrics_display = (
            str(settings.metrics_path) if settings.metrics_path else "(disabled)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Work directory:      {settings.work_dir}")
        console.print(f"  Metrics file:        {metrics_display}")
        console.print()
        console.print("[bold]Build environment:[/bold]")
        console.print(
            f"  Base image:          {settings.effective_base_image(__version__)}"
        )
        console.print(f"  Container runtime:   {settings.docker_binary}")
        console.print(f"  Keep on failure:     {settings.keep_environment_on_failure}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Workers:             {settings.workers}")
        console.print(f"  Build timeout:       {settings.build_timeout}")


releases_app = typer.Typer(help="Inspect release indexes")
app.add_typer(releases_app, name="releases")


@releases_app.command("packages")
def releases_packages(
    release_paths: ReleaseOption = [],  # noqa: B006
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the packages of the given releases."""
    releases = _load_releases_or_exit(release_paths)

    if json_output:
        output = [
            {
                "release": r.name,
                "version": r.version,
                "packages": [
                    {
                        "name": p.name,
                        "fingerprint": p.fingerprint,
                        "version": p.version,
                        "dependencies": [d.name for d in p.dependencies],
                    }
                    for p in r.packages
                ],
            }
            for r in releases
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    for r in releases:
        console.print(f"[green]Release {r.name}[/green] ([magenta]{r.version}[/magenta])")
        for p in r.packages:
            console.print(f"  [yellow]{p.name}[/yellow] ({p.version})")
        console.print(f"There are [green]{len(r.packages)}[/green] packages present.")
        console.print()


@releases_app.command("jobs")
def releases_jobs(
    release_paths: ReleaseOption = [],  # noqa: B006
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the jobs of the given releases."""
    releases = _load_releases_or_exit(release_paths)

    if json_output:
        output = [
            {
                "release": r.name,
                "version": r.version,
                "jobs": [
                    {
                        "name": j.name,
                        "version": j.version,
                        "description": j.description,
                        "packages": [p.name for p in j.packages],
                    }
                    for j in r.jobs
                ],
            }
            for r in releases
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    for r in releases:
        console.print(f"[green]Release {r.name}[/green] ([magenta]{r.version}[/magenta])")
        for j in r.jobs:
            console.print(f"  [yellow]{j.name}[/yellow] ({j.version}): {j.description}")
        console.print(f"There are [green]{len(r.jobs)}[/green] jobs present.")
        console.print()


@app.command("compile")
def compile_cmd(
    release_paths: ReleaseOption = [],  # noqa: B006
    manifest_path: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Role manifest limiting the packages"),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", min=1, help="Concurrent builds per level"),
    ] = None,
    keep_environment: Annotated[
        bool,
        typer.Option(
            "--keep-environment",
            help="Keep build environments of failed packages for inspection",
        ),
    ] = False,
    metrics: Annotated[
        Path | None,
        typer.Option("--metrics", help="Append phase timings to this CSV file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Compile all packages of the given releases.

    With --manifest, only packages needed by the manifest's jobs (and their
    dependencies) are compiled. Packages already in the cache are skipped.
    """
    from release_compiler.compilation.errors import (
        CompilationFailedError,
        FilterError,
        GraphError,
    )
    from release_compiler.compilation.service import compile_releases
    from release_compiler.releases.io import ReleaseLoadError, load_role_manifest

    releases = _load_releases_or_exit(release_paths)

    manifest = None
    if manifest_path is not None:
        try:
            manifest = load_role_manifest(manifest_path)
        except ReleaseLoadError as e:
            console.print(f"[red]Failed to load role manifest: {e}[/red]")
            raise typer.Exit(code=1) from None

    settings = get_settings()
    if metrics is not None:
        settings.metrics_path = metrics

    if not json_output:
        console.print("[green]Compiling packages for releases:[/green]")
        for r in releases:
            console.print(f"  [yellow]{r.name}[/yellow] ([magenta]{r.version}[/magenta])")

    try:
        report = compile_releases(
            releases,
            manifest=manifest,
            settings=settings,
            workers=workers,
            keep_environment_on_failure=keep_environment or None,
        )
    except (FilterError, GraphError) as e:
        if json_output:
            typer.echo(json.dumps({"code": e.code, "message": str(e)}, indent=2))
        else:
            console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    except CompilationFailedError as e:
        if json_output:
            typer.echo(json.dumps(e.report.to_dict(), indent=2))
        else:
            console.print()
            console.print("[bold]Compilation Results:[/bold]")
            console.print(f"  [green]Built: {len(e.report.built)}[/green]")
            console.print(f"  [blue]Already compiled: {len(e.report.cached)}[/blue]")
            console.print(f"  [red]Failed: {len(e.report.failed)}[/red]")
            for name, error in e.report.failed.items():
                console.print(f"    ✗ {name}: {error}")
            console.print(f"  [yellow]Skipped: {len(e.report.skipped)}[/yellow]")
            for name, skip in e.report.skipped.items():
                console.print(f"    - {name} (dependency {skip.dependency} failed)")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        console.print()
        console.print("[bold]Compilation Results:[/bold]")
        console.print(f"  [green]Built: {len(report.built)}[/green]")
        console.print(f"  [blue]Already compiled: {len(report.cached)}[/blue]")
        for name in report.built:
            console.print(f"    ✓ {name}")


image_app = typer.Typer(help="Manage the compilation base image")
app.add_typer(image_app, name="image")


def _print_image(title: str, image: ImageInfo) -> None:
    console.print(f"{title}: [green]{image.name}[/green]")
    console.print(f"  ID: [green]{image.id}[/green]")
    console.print(f"  Size: [yellow]{image.size_bytes / (1024 * 1024):.2f}[/yellow]MB")
    if image.created:
        console.print(f"  Created: {image.created}")


@image_app.command("create")
def image_create(
    base: Annotated[
        str,
        typer.Option("--base", "-b", help="Stock image the compilation image starts from"),
    ],
    setup_script: Annotated[
        Path | None,
        typer.Option("--setup-script", help="Script run inside the image before commit"),
    ] = None,
    keep_container: Annotated[
        bool,
        typer.Option(
            "--keep-container",
            help="Keep the container if image creation fails",
        ),
    ] = False,
    metrics: Annotated[
        Path | None,
        typer.Option("--metrics", help="Append phase timings to this CSV file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Create the compilation base image from a stock image."""
    from release_compiler.compilation.base_image import create_compilation_base
    from release_compiler.compilation.driver import LOGS_DIR_NAME
    from release_compiler.compilation.errors import CompilationError
    from release_compiler.compilation.executor import DockerExecutor
    from release_compiler.compilation.service import make_sink

    settings = get_settings()
    if metrics is not None:
        settings.metrics_path = metrics
    target = settings.effective_base_image(__version__)
    log_path = settings.work_dir / LOGS_DIR_NAME / "create-compilation-image.log"

    if not json_output:
        console.print(
            f"Creating compilation image [green]{target}[/green] from [yellow]{base}[/yellow]"
        )
    try:
        image = create_compilation_base(
            DockerExecutor(docker_binary=settings.docker_binary),
            base_image=base,
            target_image=target,
            log_path=log_path,
            setup_script=setup_script,
            keep_environment_on_failure=keep_container,
            sink=make_sink(settings),
        )
    except CompilationError as e:
        if json_output:
            typer.echo(json.dumps({"code": e.code, "message": str(e)}, indent=2))
        else:
            console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(image.to_dict(), indent=2))
        return
    _print_image("Compilation image", image)


@image_app.command("show")
def image_show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the compilation base image builds start from."""
    from release_compiler.compilation.base_image import show_base_image
    from release_compiler.compilation.errors import CompilationError
    from release_compiler.compilation.executor import DockerExecutor

    settings = get_settings()
    try:
        image = show_base_image(
            DockerExecutor(docker_binary=settings.docker_binary),
            settings.effective_base_image(__version__),
        )
    except CompilationError as e:
        if json_output:
            typer.echo(json.dumps({"code": e.code, "message": str(e)}, indent=2))
        else:
            console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(image.to_dict(), indent=2))
        return
    _print_image("Compilation image", image)


cache_app = typer.Typer(help="Manage the compiled package cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("list")
def cache_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List compiled packages in the cache."""
    from release_compiler.compilation.cache import ArtifactCache

    cache = ArtifactCache(get_settings().cache_dir)
    entries = []
    for fingerprint in cache.list_fingerprints():
        manifest = cache.read_manifest(fingerprint)
        metadata = manifest.get("metadata", {})
        entries.append(
            {
                "fingerprint": fingerprint,
                "name": metadata.get("name"),
                "release": metadata.get("release"),
                "generated_at": manifest.get("generated_at"),
                "total_size_bytes": manifest.get("summary", {}).get("total_size_bytes"),
            }
        )

    if json_output:
        typer.echo(json.dumps(entries, indent=2))
        return
    if not entries:
        console.print("[yellow]No compiled packages found[/yellow]")
        return
    console.print(f"[bold]Found {len(entries)} compiled package(s):[/bold]")
    for e in entries:
        console.print(f"  [green]{e['release']}/{e['name']}[/green] {e['fingerprint']}")


@cache_app.command("clean")
def cache_clean(
    release_paths: ReleaseOption = [],  # noqa: B006
) -> None:
    """Remove cached packages not referenced by the given releases."""
    from release_compiler.compilation.cache import ArtifactCache
    from release_compiler.compilation.service import clean_cache

    releases = _load_releases_or_exit(release_paths)
    cache = ArtifactCache(get_settings().cache_dir)

    console.print(f"Cleaning up [magenta]{cache.root}[/magenta]")
    removed = clean_cache(cache, releases)
    for fingerprint in removed:
        console.print(f"- Removing [yellow]{fingerprint}[/yellow]")

    if not removed:
        console.print("Nothing found to remove")
        return
    plural = "s" if len(removed) > 1 else ""
    console.print(f"Removed [magenta]{len(removed)}[/magenta] package{plural}")


if __name__ == "__main__":
    app()
