"""Thin CLI wrapper for crossdeploy.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from crossdeploy import __version__
from crossdeploy.config import get_settings, print_settings_json
from crossdeploy.errors import INTERRUPTED_EXIT_CODE, BuildFailure, CrossDeployError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

app = typer.Typer(
    name="crossdeploy",
    help="Cross-compile for an ARM board in a pinned toolchain image, deploy and run it",
    no_args_is_help=True,
)
console = Console(soft_wrap=True)

TargetOption = Annotated[
    str | None,
    typer.Option("--target", "-t", help="Toolchain spec name (defaults to configured target)"),
]
RebuildImageOption = Annotated[
    bool,
    typer.Option("--rebuild-image", help="Rebuild the toolchain image without layer cache"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"crossdeploy version {__version__}")
        raise typer.Exit()


def _fail(error: CrossDeployError) -> NoReturn:
    """Print a one-line summary and exit with the error's mapped code."""
    console.print(f"[red]{escape(error.message)}[/red]")
    if isinstance(error, BuildFailure) and error.exit_code is None and error.diagnostic:
        # Not streamed by a tool, so show it here
        console.print(error.diagnostic, markup=False, highlight=False)
    raise typer.Exit(code=error.cli_exit_code) from None


def _interrupted() -> NoReturn:
    console.print("[yellow]Interrupted[/yellow]")
    raise typer.Exit(code=INTERRUPTED_EXIT_CODE) from None


def _session_factory() -> "sessionmaker[Session]":
    """Create the catalog tables if needed and return a session factory."""
    from crossdeploy.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine()
    create_all_tables(engine)
    return get_session_factory(engine)


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
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Cross-compile for an ARM board in a pinned toolchain image, deploy and run it."""
    from crossdeploy.log import configure_logging

    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def build(
    target: TargetOption = None,
    rebuild_image: RebuildImageOption = False,
) -> None:
    """Build the toolchain image if needed, then compile the source tree."""
    from crossdeploy.pipeline import build_stage

    settings = get_settings()
    factory = _session_factory()

    with factory() as session:
        try:
            artifact = build_stage(
                session,
                settings,
                target_name=target,
                rebuild_image=rebuild_image,
            )
            session.commit()
        except CrossDeployError as e:
            _fail(e)
        except KeyboardInterrupt:
            _interrupted()

    if artifact is None:
        return
    console.print(f"[green]✓ Built {artifact.path}[/green]")
    console.print(f"  Target: {artifact.target_triple}")
    console.print(f"  Size: {artifact.size_bytes:,} bytes")
    if artifact.float_abi:
        console.print(f"  Float ABI: {artifact.float_abi}")


@app.command()
def fix(
    target: TargetOption = None,
    rebuild_image: RebuildImageOption = False,
) -> None:
    """Run `cargo fix` in the toolchain image with the build's mounts."""
    from crossdeploy.pipeline import fix_stage

    settings = get_settings()
    factory = _session_factory()

    with factory() as session:
        try:
            fix_stage(session, settings, target_name=target, rebuild_image=rebuild_image)
            session.commit()
        except CrossDeployError as e:
            _fail(e)
        except KeyboardInterrupt:
            _interrupted()

    console.print("[green]✓ cargo fix finished[/green]")


@app.command()
def copy(
    artifact: Annotated[
        Path | None,
        typer.Option("--artifact", "-a", help="Artifact to copy (defaults to the build output)"),
    ] = None,
) -> None:
    """Copy the built artifact to the configured device."""
    from crossdeploy.pipeline import copy_stage

    settings = get_settings()
    try:
        ack = copy_stage(settings, artifact)
    except CrossDeployError as e:
        _fail(e)
    except KeyboardInterrupt:
        _interrupted()

    console.print(
        f"[green]✓ Copied {ack.size_bytes:,} bytes to {ack.destination} "
        f"in {ack.duration_s:.1f}s[/green]"
    )


@app.command()
def run() -> None:
    """Run the deployed artifact on the device; exits with its status."""
    from crossdeploy.pipeline import run_stage

    settings = get_settings()
    try:
        status = run_stage(settings)
    except CrossDeployError as e:
        _fail(e)
    except KeyboardInterrupt:
        _interrupted()

    if status.interrupted:
        console.print("[yellow]Remote process interrupted[/yellow]")
    elif not status.succeeded:
        console.print(f"[red]Remote process exited with code {status.code}[/red]")
    raise typer.Exit(code=status.code)


@app.command()
def deploy(
    artifact: Annotated[Path, typer.Argument(help="Local artifact to copy and run")],
    build_first: Annotated[
        bool,
        typer.Option("--build", help="Compile into ARTIFACT before deploying"),
    ] = False,
    target: TargetOption = None,
    rebuild_image: RebuildImageOption = False,
) -> None:
    """Copy ARTIFACT next to the configured remote path and run it."""
    from crossdeploy.pipeline import deploy_artifact, run_pipeline

    settings = get_settings()

    try:
        if build_first:
            factory = _session_factory()
            with factory() as session:
                status = run_pipeline(
                    session,
                    settings,
                    artifact_path=artifact,
                    target_name=target,
                    rebuild_image=rebuild_image,
                )
                session.commit()
        else:
            status = deploy_artifact(artifact, settings)
    except CrossDeployError as e:
        _fail(e)
    except KeyboardInterrupt:
        _interrupted()

    if status.interrupted:
        console.print("[yellow]Remote process interrupted[/yellow]")
    elif not status.succeeded:
        console.print(f"[red]Remote process exited with code {status.code}[/red]")
    raise typer.Exit(code=status.code)


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
        console.print(print_settings_json(settings), markup=False, highlight=False)
        return

    spec_dir_display = str(settings.spec_dir) if settings.spec_dir else "(bundled only)"
    artifact_display = (
        str(settings.artifact_path) if settings.artifact_path else "(cargo output path)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  Default target:      {settings.default_target}")
    console.print(f"  Spec directory:      {spec_dir_display}")
    console.print(f"  Image repository:    {settings.image_repository}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Artifact path:       {artifact_display}")
    console.print(f"  Cargo home:          {settings.cargo_home}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Binary:              {settings.binary_name}")
    console.print(f"  Profile:             {settings.build_profile}")
    console.print(f"  Verify ABI:          {settings.verify_abi}")
    console.print()
    console.print("[bold]Device:[/bold]")
    console.print(f"  Login:               {settings.remote_user}@{settings.remote_host}")
    console.print(f"  Remote path:         {settings.remote_path}")
    console.print(f"  Display:             {settings.display}")
    console.print(f"  Forwarded env:       {', '.join(settings.forward_env) or '(none)'}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Connect timeout:     {settings.connect_timeout}")
    console.print(f"  Transfer timeout:    {settings.transfer_timeout}")
    console.print(f"  Image build timeout: {settings.image_build_timeout or 'none'}")
    console.print(f"  Compile timeout:     {settings.compile_timeout or 'none'}")


toolchain_app = typer.Typer(help="Inspect toolchain specs")
app.add_typer(toolchain_app, name="toolchain")


@toolchain_app.command("list")
def toolchain_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List available toolchain specs."""
    from crossdeploy.toolchain.io import list_toolchain_specs

    settings = get_settings()
    specs = list_toolchain_specs(settings.spec_dir)

    if json_output:
        output = [
            {
                "name": s.name,
                "target_triple": s.target_triple,
                "float_abi": s.float_abi,
                "description": s.description,
            }
            for s in specs.values()
        ]
        console.print(json.dumps(output, indent=2), markup=False, highlight=False)
        return

    if not specs:
        console.print("[yellow]No toolchain specs found[/yellow]")
        return

    console.print(f"[bold]Found {len(specs)} toolchain spec(s):[/bold]")
    console.print()
    for s in specs.values():
        marker = " (default)" if s.name == settings.default_target else ""
        console.print(f"  [green]{s.name}[/green]{marker}")
        console.print(f"    Triple: {s.target_triple}")
        console.print(f"    Float ABI: {s.float_abi}")
        if s.description:
            console.print(f"    {s.description}")
        console.print()


@toolchain_app.command("show")
def toolchain_show(
    name: Annotated[str, typer.Argument(help="Toolchain spec name")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a toolchain spec and its image tag."""
    from crossdeploy.toolchain.fingerprint import DEFAULT_RECIPE, fingerprint_spec, image_tag
    from crossdeploy.toolchain.io import get_toolchain_spec, spec_to_yaml_string

    settings = get_settings()
    try:
        spec = get_toolchain_spec(name, settings.spec_dir)
    except CrossDeployError as e:
        _fail(e)

    fingerprint, _ = fingerprint_spec(spec, DEFAULT_RECIPE)
    tag = image_tag(spec, fingerprint, settings.image_repository)

    if json_output:
        output = spec.model_dump(mode="json")
        output["fingerprint"] = fingerprint
        output["image_tag"] = tag
        console.print(json.dumps(output, indent=2), markup=False, highlight=False)
    else:
        console.print(spec_to_yaml_string(spec), markup=False, highlight=False)
        console.print(f"[bold]Fingerprint:[/bold] {fingerprint}")
        console.print(f"[bold]Image tag:[/bold]   {tag}")


@toolchain_app.command("check")
def toolchain_check(
    name: Annotated[
        str | None,
        typer.Argument(help="Toolchain spec name (defaults to configured target)"),
    ] = None,
) -> None:
    """Check a spec's ABI consistency and source availability."""
    from crossdeploy.toolchain.abi import check_abi_consistency
    from crossdeploy.toolchain.io import get_toolchain_spec
    from crossdeploy.toolchain.sources import check_sources, source_urls

    settings = get_settings()
    try:
        spec = get_toolchain_spec(name or settings.default_target, settings.spec_dir)
    except CrossDeployError as e:
        _fail(e)

    problems = 0
    console.print(f"[bold]ABI consistency for {spec.name}:[/bold]")
    findings = check_abi_consistency(spec)
    if findings:
        problems += len(findings)
        for finding in findings:
            console.print(f"  [red]✗ {finding}[/red]")
    else:
        console.print(f"  [green]✓ consistent ({spec.float_abi}-float)[/green]")
    console.print()

    console.print("[bold]Source distributions:[/bold]")
    if settings.offline:
        for source in source_urls(spec):
            console.print(f"  [dim]- {source.url} (offline, not checked)[/dim]")
    else:
        for check in check_sources(spec):
            if check.available:
                console.print(f"  [green]✓ {check.source.url}[/green]")
            else:
                problems += 1
                reason = check.error or f"HTTP {check.status_code}"
                console.print(f"  [red]✗ {check.source.url} ({reason})[/red]")

    if problems:
        raise typer.Exit(code=1)


images_app = typer.Typer(help="Manage toolchain images")
app.add_typer(images_app, name="images")


@images_app.command("list")
def images_list(
    target: Annotated[
        str | None,
        typer.Option("--target", "-t", help="Filter by toolchain spec name"),
    ] = None,
    state: Annotated[
        str | None,
        typer.Option("--state", help="Filter by state (pending, ready, broken)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List cataloged toolchain images."""
    from crossdeploy.toolchain.service import list_images
    from crossdeploy.types import ImageState

    state_filter: ImageState | None = None
    if state:
        try:
            state_filter = ImageState(state)
        except ValueError:
            console.print(f"[red]Invalid state: {state}[/red]")
            console.print("Valid values: pending, ready, broken")
            raise typer.Exit(code=1) from None

    factory = _session_factory()
    with factory() as session:
        images = list_images(session, target_name=target, state=state_filter)

        if json_output:
            output = [
                {
                    "tag": i.tag,
                    "target_name": i.target_name,
                    "target_triple": i.target_triple,
                    "fingerprint": i.fingerprint,
                    "state": i.state,
                    "failed_stage": i.failed_stage,
                    "log_path": i.log_path,
                    "last_used_at": i.last_used_at.isoformat() if i.last_used_at else None,
                }
                for i in images
            ]
            console.print(json.dumps(output, indent=2), markup=False, highlight=False)
            return

        if not images:
            console.print("[yellow]No toolchain images found[/yellow]")
            return

        console.print(f"[bold]Found {len(images)} toolchain image(s):[/bold]")
        console.print()
        for i in images:
            state_color = {
                "ready": "green",
                "pending": "yellow",
                "broken": "red",
            }.get(i.state, "white")
            console.print(f"  [{state_color}]{i.tag}[/{state_color}]")
            console.print(f"    Target: {i.target_name} ({i.target_triple})")
            console.print(f"    State: {i.state}")
            if i.failed_stage:
                console.print(f"    Failed stage: {i.failed_stage}")
            if i.log_path:
                console.print(f"    Log: {i.log_path}")
            console.print()


@images_app.command("build")
def images_build(
    target: TargetOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Rebuild without layer cache even if present"),
    ] = False,
) -> None:
    """Build (or reuse) the toolchain image for a spec."""
    from crossdeploy.pipeline import resolve_spec
    from crossdeploy.toolchain.service import ensure_image

    settings = get_settings()
    factory = _session_factory()

    with factory() as session:
        try:
            spec = resolve_spec(settings, target)
            console.print(f"[blue]Ensuring toolchain image for {spec.name}...[/blue]")
            image = ensure_image(session, spec, settings, force_rebuild=force)
            session.commit()
        except CrossDeployError as e:
            _fail(e)
        except KeyboardInterrupt:
            _interrupted()

        console.print(f"[green]✓ Toolchain image ready: {image.tag}[/green]")


@images_app.command("remove")
def images_remove(
    tag: Annotated[str, typer.Argument(help="Image tag")],
) -> None:
    """Remove a toolchain image from the store and the catalog."""
    from crossdeploy.toolchain.service import remove_image

    factory = _session_factory()
    with factory() as session:
        try:
            remove_image(session, tag)
            session.commit()
        except CrossDeployError as e:
            _fail(e)

    console.print(f"[green]Removed {tag}[/green]")


if __name__ == "__main__":
    app()
