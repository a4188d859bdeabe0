"""Thin CLI wrapper for wasm_release.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.

Exit codes: 0 on success (including a skipped publish), 1 on a fatal
failure, 75 (EX_TEMPFAIL) on a transient publishing failure.
"""

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from wasm_release import __version__
from wasm_release.config import Settings, get_settings, print_settings_json
from wasm_release.environment import build_environment
from wasm_release.errors import PipelineError
from wasm_release.logging import configure_logging
from wasm_release.manifest import (
    find_pipeline_file,
    load_crate_manifest,
    normalize_scope,
)
from wasm_release.pipeline import (
    PipelineOptions,
    PipelineRun,
    resolve_options,
    run_pipeline,
)
from wasm_release.release import (
    check_version_match,
    parse_trigger,
    publish_tagged_archives,
)
from wasm_release.stages.packager import validate_archive_version
from wasm_release.toolchain import provision_toolchain
from wasm_release.types import StageStatus

EXIT_FAILURE = 1
EXIT_TEMPFAIL = 75

app = typer.Typer(
    name="wasm-release",
    help="Build, pack and publish Rust WebAssembly packages",
    no_args_is_help=True,
)
console = Console()

SourceOption = Annotated[
    Path,
    typer.Option("--source", "-s", help="Source tree containing Cargo.toml"),
]
OutputDirOption = Annotated[
    Path | None,
    typer.Option("--output-dir", "-o", help="Final artifact directory (default: dist)"),
]
RefOption = Annotated[
    str | None,
    typer.Option("--ref", envvar="GITHUB_REF", help="Git ref that triggered the run"),
]
TargetOption = Annotated[
    str | None,
    typer.Option("--target", help="Rust target triple"),
]
BindingsOption = Annotated[
    str | None,
    typer.Option("--bindings-target", help="wasm-pack --target (web, bundler, ...)"),
]
ProfileOption = Annotated[
    str | None,
    typer.Option("--profile", help="Build profile (release, dev, profiling)"),
]
ScopeOption = Annotated[
    str | None,
    typer.Option("--scope", help="npm scope"),
]
WasmPackVersionOption = Annotated[
    str | None,
    typer.Option("--wasm-pack-version", help="wasm-pack version ('latest' or X.Y.Z)"),
]
SelectorOption = Annotated[
    str | None,
    typer.Option("--selector", help="Glob of archives to publish"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"wasm-release version {__version__}")
        raise typer.Exit()


def print_json(data: Any) -> None:
    """Print JSON to stdout without wrapping or markup."""
    console.print(
        json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False
    )


def exit_code_for(error: PipelineError) -> int:
    """Map an error to the process exit code."""
    return EXIT_TEMPFAIL if error.retryable else EXIT_FAILURE


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
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase log verbosity"),
    ] = 0,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors"),
    ] = False,
) -> None:
    """Build, pack and publish Rust WebAssembly packages."""
    configure_logging(
        verbosity=verbose,
        quiet=quiet,
        default_level=get_settings().log_level,
        stream=sys.stderr,
    )


def _render_run(run: PipelineRun) -> None:
    table = Table(title="Pipeline stages")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Message")

    styles = {
        StageStatus.SUCCEEDED: "green",
        StageStatus.FAILED: "red",
        StageStatus.SKIPPED: "yellow",
    }
    for result in run.results:
        style = styles[result.status]
        table.add_row(
            result.stage.value,
            f"[{style}]{result.status.value}[/{style}]",
            f"{result.duration_seconds:.1f}s",
            result.message,
        )
    if run.results:
        console.print(table)

    if run.success:
        if run.archive:
            console.print(f"[green]Archive:[/green] {run.archive.path}")
            console.print(f"  sha256: {run.archive.sha256}")
        if run.publish:
            console.print(
                f"[green]Release {run.publish.tag}:[/green] "
                f"{run.publish.html_url or run.publish.release_id}"
            )
        return

    stage = run.failed_stage.value if run.failed_stage else "preflight"
    console.print(f"[red]Failed at stage {stage}:[/red] {run.error_message}")
    failed = run.result_for(run.failed_stage) if run.failed_stage else None
    if failed is not None and failed.output:
        console.print("[bold]Tool output:[/bold]")
        console.print(failed.output, markup=False, highlight=False)


def _finish(run: PipelineRun, json_output: bool) -> None:
    if json_output:
        print_json(run.to_dict())
    else:
        _render_run(run)

    if not run.success:
        raise typer.Exit(code=EXIT_TEMPFAIL if run.retryable else EXIT_FAILURE)


@app.command()
def run(
    source: SourceOption = Path("."),
    output_dir: OutputDirOption = None,
    ref: RefOption = None,
    target: TargetOption = None,
    bindings_target: BindingsOption = None,
    profile: ProfileOption = None,
    scope: ScopeOption = None,
    wasm_pack_version: WasmPackVersionOption = None,
    selector: SelectorOption = None,
    json_output: JsonOption = False,
) -> None:
    """Run the whole pipeline; publish when triggered by a release tag."""
    options = PipelineOptions(
        source_dir=source,
        output_dir=output_dir,
        ref=ref,
        target=target,
        bindings_target=bindings_target,
        profile=profile,
        scope=scope,
        wasm_pack_version=wasm_pack_version,
        selector=selector,
    )
    _finish(run_pipeline(options, get_settings()), json_output)


@app.command()
def build(
    source: SourceOption = Path("."),
    output_dir: OutputDirOption = None,
    target: TargetOption = None,
    bindings_target: BindingsOption = None,
    profile: ProfileOption = None,
    scope: ScopeOption = None,
    wasm_pack_version: WasmPackVersionOption = None,
    json_output: JsonOption = False,
) -> None:
    """Provision, compile, pack and extract without publishing."""
    options = PipelineOptions(
        source_dir=source,
        output_dir=output_dir,
        target=target,
        bindings_target=bindings_target,
        profile=profile,
        scope=scope,
        wasm_pack_version=wasm_pack_version,
        publish=False,
    )
    _finish(run_pipeline(options, get_settings()), json_output)


@app.command()
def provision(
    target: TargetOption = None,
    wasm_pack_version: WasmPackVersionOption = None,
) -> None:
    """Check that the toolchain can be provisioned in a fresh environment."""
    settings = get_settings()
    try:
        with build_environment(settings) as environment:
            result = provision_toolchain(
                environment,
                settings,
                target=target,
                wasm_pack_version=wasm_pack_version,
            )
    except PipelineError as e:
        console.print(f"[red]Provisioning failed:[/red] {e}")
        if e.output:
            console.print(e.output, markup=False, highlight=False)
        raise typer.Exit(code=exit_code_for(e)) from None

    action = "installed" if result.wasm_pack_installed else "found"
    console.print(f"[green]Target {result.target} installed[/green]")
    console.print(
        f"[green]wasm-pack {result.wasm_pack_version} {action}[/green]"
    )


@app.command()
def publish(
    source: SourceOption = Path("."),
    output_dir: OutputDirOption = None,
    ref: RefOption = None,
    scope: ScopeOption = None,
    selector: SelectorOption = None,
    json_output: JsonOption = False,
) -> None:
    """Publish archives already in the output directory to the tag's release."""
    settings = get_settings()

    try:
        trigger = parse_trigger(ref)
        if trigger is None:
            if json_output:
                print_json({"published": False, "reason": "not a release tag push"})
            else:
                console.print(
                    "[yellow]Not a release tag push, nothing to publish[/yellow]"
                )
            return

        manifest = load_crate_manifest(source)
        resolved = resolve_options(
            PipelineOptions(
                source_dir=source,
                output_dir=output_dir,
                scope=scope,
                selector=selector,
            ),
            find_pipeline_file(source),
            settings,
        )
        result = publish_tagged_archives(
            trigger,
            manifest,
            resolved.output_dir,
            settings,
            selector=resolved.selector,
            scope=resolved.scope,
        )
    except PipelineError as e:
        if json_output:
            print_json(
                {
                    "published": False,
                    "error_code": e.code,
                    "error_message": str(e),
                    "retryable": e.retryable,
                }
            )
        else:
            console.print(f"[red]Failed at stage publishing:[/red] {e}")
        raise typer.Exit(code=exit_code_for(e)) from None

    if json_output:
        print_json(
            {
                "published": True,
                "tag": result.tag,
                "release_id": result.release_id,
                "html_url": result.html_url,
                "created": result.created,
                "uploaded": result.uploaded,
                "skipped": result.skipped,
            }
        )
    else:
        for name in result.uploaded:
            console.print(f"[green]Uploaded[/green] {name}")
        for name in result.skipped:
            console.print(f"[yellow]Already attached[/yellow] {name}")
        console.print(f"Release {result.tag}: {result.html_url or result.release_id}")


@app.command("check-tag")
def check_tag(
    ref: RefOption = None,
    source: Annotated[
        Path | None,
        typer.Option(
            "--source", "-s", help="Also check the tag against this Cargo.toml"
        ),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Tell whether a ref is a release tag and whether it matches the manifest."""
    try:
        trigger = parse_trigger(ref)
    except PipelineError as e:
        if json_output:
            print_json(
                {"ref": ref, "release": False, "error_code": e.code, "error": str(e)}
            )
        else:
            console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=EXIT_FAILURE) from None

    output: dict[str, Any] = {
        "ref": ref,
        "release": trigger is not None,
        "tag": trigger.tag if trigger else None,
        "version": trigger.version if trigger else None,
        "prerelease": trigger.prerelease if trigger else False,
        "matches_manifest": None,
    }

    error: PipelineError | None = None
    if trigger is not None and source is not None:
        try:
            manifest = load_crate_manifest(source)
            check_version_match(trigger, manifest.version)
            output["matches_manifest"] = True
        except PipelineError as e:
            output["matches_manifest"] = False
            output["error"] = str(e)
            error = e

    if json_output:
        print_json(output)
    elif trigger is None:
        console.print(f"{ref or '(no ref)'} is not a release tag")
    else:
        console.print(f"Release tag {trigger.tag} (version {trigger.version})")
        if error is not None:
            console.print(f"[red]{error}[/red]")
        elif output["matches_manifest"]:
            console.print("[green]Matches manifest version[/green]")

    if error is not None:
        raise typer.Exit(code=EXIT_FAILURE)


@app.command()
def manifest(
    source: SourceOption = Path("."),
    scope: ScopeOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the package identity and the archive name it produces."""
    try:
        scope = normalize_scope(scope)
        crate = load_crate_manifest(source)
        validate_archive_version(crate.version)
    except PipelineError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=EXIT_FAILURE) from None

    if json_output:
        data = crate.model_dump()
        data["package_name"] = crate.package_name(scope)
        data["archive"] = crate.archive_filename(scope)
        print_json(data)
    else:
        console.print(f"[bold]Package:[/bold] {crate.package_name(scope)}")
        console.print(f"[bold]Version:[/bold] {crate.version}")
        console.print(f"[bold]Archive:[/bold] {crate.archive_filename(scope)}")
        if crate.description:
            console.print(f"[bold]Description:[/bold] {crate.description}")


def _describe_settings(settings: Settings) -> None:
    work_dir_display = str(settings.work_dir) if settings.work_dir else "(system temp)"
    token_display = "(set)" if settings.github_token else "(not set)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Build environment:[/bold]")
    console.print(f"  Work directory:      {work_dir_display}")
    console.print(f"  Keep environment:    {settings.keep_build_env}")
    console.print(f"  Isolate CARGO_HOME:  {settings.isolate_cargo_home}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  Target:              {settings.target}")
    console.print(f"  Bindings target:     {settings.bindings_target}")
    console.print(f"  Profile:             {settings.profile}")
    console.print(f"  wasm-pack version:   {settings.wasm_pack_version}")
    console.print(f"  wasm-pack install:   {settings.wasm_pack_install}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Provision timeout:   {settings.provision_timeout}")
    console.print(f"  Compile timeout:     {settings.compile_timeout}")
    console.print(f"  Pack timeout:        {settings.pack_timeout}")
    console.print(f"  HTTP timeout:        {settings.http_timeout}")
    console.print()
    console.print("[bold]Releases:[/bold]")
    console.print(f"  API URL:             {settings.github_api_url}")
    console.print(f"  Repository:          {settings.github_repository or '(not set)'}")
    console.print(f"  Token:               {token_display}")


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(
            print_settings_json(settings),
            soft_wrap=True,
            markup=False,
            highlight=False,
        )
    else:
        _describe_settings(settings)


if __name__ == "__main__":
    app()
