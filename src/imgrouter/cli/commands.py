"""
Click command definitions for the imgrouter CLI.

This module contains the Click command group and all CLI commands
(status, styles, select, generate).
"""

import json
from decimal import Decimal
from pathlib import Path

import click
import httpx

from imgrouter import (
    CUSTOM_STYLE,
    Config,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ProviderManager,
    ProviderSelection,
    SystemStatus,
    __version__,
    known_styles,
)
from imgrouter.cli import progress
from imgrouter.cli.handlers import run_async, run_with_error_handling
from imgrouter.cli.utils import DECIMAL, default_output_path, default_session_id
from imgrouter.core.models import KNOWN_TIERS
from imgrouter.core.styles import get_style
from imgrouter.logging_config import configure_logging, get_verbosity_from_env


def build_manager(config: Config, client: httpx.AsyncClient) -> ProviderManager:
    """Create the manager for one CLI invocation."""
    return ProviderManager.from_config(config, client=client)


def _setup_logging(quiet: bool, verbose_count: int) -> None:
    # CLI flags override IMGROUTER_VERBOSITY
    verbose_level = min(verbose_count, 2) if verbose_count > 0 else get_verbosity_from_env()
    configure_logging(verbose_level=verbose_level, quiet=quiet)


def _load_config() -> Config:
    config = Config.from_env()
    config.validate()
    return config


def _options(
    tier: str | None, max_cost: Decimal | None, max_time: float | None, no_fallback: bool
) -> GenerationOptions:
    return GenerationOptions(
        preferred_tier=tier,
        max_cost=max_cost,
        max_time_seconds=max_time,
        fallback_enabled=False if no_fallback else None,
    )


def _request(
    style: str, source_url: str | None, prompt: str | None, session: str | None
) -> GenerationRequest:
    return GenerationRequest(
        source_url=source_url or "",
        style=style,
        session_id=session or default_session_id(),
        custom_prompt=prompt,
    )


quiet_option = click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Minimize progress messages; only print results or errors.",
)
verbose_option = click.option(
    "--verbose",
    "-v",
    "verbose_count",
    count=True,
    help="Increase verbosity: -v also show prompts, -vv show HTTP/probe detail.",
)


def request_options(fn):
    """Options shared by select and generate."""
    for decorator in reversed(
        (
            click.option(
                "--style",
                "-s",
                required=True,
                help=f"Style id ({', '.join(known_styles())}) or '{CUSTOM_STYLE}'.",
            ),
            click.option(
                "--source-url",
                "-i",
                help="Public URL of the source image. Omit for text-to-image.",
            ),
            click.option(
                "--prompt",
                "-p",
                help="Prompt override; required (and used verbatim) with --style custom.",
            ),
            click.option("--session", help="Session id used for storage keys and logs."),
            click.option(
                "--tier",
                type=click.Choice(KNOWN_TIERS, case_sensitive=False),
                default=None,
                help="Preferred provider tier (default from IMGROUTER_DEFAULT_TIER or free).",
            ),
            click.option(
                "--max-cost",
                type=DECIMAL,
                default=None,
                help="Maximum cost per image; providers above it are never used.",
            ),
            click.option(
                "--max-time",
                type=click.FloatRange(min=0, min_open=True),
                default=None,
                help="Maximum acceptable generation time in seconds.",
            ),
            click.option(
                "--no-fallback",
                is_flag=True,
                help="Only try the best-ranked provider.",
            ),
        )
    ):
        fn = decorator(fn)
    return fn


@click.group(
    help=f"""Route image generation across providers by cost, speed and health.

\b
Version: {__version__}
"""
)
@click.version_option(version=__version__, package_name="imgrouter")
@click.pass_context
def cli(ctx: click.Context) -> None:
    ctx.color = True


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON to stdout.")
@quiet_option
@verbose_option
def status(as_json: bool, quiet: bool, verbose_count: int) -> None:
    """Probe every configured provider and show its health."""
    _setup_logging(quiet, verbose_count)

    async def do_status() -> None:
        config = _load_config()
        async with httpx.AsyncClient(timeout=config.health_check_timeout) as client:
            manager = build_manager(config, client)
            system: SystemStatus = await manager.get_system_status()
        if as_json:
            click.echo(json.dumps(system.to_dict(), indent=2))
        else:
            progress.print_system_status(system)
            click.echo(system.overall)

    run_with_error_handling(lambda: run_async(do_status()), quiet=quiet)


@cli.command()
def styles() -> None:
    """List the available styles."""

    def do_styles() -> None:
        rows = []
        for style_id in known_styles():
            entry = get_style(style_id)
            rows.append((style_id, entry.name, entry.description))
        rows.append((CUSTOM_STYLE, "Custom", "Your prompt is the whole style description"))
        progress.print_styles(rows)
        for row in rows:
            click.echo(row[0])

    run_with_error_handling(do_styles)


@cli.command()
@request_options
@quiet_option
@verbose_option
def select(
    style: str,
    source_url: str | None,
    prompt: str | None,
    session: str | None,
    tier: str | None,
    max_cost: Decimal | None,
    max_time: float | None,
    no_fallback: bool,
    quiet: bool,
    verbose_count: int,
) -> None:
    """Show which provider would serve a request, without generating."""
    _setup_logging(quiet, verbose_count)

    async def do_select() -> None:
        config = _load_config()
        request = _request(style, source_url, prompt, session)
        async with httpx.AsyncClient(timeout=config.health_check_timeout) as client:
            manager = build_manager(config, client)
            selection: ProviderSelection = await manager.select_provider(
                request, _options(tier, max_cost, max_time, no_fallback)
            )
        if not quiet:
            progress.print_selection(selection)
        click.echo(selection.provider_name)

    run_with_error_handling(lambda: run_async(do_select()), quiet=quiet)


@cli.command()
@request_options
@click.option("--out", "-o", type=click.Path(path_type=Path), help="Output file path.")
@quiet_option
@verbose_option
def generate(
    style: str,
    source_url: str | None,
    prompt: str | None,
    session: str | None,
    tier: str | None,
    max_cost: Decimal | None,
    max_time: float | None,
    no_fallback: bool,
    out: Path | None,
    quiet: bool,
    verbose_count: int,
) -> None:
    """Generate an image, falling back across providers on failure."""
    _setup_logging(quiet, verbose_count)

    async def do_generate() -> None:
        # 1. Load and validate config
        config = _load_config()
        request = _request(style, source_url, prompt, session)
        options = _options(tier, max_cost, max_time, no_fallback)

        # 2. Generate with fallback
        result: GenerationResult
        async with httpx.AsyncClient() as client:
            manager = build_manager(config, client)
            if quiet:
                result = await manager.generate_image(request, options)
            else:
                with progress.generation_progress(style, request.is_text_to_image):
                    result = await manager.generate_image(request, options)
        result.raise_for_error()

        # 3. Save bytes, or report the remote URL
        out_path: Path | None = None
        if result.image_data is not None:
            out_path = out or Path(default_output_path(result.content_type))
            out_path.write_bytes(result.image_data)
        elif out is not None and not quiet:
            progress.print_warning(
                f"{result.provider} returned a URL, not image bytes; nothing written to {out}"
            )

        # 4. Print result
        if not quiet:
            progress.print_success_result(result, out_path)
        # Path or URL on stdout for scriptability
        click.echo(str(out_path) if out_path is not None else result.image_url)

    run_with_error_handling(lambda: run_async(do_generate()), quiet=quiet)


def main() -> None:
    """Entry point for the imgrouter console script."""
    cli()


__all__ = ["cli", "main", "generate", "select", "status", "styles"]
