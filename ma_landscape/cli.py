"""Command-line interface for the MA landscape pipeline"""

import asyncio
from typing import List, Optional

import click
import structlog

from ma_landscape.benefits.builder import run_benefits
from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.discovery.resolver import run_discovery
from ma_landscape.errors import PipelineError
from ma_landscape.ingestion.landscape import LandscapeIngester
from ma_landscape.logging_config import configure_logging

logger = structlog.get_logger()


def _parse_years(years: Optional[str], settings: Settings) -> List[int]:
    if not years:
        return settings.get_target_years()
    return [int(y.strip()) for y in years.split(",") if y.strip().isdigit()]


def _run(ctx: click.Context, coro) -> None:
    """Run a stage, turning fatal pipeline errors into exit status 1"""
    try:
        asyncio.run(coro)
    except PipelineError as e:
        logger.error("Pipeline stage failed", error=str(e), error_type=type(e).__name__)
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)


@click.group()
@click.option('--years', '-y', default=None, help='Comma-separated years (overrides TARGET_YEARS)')
@click.option('--dist-dir', default=None, help='Output directory (overrides DIST_DIR)')
@click.pass_context
def cli(ctx: click.Context, years: Optional[str], dist_dir: Optional[str]):
    """MA landscape dataset and benefits builder"""
    settings = default_settings
    if dist_dir:
        settings = settings.model_copy(update={"dist_dir": dist_dir})

    configure_logging(settings.log_level, settings.log_format)

    ctx.obj = {"settings": settings, "years": _parse_years(years, settings)}


async def _build_dataset(settings: Settings, years: List[int]) -> None:
    summaries = await LandscapeIngester(settings).run(years)
    for s in summaries:
        click.echo(
            f"✅ {s.year}: {s.counties} counties, {s.carriers} carriers, "
            f"rows kept {s.rows_kept:,} / dropped {s.rows_dropped:,}"
        )


async def _resolve_sources(settings: Settings, years: List[int]) -> None:
    results = await run_discovery(settings, years)
    for r in results:
        click.echo(f"🔎 {r.year}: resolved={len(r.resolved)} missing={len(r.missing)}")


async def _build_benefits(settings: Settings, years: List[int]) -> None:
    result = await run_benefits(settings, years)
    click.echo(f"📄 Benefits generated for {result['generated']}/{result['total']} plans")


@cli.command('build-dataset')
@click.pass_context
def build_dataset(ctx: click.Context):
    """Build per-county plan documents and the county/ZIP indexes"""
    _run(ctx, _build_dataset(ctx.obj["settings"], ctx.obj["years"]))


@cli.command('resolve-sources')
@click.pass_context
def resolve_sources(ctx: click.Context):
    """Discover and verify Summary of Benefits URLs"""
    _run(ctx, _resolve_sources(ctx.obj["settings"], ctx.obj["years"]))


@cli.command('build-benefits')
@click.pass_context
def build_benefits(ctx: click.Context):
    """Extract structured benefits from each plan's Summary of Benefits"""
    _run(ctx, _build_benefits(ctx.obj["settings"], ctx.obj["years"]))


@cli.command('build-all')
@click.pass_context
def build_all(ctx: click.Context):
    """Run dataset, discovery and benefits stages in order"""
    settings, years = ctx.obj["settings"], ctx.obj["years"]

    async def run_all():
        await _build_dataset(settings, years)
        await _resolve_sources(settings, years)
        await _build_benefits(settings, years)

    _run(ctx, run_all())


if __name__ == "__main__":
    cli()
