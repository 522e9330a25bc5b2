#!/usr/bin/env python3
"""
WSO Region Pipeline with Click CLI

Runs region assignment for meets and clubs and the weekly per-region metrics
against the Supabase backing store.

Usage:
    python -m wso_regions.run_pipeline [OPTIONS] COMMAND [ARGS]

    # Assign regions to meets without writing anything:
    python -m wso_regions.run_pipeline assign meets --dry-run

    # Re-check every club and export the decisions:
    python -m wso_regions.run_pipeline assign clubs --reassign --report reports/clubs.csv

    # Weekly metrics for all regions, or a few:
    python -m wso_regions.run_pipeline metrics
    python -m wso_regions.run_pipeline metrics --region Alabama --region "California South"

    # Audit stored meet regions against boundary polygons:
    python -m wso_regions.run_pipeline validate meets --report reports/meet_mismatches.csv

    # Which regions have a boundary polygon:
    python -m wso_regions.run_pipeline boundaries

    # Verbose logging:
    python -m wso_regions.run_pipeline --verbose metrics
"""

import os
import sys
from typing import Optional

import click
from loguru import logger

from .config_loader import Config
from .geography import GeographyCatalog, load_catalog
from .metrics import RegionMetricsCalculator
from .reporting import write_assignment_report, write_mismatch_report
from .repositories.boundaries import RegionBoundaryStore
from .repositories.pagination import PaginatedAggregator
from .repositories.spatial import SpatialQueryManager
from .runner import AssignmentRunner
from .supabase_integration import SupabaseDatabase

DETAILED_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)
BRIEF_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


class PipelineContext:
    """Click context object: config, plus lazily created database and catalog."""

    def __init__(self, config: Config):
        self.config = config
        self._db: Optional[SupabaseDatabase] = None
        self._catalog: Optional[GeographyCatalog] = None

    @property
    def db(self) -> SupabaseDatabase:
        if self._db is None:
            self._db = SupabaseDatabase(self.config)
        return self._db

    @property
    def catalog(self) -> GeographyCatalog:
        if self._catalog is None:
            self._catalog = load_catalog(self.config.get_catalog_path())
        return self._catalog

    def spatial(self) -> SpatialQueryManager:
        aggregator = PaginatedAggregator.from_config(self.db, self.config)
        return SpatialQueryManager(self.db, aggregator, self.config)

    def boundaries(self) -> RegionBoundaryStore:
        geojson_path = self.config.get_boundaries_geojson_path()
        if geojson_path is not None:
            return RegionBoundaryStore.load_from_geojson(geojson_path, self.catalog)
        return RegionBoundaryStore.load_from_database(self.db, self.catalog, self.config)


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    # Remove default logger
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
    elif verbose:
        log_level = "DEBUG"
    else:
        log_level = "INFO"
    log_format = DETAILED_FORMAT if (verbose or enable_trace) else BRIEF_FORMAT

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    os.environ["LOGURU_LEVEL"] = log_level

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")


def handle_critical_error(error: Exception, context: str = "") -> None:
    """
    Handle critical errors with optional trace logging.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
    """
    enable_trace = os.environ.get("LOGURU_LEVEL", "INFO") == "TRACE"

    if enable_trace:
        logger.opt(exception=error).trace(f"💥 TRACE MODE: {context}")

    logger.critical(f"💥 {context} failed: {type(error).__name__}: {error}")

    if not enable_trace:
        logger.info("💡 For detailed debugging, run with --trace flag")



def _require_entity(obj: PipelineContext, entity: str) -> None:
    entities = obj.config.list_entities()
    if entity not in entities:
        raise click.BadParameter(
            f"'{entity}' is not configured (choose from {', '.join(entities)})",
            param_hint="ENTITY",
        )


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to config.yaml (defaults to WSO_REGIONS_CONFIG, ./config.yaml, then the packaged config)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option(
    "--trace", is_flag=True, help="Enable TRACE level logging for deep debugging (maximum detail)"
)
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, config_file, verbose, trace, log_file):
    """
    WSO region assignment and analytics.

    \b
    Examples:
      python -m wso_regions.run_pipeline assign meets --dry-run
      python -m wso_regions.run_pipeline metrics --region Alabama
      python -m wso_regions.run_pipeline --verbose boundaries
    """
    setup_logging(verbose=verbose, enable_trace=trace)

    if log_file:
        log_level = "TRACE" if trace else ("DEBUG" if verbose else "INFO")
        logger.add(
            log_file,
            level=log_level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {log_file}")

    try:
        config = Config(config_file)
    except Exception as e:
        logger.critical(f"Configuration error: {e}")
        logger.info("💡 Make sure config.yaml exists and is valid")
        ctx.exit(1)

    logger.debug(f"📋 Config: {config.config_path}")
    ctx.obj = PipelineContext(config)


@cli.command()
@click.argument("entity")
@click.option("--dry-run", is_flag=True, help="Classify without writing regions back")
@click.option("--reassign", is_flag=True, help="Include records that already have a region")
@click.option("--limit", type=int, help="Only process the first N records")
@click.option("--report", type=click.Path(dir_okay=False), help="Write assignments to CSV/JSON")
@click.pass_obj
def assign(obj: PipelineContext, entity, dry_run, reassign, limit, report):
    """Assign regions to ENTITY records (e.g. meets, clubs)."""
    _require_entity(obj, entity)

    try:
        runner = AssignmentRunner(obj.spatial(), obj.catalog, obj.boundaries())
        summary = runner.run(entity, dry_run=dry_run, reassign=reassign, limit=limit)
        if report:
            write_assignment_report(summary.assignments, report)
    except Exception as e:
        handle_critical_error(e, f"Assigning regions to {entity}")
        sys.exit(1)

    if summary.exit_code:
        logger.warning(f"Assignment completed with {summary.write_failures} failed write(s)")
        sys.exit(summary.exit_code)
    logger.success("🎉 Assignment complete")


@cli.command()
@click.argument("entity")
@click.option("--limit", type=int, help="Only check the first N records")
@click.option("--report", type=click.Path(dir_okay=False), help="Write mismatches to CSV/JSON")
@click.pass_obj
def validate(obj: PipelineContext, entity, limit, report):
    """Report ENTITY records whose stored region disagrees with their coordinates."""
    _require_entity(obj, entity)

    try:
        runner = AssignmentRunner(obj.spatial(), obj.catalog, obj.boundaries())
        summary = runner.validate(entity, limit=limit)
        if report:
            write_mismatch_report(summary.mismatches, report)
    except Exception as e:
        handle_critical_error(e, f"Validating {entity} regions")
        sys.exit(1)

    if summary.exit_code:
        logger.warning(
            f"{summary.mismatched} {entity} record(s) have a region that disagrees "
            f"with their coordinates"
        )
        sys.exit(summary.exit_code)
    logger.success("🎉 All checked regions agree with their coordinates")


@cli.command()
@click.option(
    "--region", "regions", multiple=True, help="Region to calculate (repeatable; default all)"
)
@click.option("--dry-run", is_flag=True, help="Calculate without writing metrics")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="End of the trailing window (default today)",
)
@click.pass_obj
def metrics(obj: PipelineContext, regions, dry_run, as_of):
    """Recalculate per-region metrics from boundary polygons."""
    try:
        unknown = [name for name in regions if not obj.catalog.is_region(name)]
        if unknown:
            raise click.BadParameter(f"Unknown region(s): {', '.join(unknown)}", param_hint="--region")

        calculator = RegionMetricsCalculator(
            obj.spatial(),
            obj.boundaries(),
            obj.catalog,
            obj.config,
            as_of=as_of.date() if as_of else None,
        )
        summary = calculator.run(list(regions) or None, dry_run=dry_run)
    except click.BadParameter:
        raise
    except Exception as e:
        handle_critical_error(e, "Calculating region metrics")
        sys.exit(1)

    if summary.exit_code:
        sys.exit(summary.exit_code)
    logger.success("🎉 Metrics complete")


@cli.command()
@click.pass_obj
def boundaries(obj: PipelineContext):
    """List regions and whether each has a boundary polygon."""
    try:
        store = obj.boundaries()
    except Exception as e:
        handle_critical_error(e, "Loading region boundaries")
        sys.exit(1)

    for name in obj.catalog.region_names:
        region = store.get_boundary(name)
        if region is None:
            logger.warning(f"   ❌ {name}: no boundary")
        else:
            logger.info(f"   ✅ {name}: {len(region.parts)} part(s)")

    missing = store.missing()
    logger.info(f"🗺️ {len(store)} region(s) with boundaries, {len(missing)} without")


if __name__ == "__main__":
    cli()
