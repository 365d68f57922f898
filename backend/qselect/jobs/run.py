"""CLI entry point for scheduled jobs."""

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

import qselect.models  # noqa: F401
from qselect.core.config import settings
from qselect.core.logging import setup_logging
from qselect.db.session import session_scope
from qselect.schemas.template import TemplateSnapshot
from qselect.selection.pool_health import PoolBucket, buckets_for_template, scan_pool_health

logger = logging.getLogger(__name__)


def _parse_filter(values: tuple[str, ...]) -> dict[str, tuple[str, ...]]:
    constraints: dict[str, list[str]] = {}
    for value in values:
        dimension, sep, tag = value.partition(":")
        if not sep or not dimension or not tag:
            raise click.BadParameter(f"expected dimension:tag, got {value!r}", param_hint="--filter")
        constraints.setdefault(dimension, []).append(tag)
    return {dimension: tuple(tags) for dimension, tags in constraints.items()}


@click.group()
def cli():
    """Question selection jobs."""


@cli.command("pool-health")
@click.option(
    "--template",
    "template_paths",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Template snapshot JSON; one bucket per section and difficulty.",
)
@click.option("--filter", "filters", multiple=True, help="Ad-hoc bucket filter, dimension:tag (repeatable).")
@click.option("--difficulty", default=None, help="Difficulty for the ad-hoc bucket.")
@click.option("--threshold", type=int, default=None, help="Alert threshold (defaults to POOL_HEALTH_THRESHOLD).")
@click.option("--fail-on-alert", is_flag=True, help="Exit 2 when any bucket is below threshold.")
def pool_health(template_paths, filters, difficulty, threshold, fail_on_alert):
    """
    Scan pool health and report buckets below threshold.

    Example:
        python -m qselect.jobs.run pool-health --template templates/usmle_step1.json
    """
    threshold = threshold if threshold is not None else settings.POOL_HEALTH_THRESHOLD
    try:
        with session_scope() as db:
            buckets: list[PoolBucket] = []
            for path in template_paths:
                try:
                    template = TemplateSnapshot.model_validate(json.loads(path.read_text()))
                except (ValueError, ValidationError) as e:
                    raise click.BadParameter(f"{path}: {e}", param_hint="--template") from e
                buckets.extend(buckets_for_template(db, template))
            if filters or difficulty:
                buckets.append(PoolBucket(constraints=_parse_filter(filters), difficulty=difficulty))
            if not buckets:
                raise click.UsageError("Give at least one --template or --filter")

            results = scan_pool_health(db, buckets, threshold)
    except SQLAlchemyError as e:
        logger.error(f"Pool health job failed: {e}", exc_info=True)
        click.echo(f"Pool health job failed: {e}", err=True)
        sys.exit(1)

    for result in results:
        flag = "ALERT" if result.alert else "ok"
        click.echo(f"{flag:5}  {result.eligible_count:>6}/{result.threshold:<6}  {result.bucket.label}")

    if fail_on_alert and any(result.alert for result in results):
        sys.exit(2)


if __name__ == "__main__":
    setup_logging()
    cli()
