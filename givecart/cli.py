# givecart/cli.py
import json
from pathlib import Path

import click
from faker import Faker
from flask import current_app
from flask.cli import AppGroup

from givecart.extensions import db
from givecart.models import Cause
from givecart.services.aggregate import recompute_cause_raised
from givecart.services.prices import (
    CircuitBreaker,
    PriceCache,
    PriceItem,
    PricePrefetcher,
    VendorPriceClient,
)

causes_cli = AppGroup("causes", help="Cause aggregate maintenance.")
prices_cli = AppGroup("prices", help="Vendor price prefetch.")


@causes_cli.command("repair-raised")
@click.option("--cause-id", default=None, help="Only this cause (default: all).")
def repair_raised(cause_id):
    """Rebuild raised_cents from the donations ledger."""
    n = recompute_cause_raised(cause_id)
    db.session.commit()
    click.echo(f"Recomputed raised_cents for {n} cause(s).")


@causes_cli.command("seed-demo")
@click.option("--count", default=3, show_default=True, help="Number of demo causes to create.")
@click.option("--seed", default=None, type=int, help="Faker seed for repeatable names.")
def seed_demo(count, seed):
    """Create demo causes with the configured milestone goal."""
    fake = Faker()
    if seed is not None:
        Faker.seed(seed)

    goal = int(current_app.config.get("MILESTONE_GOAL_CENTS") or 77700)
    created = []
    for _ in range(count):
        cause = Cause(name=f"{fake.company()} Foundation", goal_cents=goal)
        db.session.add(cause)
        created.append(cause)
    db.session.commit()

    for cause in created:
        click.echo(f"Created cause {cause.id}: {cause.name}")


@prices_cli.command("prefetch")
@click.option(
    "--file",
    "path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON list of products: {id, vendor_product_id, pricing_data}.",
)
def prefetch(path):
    """Run one prefetch pass with a fresh breaker."""
    try:
        rows = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise click.ClickException(f"{path}: invalid JSON ({e})")
    if not isinstance(rows, list):
        raise click.ClickException(f"{path}: expected a JSON list of products")

    cfg = current_app.config
    prefetcher = PricePrefetcher(
        VendorPriceClient.from_config(cfg),
        CircuitBreaker(
            threshold=int(cfg.get("PRICE_BREAKER_THRESHOLD") or 3),
            cooldown=float(cfg.get("PRICE_BREAKER_COOLDOWN") or 60.0),
        ),
        PriceCache(),
        batch_size=int(cfg.get("PRICE_PREFETCH_BATCH_SIZE") or 5),
        batch_delay=float(cfg.get("PRICE_PREFETCH_BATCH_DELAY") or 0.0),
    )
    items = [PriceItem.from_product(r) for r in rows if isinstance(r, dict)]
    result = prefetcher.run(items)
    click.echo(json.dumps(result.as_dict()))


def register_cli(app):
    app.cli.add_command(causes_cli)
    app.cli.add_command(prices_cli)
