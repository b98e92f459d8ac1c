import click
import json
import logging
import sqlalchemy.exc
import requests
from tabulate import tabulate
import traceback

from config.settings import get_settings
from revaluation.dates import parse_as_of_date
from revaluation.database.operations import (
    SessionLocal,
    add_collection_item,
    init_db,
    register_market_item,
)
from revaluation.market.movers import (
    SORT_KEYS,
    movers_to_csv,
    query_movers,
)
from revaluation.market.rollup import build_market_snapshots
from revaluation.pricing.money import parse_price, to_cents
from revaluation.pricing.resolver import LivePriceResolver
from revaluation.valuation.engine import revalue_all_users, revalue_user_collection
from revaluation.valuation.jobs import enqueue_revalue, run_pending_jobs
from revaluation.vendors.fetcher_factory import FetcherFactory

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("revaluation-cli")


def report_error(ctx, e):
    """Print a command failure the same way for every command."""
    if isinstance(e, sqlalchemy.exc.SQLAlchemyError):
        click.echo(f"Database error: {str(e)}")
    elif isinstance(e, requests.exceptions.RequestException):
        click.echo(f"Network error: {str(e)}")
        click.echo("A vendor API could not be reached. Check your connection and try again.")
    elif isinstance(e, ValueError):
        click.echo(f"Value error: {str(e)}")
    elif isinstance(e, LookupError):
        click.echo(f"Not found: {str(e)}")
    elif isinstance(e, (IOError, OSError)):
        click.echo(f"System error: {str(e)}")
    else:
        click.echo(f"Unexpected error: {str(e)}")

    # Always show traceback in verbose mode
    if ctx.obj.get("VERBOSE"):
        click.echo(traceback.format_exc())


def resolver_factory(live):
    """Build per-session resolvers, with vendor live fallbacks when ``live``."""
    fetchers = FetcherFactory.live_fetchers() if live else None
    return lambda db: LivePriceResolver(db, fetchers=fetchers)


def write_output(output, text):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Results written to {output}")
    else:
        click.echo("\n" + text)


def usd(cents):
    return "-" if cents is None else f"${cents / 100:,.2f}"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, verbose):
    """Collection revaluation and market movers tool."""
    # Store verbose flag in the Click context instead of a global variable
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")


@cli.command()
def init():
    """Initialize the database."""
    init_db()
    click.echo("Database initialized!")


@cli.command("add-item")
@click.option("--user", "-u", "user_id", required=True, help="Owner of the collection")
@click.option("--game", "-g", required=True, help="Game (pokemon, yugioh, mtg, funko)")
@click.option("--card-id", "-c", required=True, help="Vendor card id")
@click.option("--quantity", "-q", type=int, default=1, help="Copies to add (default: 1)")
@click.option("--variant", default=None, help="Variant (normal, holofoil, reverse_holofoil, ...)")
@click.option("--cost", default=None, help="Cost per copy in base currency, e.g. 4.99")
@click.option("--name", "card_name", default=None, help="Card name")
@click.pass_context
def add_item(ctx, user_id, game, card_id, quantity, variant, cost, card_name):
    """Add copies of a card to a user's collection."""
    db = SessionLocal()
    try:
        cost_cents = None
        if cost is not None:
            amount = parse_price(cost)
            if amount is None:
                raise ValueError(f"Invalid cost '{cost}'")
            cost_cents = to_cents(amount)

        item = add_collection_item(
            db,
            user_id=user_id,
            game=game,
            card_id=card_id,
            quantity=quantity,
            variant_type=variant,
            cost_cents=cost_cents,
            card_name=card_name,
        )
        click.echo(
            f"{item.card_name or item.card_id} ({item.variant_type}) now held x{item.quantity}"
        )
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        db.rollback()
        report_error(ctx, e)
    finally:
        db.close()


@cli.command("add-market-item")
@click.option("--game", "-g", required=True, help="Game of the catalog item")
@click.option("--source", "-s", required=True, help="Canonical source (e.g. tcgplayer)")
@click.option("--id", "canonical_id", required=True, help="Canonical id within the source")
@click.option(
    "--external",
    "-e",
    multiple=True,
    help="Extra price source mapping as source=id (can be specified multiple times)",
)
@click.option("--name", "display_name", default=None, help="Display name")
@click.option("--variant", default=None, help="Variant used when pricing this item")
@click.pass_context
def add_market_item(ctx, game, source, canonical_id, external, display_name, variant):
    """Register a catalog item for daily market snapshots."""
    db = SessionLocal()
    try:
        external_ids = {source: canonical_id}
        for mapping in external:
            if "=" not in mapping:
                raise ValueError(f"Expected source=id, got '{mapping}'")
            ext_source, ext_id = mapping.split("=", 1)
            external_ids[ext_source.strip()] = ext_id.strip()

        item = register_market_item(
            db,
            game=game,
            canonical_source=source,
            canonical_id=canonical_id,
            external_ids=external_ids,
            display_name=display_name,
            variant_type=variant,
        )
        click.echo(f"Market item {item.id} tracks {len(item.external_ids)} price source(s)")
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        db.rollback()
        report_error(ctx, e)
    finally:
        db.close()


@cli.command()
@click.option("--user", "-u", "user_id", help="Revalue a single user")
@click.option("--all", "all_users", is_flag=True, help="Revalue every user with collection items")
@click.option("--date", "as_of", default=None, help="UTC date to value, YYYY-MM-DD (default: today)")
@click.option("--live/--no-live", default=False, help="Fall back to live vendor lookups (default: off)")
@click.pass_context
def revalue(ctx, user_id, all_users, as_of, live):
    """Recompute item valuations and the daily portfolio row."""
    if not user_id and not all_users:
        raise click.UsageError("Pass --user USER_ID or --all")

    try:
        as_of_date = parse_as_of_date(as_of)
        make_resolver = resolver_factory(live)

        if all_users:
            results = revalue_all_users(SessionLocal, as_of_date, resolver_factory=make_resolver)
        else:
            db = SessionLocal()
            try:
                results = [revalue_user_collection(db, user_id, as_of_date, resolver=make_resolver(db))]
            finally:
                db.close()
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        report_error(ctx, e)
        ctx.exit(1)

    table_data = [
        [
            r.user_id,
            "ok" if r.ok else "FAILED",
            r.updated_items,
            r.skipped_no_price,
            r.skipped_unsupported_game,
            r.error or r.message or "",
        ]
        for r in results
    ]
    click.echo(f"\nRevaluation for {as_of_date.isoformat()}:")
    click.echo(
        tabulate(
            table_data,
            headers=["User", "Status", "Updated", "No Price", "Unsupported", "Note"],
            tablefmt="grid",
        )
    )
    if any(not r.ok for r in results):
        ctx.exit(1)


@cli.command()
@click.option("--date", "as_of", default=None, help="UTC date to snapshot, YYYY-MM-DD (default: today)")
@click.option("--game", "-g", default=None, help="Only snapshot items of this game")
@click.pass_context
def rollup(ctx, as_of, game):
    """Write one market price snapshot per tracked catalog item."""
    db = SessionLocal()
    try:
        result = build_market_snapshots(db, as_of, game=game)
        click.echo(
            f"Snapshots for {result.as_of_date.isoformat()}: "
            f"{result.snapshots_written} written, "
            f"{result.items_without_price} of {result.items_seen} items without a price"
        )
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        report_error(ctx, e)
        ctx.exit(1)
    finally:
        db.close()


@cli.command()
@click.option("--days", "-d", type=int, default=7, help="Lookback window in days (default: 7)")
@click.option("--limit", "-l", type=int, default=25, help="Maximum rows (default: 25)")
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(list(SORT_KEYS)),
    default=SORT_KEYS[0],
    help="Rank by dollar impact or percent move (default: impact)",
)
@click.option("--user", "-u", "user_id", default=None, help="Only items this user holds")
@click.option("--game", "-g", default=None, help="Only items of this game")
@click.option("--date", "as_of", default=None, help="End of the window, YYYY-MM-DD (default: today)")
@click.option(
    "--format-type",
    "-f",
    type=click.Choice(["table", "csv", "json"]),
    default="table",
    help="Output format (default: table)",
)
@click.option("--output", "-o", type=click.Path(), help="Save results to file")
@click.pass_context
def movers(ctx, days, limit, sort_by, user_id, game, as_of, format_type, output):
    """Show market items ranked by price change."""
    db = SessionLocal()
    try:
        rows = query_movers(
            db,
            days=days,
            limit=limit,
            sort_by=sort_by,
            as_of_date=as_of,
            user_id=user_id,
            game=game,
        )
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        report_error(ctx, e)
        ctx.exit(1)
    finally:
        db.close()

    write_output(output, format_movers(rows, format_type))


def format_movers(rows, format_type):
    """Format movers based on specified format type."""
    if format_type == "csv":
        return movers_to_csv(rows)

    if format_type == "json":
        return json.dumps([m.to_dict() for m in rows], indent=2)

    if not rows:
        return "No movers found for this window."

    table_data = []
    for m in rows:
        # Truncate name if too long
        name = m.display_name or m.canonical_id
        if len(name) > 40:
            name = name[:37] + "..."

        table_data.append([
            m.game,
            name,
            "" if m.quantity is None else m.quantity,
            usd(m.from_cents),
            usd(m.to_cents),
            "-" if m.change_pct is None else f"{m.change_pct:+.1f}%",
            usd(m.delta_each_cents),
            usd(m.delta_total_cents),
        ])

    headers = ["Game", "Item", "Qty", "From", "To", "Change", "Each", "Total"]
    return tabulate(table_data, headers=headers, tablefmt="grid")


@cli.command()
@click.option(
    "--source",
    "-s",
    multiple=True,
    type=click.Choice(FetcherFactory.sources()),
    help="Vendor to sync (can be specified multiple times; default: all)",
)
@click.pass_context
def sync(ctx, source):
    """Refresh vendor price tables for every tracked card id."""
    failures = 0
    for name in source or FetcherFactory.sources():
        try:
            written = sync_source(name)
            click.echo(f"{name}: {written} price rows written")
        except (sqlalchemy.exc.SQLAlchemyError, requests.exceptions.RequestException, ValueError) as e:
            failures += 1
            click.echo(f"{name}: sync failed")
            report_error(ctx, e)
    if failures:
        ctx.exit(1)


def sync_source(name):
    """Sync one vendor's tracked ids; returns rows written."""
    db = SessionLocal()
    try:
        card_ids = FetcherFactory.tracked_ids(db, name)
        if not card_ids:
            logger.info("No tracked %s card ids to sync", name)
            return 0
        fetcher = FetcherFactory.create_fetcher(name)
        return fetcher.sync(db, card_ids)
    except sqlalchemy.exc.SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


@cli.command()
@click.option("--date", "as_of", default=None, help="UTC date to run for, YYYY-MM-DD (default: today)")
@click.option("--fail-fast", is_flag=True, help="Stop at the first failed step")
@click.option("--skip-sync", is_flag=True, help="Do not call vendor APIs")
@click.pass_context
def nightly(ctx, as_of, fail_fast, skip_sync):
    """Run vendor sync, market rollup and revaluation in order."""
    try:
        as_of_date = parse_as_of_date(as_of)
    except ValueError as e:
        report_error(ctx, e)
        ctx.exit(1)

    def run_sync():
        for name in FetcherFactory.sources():
            written = sync_source(name)
            logger.info("Synced %s: %d rows", name, written)

    def run_rollup():
        db = SessionLocal()
        try:
            build_market_snapshots(db, as_of_date)
        finally:
            db.close()

    def run_revalue():
        results = revalue_all_users(SessionLocal, as_of_date, resolver_factory=resolver_factory(False))
        failed = [r.user_id for r in results if not r.ok]
        if failed:
            raise RuntimeError(f"Revaluation failed for {len(failed)} user(s): {', '.join(failed)}")

    steps = []
    if not skip_sync:
        steps.append(("vendor sync", run_sync))
    steps.append(("market rollup", run_rollup))
    steps.append(("revalue collections", run_revalue))

    failed_steps = []
    for index, (name, step) in enumerate(steps, 1):
        logger.info("[%d/%d] %s", index, len(steps), name)
        try:
            step()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("[%d/%d] %s failed: %s", index, len(steps), name, e)
            failed_steps.append(name)
            if ctx.obj.get("VERBOSE"):
                click.echo(traceback.format_exc())
            if fail_fast:
                break

    logger.info(
        "Nightly run for %s finished: %d of %d steps ok",
        as_of_date, len(steps) - len(failed_steps), len(steps),
    )
    if failed_steps:
        click.echo(f"Failed steps: {', '.join(failed_steps)}")
        ctx.exit(1)
    click.echo("Nightly run complete.")


@cli.group()
def jobs():
    """Revaluation job queue."""


@jobs.command("enqueue")
@click.option("--user", "-u", "user_id", required=True, help="User to revalue")
@click.option("--date", "as_of", default=None, help="UTC date to value, YYYY-MM-DD")
@click.pass_context
def jobs_enqueue(ctx, user_id, as_of):
    """Queue a revaluation for a user."""
    db = SessionLocal()
    try:
        job = enqueue_revalue(db, user_id, as_of)
        if job is None:
            click.echo(f"User {user_id} already has an active revaluation job.")
        else:
            click.echo(f"Queued job {job.id}")
    except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
        db.rollback()
        report_error(ctx, e)
    finally:
        db.close()


@jobs.command("run")
@click.option("--max-jobs", "-n", type=int, default=None, help="Stop after this many jobs")
@click.option("--live/--no-live", default=False, help="Fall back to live vendor lookups")
@click.pass_context
def jobs_run(ctx, max_jobs, live):
    """Process queued revaluation jobs."""
    try:
        results = run_pending_jobs(SessionLocal, max_jobs=max_jobs, resolver_factory=resolver_factory(live))
    except sqlalchemy.exc.SQLAlchemyError as e:
        report_error(ctx, e)
        ctx.exit(1)

    failed = sum(1 for r in results if not r.ok)
    click.echo(f"Processed {len(results)} job(s), {failed} failed.")


if __name__ == "__main__":
    # This runs the Click application
    cli.main(obj={})
