"""
bidcore CLI - Command Line Interface for the bidding engine

Main entry point for all CLI commands.
"""

import time
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

import click

from bidcore.core.config import load_config
from bidcore.core.engine import BiddingEngine
from bidcore.core.errors import MarketError
from bidcore.core.models import Auction, AuctionStatus, Bid
from bidcore.utils.logger import setup_logging


def _engine(ctx) -> BiddingEngine:
    """Build the engine on first use and tear it down when the command ends."""
    engine = ctx.obj.get("engine")
    if engine is None:
        engine = BiddingEngine.create(config=ctx.obj["config"])
        ctx.obj["engine"] = engine
        ctx.call_on_close(engine.shutdown)
    return engine


def _money(value: Optional[Decimal]) -> str:
    return "-" if value is None else f"${value:,.2f}"


def _echo_auction(auction: Auction) -> None:
    click.echo(f"Auction #{auction.auction_id}: {auction.title}")
    click.echo(f"  Status:    {auction.status.name}")
    click.echo(f"  Seller:    {auction.seller_id}")
    click.echo(f"  Price:     {_money(auction.current_price)} (start {_money(auction.starting_price)})")
    if auction.reserve_price is not None:
        click.echo(f"  Reserve:   {_money(auction.reserve_price)}")
    click.echo(f"  Window:    {auction.start_time:%Y-%m-%d %H:%M:%S} -> {auction.end_time:%Y-%m-%d %H:%M:%S} UTC")
    click.echo(f"  Bids:      {auction.bid_count}")
    if auction.status == AuctionStatus.ENDED:
        if auction.winner_id is not None:
            click.echo(f"  Winner:    {auction.winner_id} at {_money(auction.final_price)}")
        else:
            click.echo("  Winner:    none")


def _echo_bid(bid: Bid) -> None:
    ceiling = f" (max {_money(bid.max_amount)})" if bid.is_proxy else ""
    click.echo(
        f"  #{bid.bid_id:<5} user {bid.bidder_id:<5} {_money(bid.amount):>12}{ceiling} "
        f"{bid.status.name:<9} {bid.created_at:%Y-%m-%d %H:%M:%S}"
    )


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides BIDCORE_DATA_DIR)")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help=".env file with BIDCORE_* settings")
@click.option("--log-file", is_flag=True, help="Also write logs to LOG_DIR/bidcore.log")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, env_file, log_file):
    """bidcore - bid settlement and auction lifecycle engine"""
    import logging

    overrides = {}
    if log_file:
        overrides["log_to_file"] = True
    if data_dir is not None:
        overrides["data_dir"] = Path(data_dir).expanduser()
    try:
        config = load_config(env_file=env_file, **overrides)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    setup_logging(level=logging.DEBUG if debug else logging.WARNING, config=config)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Auction Commands
# =============================================================================


@cli.group()
def auction():
    """Auction management commands"""
    pass


@auction.command("create")
@click.option("--seller", required=True, type=int, help="Seller user id")
@click.option("--title", required=True, help="Auction title")
@click.option("--price", "starting_price", required=True, help="Starting price")
@click.option("--reserve", default=None, help="Reserve price")
@click.option("--buy-now", default=None, help="Buy-now price")
@click.option("--description", default="", help="Description")
@click.option("--starts-in", default=0, type=int, help="Minutes until bidding opens (0 = now)")
@click.option("--duration", default=24 * 60, type=int, help="Bidding window in minutes")
@click.option("--start/--no-start", "start_now", default=False, help="Open for bidding immediately")
@click.pass_context
def auction_create(ctx, seller, title, starting_price, reserve, buy_now, description,
                   starts_in, duration, start_now):
    """Create a new auction"""
    engine = _engine(ctx)
    now = engine.clock()
    start = now + timedelta(minutes=starts_in) if starts_in > 0 else None
    end = (start or now) + timedelta(minutes=duration)
    try:
        created = engine.registry.create_auction(
            seller_id=seller,
            title=title,
            starting_price=starting_price,
            start_time=start,
            end_time=end,
            reserve_price=reserve,
            buy_now_price=buy_now,
            description=description,
        )
        if start_now:
            created = engine.registry.start_auction(created.auction_id, seller)
    except MarketError as e:
        raise click.ClickException(str(e))

    click.echo(f"✓ Auction created: #{created.auction_id}")
    _echo_auction(created)


@auction.command("start")
@click.argument("auction_id", type=int)
@click.option("--seller", required=True, type=int, help="Seller user id")
@click.pass_context
def auction_start(ctx, auction_id, seller):
    """Open an upcoming auction for bidding"""
    try:
        started = _engine(ctx).registry.start_auction(auction_id, seller)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Auction #{started.auction_id} is now {started.status.name}")


@auction.command("show")
@click.argument("auction_id", type=int)
@click.pass_context
def auction_show(ctx, auction_id):
    """Show an auction and its minimum next bid"""
    engine = _engine(ctx)
    try:
        found = engine.registry.get_auction(auction_id)
    except MarketError as e:
        raise click.ClickException(str(e))
    _echo_auction(found)
    if found.status == AuctionStatus.ACTIVE:
        click.echo(f"  Next bid:  {_money(engine.placement.minimum_next_bid(found))}")


@auction.command("list")
@click.option(
    "--status",
    default=None,
    type=click.Choice([s.name for s in AuctionStatus], case_sensitive=False),
    help="Filter by status",
)
@click.option("--seller", default=None, type=int, help="Filter by seller")
@click.pass_context
def auction_list(ctx, status, seller):
    """List auctions"""
    engine = _engine(ctx)
    if seller is not None:
        auctions = engine.registry.auctions_by_seller(seller)
        if status is not None:
            auctions = [a for a in auctions if a.status == AuctionStatus[status.upper()]]
    else:
        auctions = engine.registry.list_auctions(AuctionStatus[status.upper()] if status else None)

    if not auctions:
        click.echo("No auctions found.")
        return
    for a in auctions:
        click.echo(
            f"  #{a.auction_id:<5} {a.status.name:<9} {_money(a.current_price):>12}  "
            f"{a.bid_count:>3} bids  {a.title}"
        )


@auction.command("cancel")
@click.argument("auction_id", type=int)
@click.option("--seller", required=True, type=int, help="Seller user id")
@click.pass_context
def auction_cancel(ctx, auction_id, seller):
    """Cancel an auction without bids"""
    try:
        _engine(ctx).registry.cancel_auction(auction_id, seller)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Auction #{auction_id} cancelled")


@auction.command("end")
@click.argument("auction_id", type=int)
@click.option("--seller", required=True, type=int, help="Seller user id")
@click.pass_context
def auction_end(ctx, auction_id, seller):
    """End your auction early"""
    try:
        ended = _engine(ctx).end_auction(auction_id, seller)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Auction #{auction_id} ended")
    _echo_auction(ended)


@auction.command("close")
@click.argument("auction_id", type=int)
@click.pass_context
def auction_close(ctx, auction_id):
    """Close an auction (no-op if already closed)"""
    try:
        closed = _engine(ctx).close_auction(auction_id)
    except MarketError as e:
        raise click.ClickException(str(e))
    _echo_auction(closed)


@auction.command("suspend")
@click.argument("auction_id", type=int)
@click.pass_context
def auction_suspend(ctx, auction_id):
    """Freeze an auction (administrative)"""
    try:
        _engine(ctx).registry.suspend_auction(auction_id)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Auction #{auction_id} suspended")


@auction.command("void")
@click.argument("auction_id", type=int)
@click.pass_context
def auction_void(ctx, auction_id):
    """End a suspended auction without a winner"""
    try:
        voided = _engine(ctx).void_auction(auction_id)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Auction #{auction_id} voided")
    _echo_auction(voided)


# =============================================================================
# Bid Commands
# =============================================================================


@cli.group()
def bid():
    """Bidding commands"""
    pass


@bid.command("place")
@click.argument("auction_id", type=int)
@click.option("--user", required=True, type=int, help="Bidder user id")
@click.option("--amount", required=True, help="Bid amount")
@click.pass_context
def bid_place(ctx, auction_id, user, amount):
    """Place a bid"""
    try:
        placed = _engine(ctx).place_bid(auction_id, user, amount)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Bid #{placed.bid_id} placed: {_money(placed.amount)} ({placed.status.name})")


@bid.command("proxy")
@click.argument("auction_id", type=int)
@click.option("--user", required=True, type=int, help="Bidder user id")
@click.option("--max", "max_amount", required=True, help="Maximum amount")
@click.pass_context
def bid_proxy(ctx, auction_id, user, max_amount):
    """Place a proxy bid with a maximum"""
    try:
        placed = _engine(ctx).place_proxy_bid(auction_id, user, max_amount)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"✓ Proxy bid #{placed.bid_id} placed: {_money(placed.amount)} "
        f"(max {_money(placed.max_amount)}, {placed.status.name})"
    )


@bid.command("retract")
@click.argument("bid_id", type=int)
@click.option("--user", required=True, type=int, help="Bidder user id")
@click.option("--reason", default="", help="Reason for retraction")
@click.pass_context
def bid_retract(ctx, bid_id, user, reason):
    """Retract one of your bids"""
    try:
        _engine(ctx).retract_bid(bid_id, user, reason)
    except MarketError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ Bid #{bid_id} retracted")


@bid.command("list")
@click.option("--auction", "auction_id", default=None, type=int, help="Bids on an auction")
@click.option("--user", default=None, type=int, help="Bids by a user")
@click.pass_context
def bid_list(ctx, auction_id, user):
    """List bids for an auction or a user"""
    if (auction_id is None) == (user is None):
        raise click.UsageError("Pass exactly one of --auction or --user")
    ledger = _engine(ctx).ledger
    bids = ledger.bids_for_auction(auction_id) if auction_id is not None else ledger.bids_by_user(user)
    if not bids:
        click.echo("No bids found.")
        return
    for b in bids:
        _echo_bid(b)


# =============================================================================
# User Commands
# =============================================================================


@cli.group()
def user():
    """User reputation commands"""
    pass


@user.command("show")
@click.argument("user_id", type=int)
@click.pass_context
def user_show(ctx, user_id):
    """Show a user's trust record and bidding statistics"""
    engine = _engine(ctx)
    record = engine.trust.get_record(user_id)
    stats = engine.ledger.bid_statistics(user_id)
    click.echo(f"User {user_id}")
    click.echo(f"  Trust score:  {record.trust_score:.1f}")
    click.echo(f"  Successful:   {record.successful_transactions}")
    click.echo(f"  Failed:       {record.failed_transactions}")
    click.echo(f"  Bid volume:   {_money(record.total_bid_amount)}")
    click.echo(f"  Bids:         {stats.total_bids} ({stats.winning_bids} winning)")
    click.echo(f"  Won amount:   {_money(stats.total_winning_amount)}")


# =============================================================================
# Sweep Command
# =============================================================================


@cli.command("sweep")
@click.option("--watch", is_flag=True, help="Keep sweeping until interrupted")
@click.pass_context
def sweep(ctx, watch):
    """Activate due auctions and close expired ones"""
    engine = _engine(ctx)
    if not watch:
        report = engine.sweeper.sweep_once()
        click.echo(
            f"✓ Sweep: {len(report.activated)} activated, {len(report.closed)} closed, "
            f"{len(report.failed)} failed"
        )
        return

    click.echo(f"Sweeping every {engine.config.sweep_interval_seconds}s (Ctrl+C to stop)")
    engine.start_sweeper()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping sweeper...")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.pass_context
def demo(ctx):
    """Run a short bidding walkthrough in a scratch database"""
    import tempfile

    click.echo("=" * 60)
    click.echo("  BIDCORE - DEMO")
    click.echo("=" * 60)
    click.echo()

    with tempfile.TemporaryDirectory() as scratch:
        config = ctx.obj["config"].model_copy(update={"data_dir": Path(scratch)})
        engine = BiddingEngine.create(config=config)
        try:
            seller, alice, bob, carol = 1, 2, 3, 4
            now = engine.clock()

            click.echo("📦 Creating auction...")
            lot = engine.registry.create_auction(
                seller, "Vintage camera", "100.00", None, now + timedelta(hours=1),
                reserve_price="120.00",
            )
            engine.registry.start_auction(lot.auction_id, seller)
            click.echo(f"  ✓ Auction #{lot.auction_id} open, minimum bid "
                       f"{_money(engine.get_minimum_next_bid(lot.auction_id))}")
            click.echo()

            click.echo("💸 Manual bids...")
            engine.place_bid(lot.auction_id, alice, "105.00")
            click.echo(f"  ✓ Alice bids $105.00, next minimum "
                       f"{_money(engine.get_minimum_next_bid(lot.auction_id))}")
            engine.place_bid(lot.auction_id, bob, "110.25")
            click.echo("  ✓ Bob bids $110.25")
            click.echo()

            click.echo("🤖 Proxy bids...")
            engine.place_proxy_bid(lot.auction_id, carol, "200.00")
            click.echo("  ✓ Carol sets a proxy with max $200.00")
            engine.place_proxy_bid(lot.auction_id, alice, "150.00")
            click.echo("  ✓ Alice sets a proxy with max $150.00")
            leader = engine.get_highest_bid(lot.auction_id)
            click.echo(f"  ✓ Leader: user {leader.bidder_id} at {_money(leader.amount)}")
            click.echo()

            click.echo("⚖️  Closing auction...")
            closed = engine.close_auction(lot.auction_id)
            click.echo(f"  ✓ Winner: user {closed.winner_id} at {_money(closed.final_price)}")
            click.echo()

            click.echo("📊 Trust scores:")
            for uid in (seller, alice, bob, carol):
                click.echo(f"  User {uid}: {engine.trust.get_score(uid):.1f}")
            click.echo()
            click.echo("✅ Demo complete!")
        finally:
            engine.shutdown()


if __name__ == "__main__":
    cli()
