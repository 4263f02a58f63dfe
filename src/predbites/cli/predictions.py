"""Predictions subcommand: list, show, create, stake, lock, settle, void, odds, leaderboard."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer

from predbites.errors import PredictionError
from predbites.lifecycle import now_ms, remaining
from predbites.serialize import PredictionView
from predbites.service import PredictionService

app = typer.Typer(help="Create, stake on and settle predictions")


@contextmanager
def _service(ctx: typer.Context) -> Iterator[PredictionService]:
    """Open the service for one command; domain errors exit 1 with their code."""
    svc = PredictionService.from_settings(ctx.obj["settings"])
    try:
        yield svc
    except PredictionError as e:
        typer.echo(f"Error [{e.code}]: {e.message}", err=True)
        raise typer.Exit(1) from None
    finally:
        svc.close()


def _echo_prediction(view: PredictionView) -> None:
    countdown = remaining(view.locks_at, now_ms())
    typer.echo(f"{view.id}  [{view.status.value}]  {view.title}")
    typer.echo(f"  creator: {view.creator_id}  pool: {view.total_pool}  locks: {countdown.label()}")
    for o in view.outcomes:
        mark = " *" if o.is_winner else ""
        typer.echo(f"  {o.id}  {o.label:<30} {o.pool:>12}  {o.percentage:5.1f}%  x{o.odds:.2f}{mark}")
    if view.void_reason:
        typer.echo(f"  reason: {view.void_reason}")


@app.command("list")
def list_predictions(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status (OPEN, LOCKED, SETTLED, ...)"),
    sport: str | None = typer.Option(None, "--sport", help="Filter by sport category"),
    creator: str | None = typer.Option(None, "--creator", help="Filter by creator"),
    limit: int = typer.Option(20, "--limit", "-n", help="Page size"),
    cursor: str | None = typer.Option(None, "--cursor", help="Cursor from a previous page"),
) -> None:
    """List predictions, soonest-locking first."""
    with _service(ctx) as svc:
        views, next_cursor = svc.list_predictions(status=status, sport=sport, creator=creator, cursor=cursor, limit=limit)
        now = now_ms()
        for v in views:
            typer.echo(
                f"  {v.id[:8]}  {v.status.value:<9} {v.total_pool:>12}  "
                f"{remaining(v.locks_at, now).label():<8}  {v.title[:60]}"
            )
        typer.echo(f"Total: {len(views)} predictions")
        if next_cursor is not None:
            typer.echo(f"Next page: --cursor {next_cursor}")


@app.command("show")
def show(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    user: str | None = typer.Option(None, "--as", help="Show this user's stakes"),
) -> None:
    """Show one prediction with outcome pools and odds."""
    with _service(ctx) as svc:
        view = svc.get_prediction(prediction_id, viewer=user)
        _echo_prediction(view)
        for s in view.user_stakes or []:
            payout = "pending" if s.payout is None else str(s.payout)
            typer.echo(f"  your stake {s.amount} on {s.outcome_id[:8]}  payout: {payout}")


@app.command("create")
def create(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", "-t", help="Prediction title"),
    outcomes: list[str] = typer.Option(..., "--outcome", "-o", help="Outcome label (repeat 2-4 times)"),
    creator: str = typer.Option(..., "--as", help="Creator account"),
    locks_in: int = typer.Option(60, "--locks-in", help="Minutes until staking locks"),
    sport: str | None = typer.Option(None, "--sport", help="Sport category"),
    match_ref: str | None = typer.Option(None, "--match", help="External match reference"),
    stake_outcome: int | None = typer.Option(None, "--stake-outcome", help="Index of the outcome to back"),
    stake_amount: str | None = typer.Option(None, "--stake-amount", help="Creator stake amount"),
) -> None:
    """Create a prediction, optionally backing one outcome."""
    creator_stake = None
    if stake_outcome is not None or stake_amount is not None:
        if stake_outcome is None or stake_amount is None:
            typer.echo("--stake-outcome and --stake-amount go together")
            raise typer.Exit(1)
        creator_stake = (stake_outcome, stake_amount)
    with _service(ctx) as svc:
        view = svc.create_prediction(
            creator,
            title,
            outcomes,
            now_ms() + locks_in * 60_000,
            sport_category=sport,
            match_reference=match_ref,
            creator_stake=creator_stake,
        )
        typer.echo("Created:")
        _echo_prediction(view)


@app.command("stake")
def stake(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    outcome_id: str = typer.Option(..., "--outcome", "-o", help="Outcome ID"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in MEDALS"),
    user: str = typer.Option(..., "--as", help="Staking account"),
) -> None:
    """Stake MEDALS on an outcome."""
    with _service(ctx) as svc:
        receipt = svc.place_stake(prediction_id, outcome_id, user, amount)
        typer.echo(f"Staked {receipt.stake.amount} (your total on this outcome: {receipt.user_outcome_total})")
        typer.echo(f"Pool: {receipt.total_pool}  odds: x{receipt.odds:.2f}  projected payout: {receipt.projected_payout}")


@app.command("lock")
def lock(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    user: str = typer.Option(..., "--as", help="Creator or admin account"),
) -> None:
    """Lock staking early."""
    with _service(ctx) as svc:
        view = svc.lock_prediction(prediction_id, user)
        typer.echo(f"{view.id} is {view.status.value}")


@app.command("settle")
def settle(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    winner: str = typer.Option(..., "--winner", "-w", help="Winning outcome ID"),
    user: str = typer.Option(..., "--as", help="Creator or admin account"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Settle a locked prediction. Irreversible."""
    if not yes:
        typer.confirm(f"Settle {prediction_id} with winner {winner}? This cannot be undone", abort=True)
    with _service(ctx) as svc:
        result = svc.settle_prediction(prediction_id, winner, user)
        typer.echo(f"{result.prediction_id}: {result.status.value}  pool {result.total_pool}  paid {result.total_paid}")
        if result.refund_reason:
            typer.echo(f"Refunded: {result.refund_reason}")
        if result.platform_fee:
            typer.echo(f"Fee {result.platform_fee} (burn {result.burn_amount}, rewards {result.reward_amount})")
        for p in result.payouts:
            if p.payout > 0:
                typer.echo(f"  {p.staker_id:<20} staked {p.amount:>10}  payout {p.payout:>12}")


@app.command("void")
def void(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the prediction is voided"),
    user: str = typer.Option(..., "--as", help="Creator or admin account"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Void a locked prediction and refund every stake. Irreversible."""
    if not yes:
        typer.confirm(f"Void {prediction_id} and refund all stakes?", abort=True)
    with _service(ctx) as svc:
        result = svc.void_prediction(prediction_id, reason, user)
        typer.echo(f"{result.prediction_id}: VOID  refunded {result.total_paid} across {len(result.payouts)} stakes")


@app.command("odds")
def odds(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
) -> None:
    """Current display odds per outcome."""
    with _service(ctx) as svc:
        for o in svc.get_odds(prediction_id):
            typer.echo(f"  {o.label:<30} pool {o.pool:>12}  {o.percentage:5.1f}%  x{o.multiplier:.2f}")


@app.command("leaderboard")
def leaderboard(
    ctx: typer.Context,
    sort: str = typer.Option("profit", "--sort", help="profit, wins or staked"),
    period: str = typer.Option("all", "--period", help="all, week or month"),
    limit: int = typer.Option(20, "--limit", "-n", help="Rows to show"),
) -> None:
    """Top stakers across settled predictions."""
    with _service(ctx) as svc:
        rows = svc.leaderboard(sort=sort, period=period, limit=limit)
        for i, r in enumerate(rows, 1):
            typer.echo(
                f"{i:>3}. {r['staker_id']:<20} wins {r['wins']:>3}/{r['predictions']:<3} "
                f"staked {r['total_staked']:>10}  profit {r['profit']:>10}"
            )
        if not rows:
            typer.echo("No settled predictions yet.")
