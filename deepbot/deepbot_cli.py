#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
import yaml
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from deepbot.bot import DEFAULT_PAGE_SIZE, DeepBot
from deepbot.config import DeepBotConfig
from deepbot.models import VIP, User
from shared.envelope import DeepBotError
from shared.log import configure_root_logging, get_logger

app = typer.Typer(help="DeepBot API client")
console = Console()
logger = get_logger(__name__)

T = TypeVar("T")

# Used when neither --attempts nor the config file bounds reconnecting
DEFAULT_ATTEMPTS = 3


def _make_bot(config: DeepBotConfig) -> DeepBot:
    return DeepBot(config=config)


@app.callback()
def configure(
    ctx: typer.Context,
    uri: Optional[str] = typer.Option(None, envvar="DEEPBOT_URI", help="WebSocket URL of DeepBot"),
    secret: Optional[str] = typer.Option(None, envvar="DEEPBOT_SECRET", help="DeepBot API secret"),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="YAML config file"),
    timeout: Optional[int] = typer.Option(None, help="Response timeout in milliseconds"),
    attempts: Optional[int] = typer.Option(None, help="Connection attempts before giving up (default: config file, else 3)"),
    log_level: str = typer.Option("WARNING", help="Log level"),
):
    """Connection options shared by every command."""
    configure_root_logging(log_level)
    try:
        base = DeepBotConfig.from_yaml(config) if config else DeepBotConfig.from_env()
        ctx.obj = base.with_overrides(
            uri=uri,
            secret=secret,
            response_timeout_ms=timeout,
            max_reconnect_attempts=attempts if attempts is not None else (base.max_reconnect_attempts or DEFAULT_ATTEMPTS),
        ).validate()
    except (ValueError, TypeError, yaml.YAMLError) as e:
        raise typer.BadParameter(str(e))


def _run(ctx: typer.Context, action: Callable[[DeepBot], Awaitable[T]]) -> T:
    """Connect, run one action, close; errors print in red and exit 1"""
    async def scenario() -> T:
        async with _make_bot(ctx.obj) as bot:
            return await action(bot)

    try:
        return asyncio.run(scenario())
    except DeepBotError as e:
        console.print(f"[red]{type(e).__name__}[/]: {e}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]Invalid request[/]: {e}")
        raise typer.Exit(code=1)


def _fmt_date(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _user_table(title: str, users: List[User]) -> Table:
    table = Table(title=title)
    table.add_column("User")
    table.add_column("Points", justify="right")
    table.add_column("Hours", justify="right")
    table.add_column("VIP")
    table.add_column("Level")
    table.add_column("VIP expiry")
    table.add_column("Last seen")
    for u in users:
        table.add_row(
            u.name,
            str(u.points),
            f"{u.hours:.1f}",
            u.vip.name.title(),
            u.level.name.replace("_", " ").title(),
            _fmt_date(u.vip_expiry),
            _fmt_date(u.last_seen),
        )
    return table


@app.command()
def user(ctx: typer.Context, name: str = typer.Argument(..., help="User name")):
    """Show one user."""
    found = _run(ctx, lambda bot: bot.get_user(name))
    if found is None:
        console.print(f"[yellow]User {name} not found[/]")
        raise typer.Exit(code=2)
    console.print(_user_table(name, [found]))


@app.command()
def users(
    ctx: typer.Context,
    offset: Optional[int] = typer.Option(None, help="First user to list"),
    count: Optional[int] = typer.Option(None, help="Number of users (needs --offset)"),
):
    """List users in bot order."""
    page = _run(ctx, lambda bot: bot.get_users(offset, count))
    console.print(_user_table("Users", page))


@app.command()
def top(
    ctx: typer.Context,
    offset: Optional[int] = typer.Option(None, help="First rank to list"),
    count: Optional[int] = typer.Option(None, help="Number of users (needs --offset)"),
):
    """List users by points."""
    page = _run(ctx, lambda bot: bot.get_top_users(offset, count))
    console.print(_user_table("Top users", page))


@app.command()
def count(ctx: typer.Context):
    """Show the number of users the bot knows."""
    total = _run(ctx, lambda bot: bot.get_users_count())
    console.print(f"{total} users")


@app.command("add-points")
def add_points(ctx: typer.Context, name: str, points: int):
    """Give points to a user."""
    _run(ctx, lambda bot: bot.add_points(name, points))
    console.print(f"[green]Added {points} points to {name}[/]")


@app.command("del-points")
def del_points(ctx: typer.Context, name: str, points: int):
    """Take points from a user."""
    _run(ctx, lambda bot: bot.del_points(name, points))
    console.print(f"[green]Removed {points} points from {name}[/]")


@app.command("set-points")
def set_points(ctx: typer.Context, name: str, points: int):
    """Set a user's point total."""
    _run(ctx, lambda bot: bot.set_points(name, points))
    console.print(f"[green]{name} now has {points} points[/]")


@app.command()
def hours(ctx: typer.Context, name: str):
    """Show a user's watch hours."""
    value = _run(ctx, lambda bot: bot.get_hours(name))
    console.print(f"{name}: {value:.2f} hours")


@app.command()
def rank(ctx: typer.Context, name: str):
    """Show a user's rank."""
    value = _run(ctx, lambda bot: bot.get_rank(name))
    console.print(f"{name}: {value}")


@app.command()
def vip(
    ctx: typer.Context,
    name: str,
    level: str = typer.Argument(..., help="regular, bronze, silver or gold"),
    days: int = typer.Argument(0, help="Days to add to the VIP expiry"),
):
    """Set a user's VIP level."""
    try:
        vip_level = VIP[level.upper()]
    except KeyError:
        raise typer.BadParameter(f"Unknown VIP level: {level}")
    _run(ctx, lambda bot: bot.set_vip(name, vip_level, days))
    console.print(f"[green]{name} is now {vip_level.name.title()}[/]")


@app.command("vip-expiry")
def vip_expiry(ctx: typer.Context, name: str, expiry: str = typer.Argument(..., help="yyyy-mm-ddThh:mm:ss")):
    """Set when a user's VIP expires."""
    _run(ctx, lambda bot: bot.set_vip_expiry(name, expiry))
    console.print(f"[green]VIP of {name} expires {expiry}[/]")


@app.command("escrow-add")
def escrow_add(ctx: typer.Context, name: str, points: int):
    """Hold points in escrow."""
    _run(ctx, lambda bot: bot.add_to_escrow(name, points))
    console.print(f"[green]{points} points of {name} held in escrow[/]")


@app.command("escrow-commit")
def escrow_commit(ctx: typer.Context, name: str):
    """Deduct a user's escrowed points."""
    _run(ctx, lambda bot: bot.commit_escrow(name))
    console.print(f"[green]Escrow of {name} committed[/]")


@app.command("escrow-cancel")
def escrow_cancel(ctx: typer.Context, name: str):
    """Release a user's escrowed points."""
    _run(ctx, lambda bot: bot.cancel_escrow(name))
    console.print(f"[green]Escrow of {name} cancelled[/]")


@app.command()
def export(
    ctx: typer.Context,
    output: Path = typer.Option(Path("deepbot_users.json"), help="JSON file to write"),
    page_size: int = typer.Option(DEFAULT_PAGE_SIZE, help="Users fetched per request"),
):
    """Fetch every user and write them to a JSON file."""
    async def fetch(bot: DeepBot) -> List[User]:
        total = await bot.get_users_count()
        collected: List[User] = []
        with tqdm(total=total, unit="user", desc="Fetching users") as bar:
            async for page in bot.iter_user_pages(page_size):
                collected.extend(page)
                bar.update(len(page))
        return collected

    everyone = _run(ctx, fetch)
    output.write_text(json.dumps([u.to_dict() for u in everyone], indent=2), encoding="utf-8")
    console.print(f"[green]Wrote {len(everyone)} users to {output}[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
