"""
CLI commands for RateWatch.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

from src.alerts.errors import AlertError
from src.alerts.models import Alert, AlertSpec
from src.config import AppConfig, load_config
from src.coordinator import Coordinator
from src.database.connection import Database
from src.database.serialization import settings_to_dict
from src.main import build_coordinator


def format_alert(alert: Alert) -> str:
    """One-line description of an alert."""
    if alert.target_rate is not None:
        condition = f"{alert.condition_type.value} {alert.target_rate:g}"
    else:
        condition = f"{alert.condition_type.value} {alert.threshold:g}%"
    status = "on" if alert.enabled else "off"
    rate = f"{alert.current_rate:.4f}" if alert.current_rate is not None else "-"
    return (
        f"{alert.id}  [{status}] {alert.name}: {alert.pair} {condition} "
        f"(rate {rate}, triggered {alert.trigger_count}x)"
    )


def parse_setting(key: str, raw: str) -> dict[str, Any]:
    """
    Turn ``key value`` into a settings patch.

    Values are parsed as YAML scalars so ``true``/``15`` become bool/int.
    Dotted keys address quiet hours, e.g. ``quiet_hours.start 23:00``.
    """
    value = yaml.safe_load(raw)
    if isinstance(value, int) and not isinstance(value, bool) and ":" in raw:
        # YAML 1.1 reads 22:00 as a sexagesimal int
        value = raw
    if key.startswith("quiet_hours."):
        return {"quiet_hours": {key.split(".", 1)[1]: value}}
    return {key: value}


async def add_alert(coordinator: Coordinator, args: argparse.Namespace) -> Alert:
    """Create an alert from CLI arguments."""
    spec = AlertSpec(
        from_currency=args.from_currency,
        to_currency=args.to_currency,
        condition=args.condition,
        target_rate=args.target,
        threshold=args.threshold,
        enabled=not args.disabled,
        name=args.name,
        description=args.description,
    )
    return await coordinator.create_alert(spec)


async def update_alert(coordinator: Coordinator, args: argparse.Namespace) -> Alert:
    """Apply the given CLI options as a partial update."""
    patch: dict[str, Any] = {}
    for option, key in (
        ("name", "name"),
        ("description", "description"),
        ("from_currency", "from_currency"),
        ("to_currency", "to_currency"),
        ("condition", "condition"),
        ("target", "target_rate"),
        ("threshold", "threshold"),
    ):
        value = getattr(args, option)
        if value is not None:
            patch[key] = value
    return await coordinator.update_alert(args.id, patch)


async def run_command(coordinator: Coordinator, args: argparse.Namespace) -> None:
    """Dispatch one parsed command."""
    if args.command == "alerts":
        if args.action == "add":
            alert = await add_alert(coordinator, args)
            print(f"Created alert with ID: {alert.id}")
        elif args.action == "list":
            alerts = await coordinator.list_alerts()
            if not alerts:
                print("No alerts")
            for alert in alerts:
                print(format_alert(alert))
        elif args.action == "update":
            alert = await update_alert(coordinator, args)
            print(format_alert(alert))
        elif args.action in ("enable", "disable"):
            alert = await coordinator.update_alert(
                args.id, {"enabled": args.action == "enable"}
            )
            print(format_alert(alert))
        elif args.action == "delete":
            alert = await coordinator.delete_alert(args.id)
            print(f"Deleted alert: {alert.name}")

    elif args.command == "history":
        for entry in await coordinator.get_alert_history(limit=args.limit):
            print(
                f"{entry.triggered_at.isoformat()}  {entry.alert_name}: "
                f"{entry.pair} at {entry.current_rate:.4f}"
            )

    elif args.command == "rates":
        entries = await coordinator.get_rate_history(
            args.from_currency, args.to_currency, limit=args.limit
        )
        for entry in entries:
            print(f"{entry.timestamp.isoformat()}  {entry.pair} {entry.rate:.4f}")

    elif args.command == "trend":
        snapshot = await coordinator.get_trend(args.days, refresh=args.refresh)
        print(f"Trends over {snapshot.period} days ({snapshot.generated_at.isoformat()})")
        for pair, trend in sorted(snapshot.trends.items()):
            print(
                f"{pair}: {trend.trend.value} {trend.percent_change:+.2f}% "
                f"(volatility {trend.volatility:.4f}, {trend.data_points} points)"
            )

    elif args.command == "settings":
        if args.action == "set":
            settings = await coordinator.update_settings(
                parse_setting(args.key, args.value)
            )
        else:
            settings = await coordinator.get_settings()
        print(yaml.safe_dump(settings_to_dict(settings), sort_keys=False), end="")

    elif args.command == "check":
        result = await coordinator.check_rates()
        print(
            f"Checked {len(result.checked)}, triggered {len(result.triggered)}, "
            f"denied {len(result.denied)}, failed {len(result.failed)}"
        )

    elif args.command == "summary":
        if args.period == "daily":
            summary = await coordinator.daily_summary()
        else:
            summary = await coordinator.weekly_summary()
        print(summary if summary else "Nothing to report")

    elif args.command == "cleanup":
        rate_removed, alert_removed = await coordinator.cleanup(args.days)
        print(f"Removed {rate_removed} rate entries, {alert_removed} alert entries")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RateWatch CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Alert commands
    alerts_parser = subparsers.add_parser("alerts", help="Alert management")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")

    add_parser = alerts_subparsers.add_parser("add", help="Add alert")
    add_parser.add_argument("--from", dest="from_currency", required=True)
    add_parser.add_argument("--to", dest="to_currency", required=True)
    add_parser.add_argument(
        "--condition", required=True, choices=["above", "below", "change"]
    )
    add_parser.add_argument("--target", type=float, help="Target rate")
    add_parser.add_argument("--threshold", type=float, help="Change threshold (%%)")
    add_parser.add_argument("--name", help="Alert name")
    add_parser.add_argument("--description", help="Alert description")
    add_parser.add_argument("--disabled", action="store_true", help="Create disabled")

    alerts_subparsers.add_parser("list", help="List alerts")

    update_parser = alerts_subparsers.add_parser("update", help="Update alert")
    update_parser.add_argument("id", help="Alert ID")
    update_parser.add_argument("--from", dest="from_currency")
    update_parser.add_argument("--to", dest="to_currency")
    update_parser.add_argument("--condition", choices=["above", "below", "change"])
    update_parser.add_argument("--target", type=float)
    update_parser.add_argument("--threshold", type=float)
    update_parser.add_argument("--name")
    update_parser.add_argument("--description")

    for action in ("enable", "disable", "delete"):
        action_parser = alerts_subparsers.add_parser(action, help=f"{action.title()} alert")
        action_parser.add_argument("id", help="Alert ID")

    # History commands
    history_parser = subparsers.add_parser("history", help="Triggered alerts")
    history_parser.add_argument("--limit", type=int, default=100)

    rates_parser = subparsers.add_parser("rates", help="Sampled rates")
    rates_parser.add_argument("--from", dest="from_currency")
    rates_parser.add_argument("--to", dest="to_currency")
    rates_parser.add_argument("--limit", type=int, default=1000)

    trend_parser = subparsers.add_parser("trend", help="Trend analysis")
    trend_parser.add_argument("--days", type=int, default=30)
    trend_parser.add_argument("--refresh", action="store_true", help="Recompute")

    # Settings commands
    settings_parser = subparsers.add_parser("settings", help="Alert settings")
    settings_subparsers = settings_parser.add_subparsers(dest="action")
    settings_subparsers.add_parser("show", help="Show settings")
    set_parser = settings_subparsers.add_parser("set", help="Change a setting")
    set_parser.add_argument("key")
    set_parser.add_argument("value")

    # One-off ticks
    subparsers.add_parser("check", help="Run a rate check now")
    summary_parser = subparsers.add_parser("summary", help="Send a summary now")
    summary_parser.add_argument("period", choices=["daily", "weekly"])
    cleanup_parser = subparsers.add_parser("cleanup", help="Prune old history")
    cleanup_parser.add_argument("--days", type=int, help="Retention days")

    return parser


def main(argv: Optional[list[str]] = None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    config = load_config(args.config) if Path(args.config).exists() else AppConfig()
    if args.db:
        config.database.path = args.db

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    try:
        coordinator = build_coordinator(config, db)
        asyncio.run(run_command(coordinator, args))
    except AlertError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
