"""
Main application entry point.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

from src.config import AppConfig
from src.coordinator import Coordinator
from src.data.fetcher import create_rate_source
from src.database.connection import Database
from src.database.store import SQLiteStore
from src.notifiers.base import Notifier, NotifierFactory, NotificationSink
from src.scheduling.channel import TickChannel
from src.scheduling.scheduler import Scheduler

logger = logging.getLogger(__name__)


def make_clock(timezone: str) -> Callable[[], datetime]:
    """Wall-clock time in the configured timezone, as naive local datetimes."""
    zone = ZoneInfo(timezone)
    return lambda: datetime.now(zone).replace(tzinfo=None)


def build_notifiers(config: AppConfig, dry_run: bool = False) -> list[Notifier]:
    """Create notifiers for every configured channel; the log notifier is always on."""
    notifiers = [NotifierFactory.create({"type": "log"})]
    if dry_run:
        return notifiers

    discord = config.notifications.discord
    if discord.webhook_url:
        notifiers.append(
            NotifierFactory.create(
                {
                    "type": "discord",
                    "webhook_url": discord.webhook_url,
                    "mention_on_alert": discord.mention_on_alert,
                }
            )
        )

    email = config.notifications.email
    if email.smtp_user and email.to_addresses:
        notifiers.append(
            NotifierFactory.create(
                {
                    "type": "email",
                    "smtp_host": email.smtp_host,
                    "smtp_port": email.smtp_port,
                    "smtp_user": email.smtp_user,
                    "smtp_password": email.smtp_password or "",
                    "from_address": email.from_address or email.smtp_user,
                    "to_addresses": email.to_addresses,
                    "timeout": email.timeout_seconds,
                }
            )
        )

    return notifiers


def build_coordinator(
    config: AppConfig,
    db: Database,
    scheduler: Optional[Scheduler] = None,
    dry_run: bool = False,
) -> Coordinator:
    """Wire a coordinator from configuration."""
    source_config = config.rate_source
    rate_source = create_rate_source(
        source_config.provider,
        api_key=source_config.api_key,
        timeout=source_config.timeout_seconds,
        fallback_order=source_config.fallback_order,
    )
    return Coordinator.from_store(
        SQLiteStore(db),
        rate_source=rate_source,
        sink=NotificationSink(build_notifiers(config, dry_run=dry_run)),
        max_alerts=config.limits.max_alerts,
        max_rate_history=config.limits.max_rate_history,
        max_alert_history=config.limits.max_alert_history,
        clock=make_clock(config.schedule.timezone),
        scheduler=scheduler,
        fetch_timeout=source_config.timeout_seconds,
        retention_days=config.limits.retention_days,
    )


async def serve(config: AppConfig, dry_run: bool = False) -> None:
    """Run the scheduler and coordinator until cancelled."""
    db = Database(config.database.path)
    db.initialize()

    channel = TickChannel()
    scheduler = Scheduler(channel, timezone=config.schedule.timezone)
    coordinator = build_coordinator(config, db, scheduler=scheduler, dry_run=dry_run)

    logger.info("Initializing rate alerts service")
    scheduler.start()
    scheduler.configure(await coordinator.get_settings())
    try:
        await coordinator.run(channel)
    finally:
        scheduler.shutdown()
        db.close()
        logger.info("Rate alerts service stopped")


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="RateWatch exchange rate alert service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Run without sending notifications"
    )

    args = parser.parse_args()

    # Load config
    from src.config import load_config

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else config.advanced.log_level
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.dry_run:
        logger.info("Dry run mode - notifications are only logged")

    try:
        asyncio.run(serve(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
