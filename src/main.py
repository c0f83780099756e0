import argparse
import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from src.config import (
    LOG_LEVEL,
    get_config,
    get_engine_name,
    get_engine_version,
    get_scanner_config,
    get_provider_config,
    get_notification_config,
    get_quote_stream_config,
    get_healthcheck_config,
    get_database_cleanup_config,
)
from src.utils.logging import setup_logging
from src.datafeeds.provider import MarketDataProvider, build_provider
from src.datafeeds.quote_stream import QuoteStream
from src.notif.channels import build_channels
from src.notif.dispatcher import NotificationDispatcher
from src.notif.inbox import NotificationInbox
from src.rules.lifecycle import RuleLifecycleManager
from src.rules.scanner import ScannerContext, TriggerScanner
from src.storage.init_db import init_db
from src.storage.cleanup import run_cleanup, schedule_cleanup_task
from src.utils.healthcheck import HealthcheckServer


# Global shutdown event
shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """Handle SIGTERM and SIGINT for graceful shutdown."""
    logger.info(f"Received signal {sig}, initiating graceful shutdown...")
    shutdown_event.set()


@dataclass
class EngineServices:
    """Everything the runtime wires together; built once per process."""
    lifecycle: RuleLifecycleManager
    inbox: NotificationInbox
    dispatcher: NotificationDispatcher
    provider: MarketDataProvider
    scanner: TriggerScanner


def build_services(dry_run: bool = False) -> EngineServices:
    scanner_cfg = get_scanner_config()
    notif_cfg = get_notification_config()

    lifecycle = RuleLifecycleManager()
    inbox = NotificationInbox()
    dispatcher = NotificationDispatcher(
        inbox=inbox,
        channels=build_channels(dry_run=dry_run),
        default_priority=notif_cfg['default_priority'],
        expires_after_days=notif_cfg['expires_after_days'],
    )
    provider = build_provider(get_provider_config())
    scanner = TriggerScanner(
        lifecycle=lifecycle,
        provider=provider,
        handler=dispatcher,
        context=ScannerContext(),
        interval=scanner_cfg['interval_seconds'],
        symbol_timeout=scanner_cfg['symbol_timeout_seconds'],
        max_concurrent=scanner_cfg['max_concurrent_symbols'],
        rearm_on_sweep=bool(scanner_cfg['rearm_on_sweep']),
    )
    return EngineServices(lifecycle, inbox, dispatcher, provider, scanner)


def startup_sequence() -> bool:
    """
    Execute engine startup sequence:
    1. Load configuration
    2. Initialize database
    """
    logger.info("=" * 60)
    logger.info(f"Starting {get_engine_name()} v{get_engine_version()}")
    logger.info("=" * 60)

    try:
        logger.info("Loading configuration...")
        config = get_config()
        logger.info(f"Config loaded from {config.config_path}")

        logger.info("Initializing database...")
        init_db()

        logger.info("Startup sequence completed successfully")
        return True

    except Exception as e:
        logger.exception(f"Startup sequence failed: {e}")
        return False


async def shutdown_sequence(services: EngineServices, stream: Optional[QuoteStream] = None):
    """
    Execute engine shutdown sequence:
    1. Stop scanner and quote stream
    2. Close provider HTTP session
    """
    logger.info("Starting shutdown sequence...")

    try:
        await services.scanner.stop()
        if stream is not None:
            await stream.stop()
        await services.provider.close()
        logger.info("Shutdown sequence completed")

    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


async def run_engine(dry_run: bool = False):
    """
    Main runtime - runs all async tasks in parallel.
    """
    if not startup_sequence():
        logger.error("Startup failed, exiting...")
        return

    services = build_services(dry_run=dry_run)
    scanner = services.scanner

    tasks = [
        asyncio.create_task(scanner.run(), name="TriggerScanner"),
        asyncio.create_task(shutdown_event.wait(), name="ShutdownWatcher"),
    ]

    if get_database_cleanup_config()["enabled"]:
        tasks.append(asyncio.create_task(
            schedule_cleanup_task(services.lifecycle, services.inbox), name="DBCleanup"
        ))

    stream: Optional[QuoteStream] = None
    stream_cfg = get_quote_stream_config()
    if stream_cfg['enabled'] and stream_cfg['symbols']:
        stream = QuoteStream(
            symbols=stream_cfg['symbols'],
            on_quote=scanner.sweep_symbol,
            base_url=stream_cfg['url'],
        )
        tasks.append(asyncio.create_task(stream.run(), name="QuoteStream"))

    health_cfg = get_healthcheck_config()
    if health_cfg['enabled']:
        healthcheck = HealthcheckServer(host=health_cfg['host'], port=health_cfg['port'])
        healthcheck.register("scanner", scanner.status)
        healthcheck.register("dispatcher", lambda: {
            "notifications_created": services.dispatcher.notifications_created,
            "deliveries_failed": services.dispatcher.deliveries_failed,
            "quote_stream_connected": bool(stream and stream.connected),
        })
        tasks.append(asyncio.create_task(healthcheck.run(), name="Healthcheck"))

    logger.info(f"Starting engine tasks: {', '.join(t.get_name() for t in tasks)}")

    try:
        # Wait for shutdown signal
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        logger.info("Shutdown signal received, stopping tasks...")

        for task in pending:
            task.cancel()

        await asyncio.gather(*pending, return_exceptions=True)

    except Exception as e:
        logger.exception(f"Error in main engine runtime: {e}")

    finally:
        await shutdown_sequence(services, stream)


async def sweep_once(symbol: Optional[str] = None, dry_run: bool = False):
    """One full sweep (or one symbol) and exit."""
    services = build_services(dry_run=dry_run)
    try:
        if symbol:
            result = await services.scanner.sweep_symbol(symbol)
        else:
            result = await services.scanner.sweep_all()
        logger.info(
            f"Sweep result: evaluated={result.evaluated} triggers={len(result.events)} "
            f"failed={result.failed_symbols}"
        )
    finally:
        await services.provider.close()


def main():
    parser = argparse.ArgumentParser(description="Alert rule evaluation and notification engine")
    parser.add_argument("--dry-run", action="store_true", help="Dry-run mode (log-only delivery channels)")
    parser.add_argument("--init-db", action="store_true", help="Initialize database tables")
    parser.add_argument("--sweep-once", action="store_true", help="Run a single full sweep and exit")
    parser.add_argument("--symbol", help="Run a single on-demand sweep for one symbol and exit")
    parser.add_argument("--cleanup", action="store_true", help="Run retention cleanup once and exit")
    args = parser.parse_args()

    # Setup logging
    setup_logging(LOG_LEVEL)

    if args.init_db:
        init_db()
        logger.info("Database initialized")
        return

    if args.cleanup:
        init_db()
        result = run_cleanup(RuleLifecycleManager(), NotificationInbox())
        logger.info(f"Cleanup result: {result}")
        return

    if args.sweep_once or args.symbol:
        init_db()
        asyncio.run(sweep_once(symbol=args.symbol, dry_run=args.dry_run))
        return

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Engine starting in {'dry-run' if args.dry_run else 'live'} mode")

    try:
        asyncio.run(run_engine(dry_run=args.dry_run))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down...")
    except Exception as e:
        logger.exception(f"Unhandled exception in main: {e}")
    finally:
        logger.info("Engine stopped")


if __name__ == "__main__":
    main()
