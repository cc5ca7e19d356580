"""Main entry point for gridtrader.

Venue connectivity lives outside this package, so the command line runs
the strategy against a recorded event file with the paper gateway (or in
shadow mode, where nothing is sent at all).

Usage:
    python -m gridtrader.main --events events.jsonl
    python -m gridtrader.main --config path/to/config.yaml --events events.jsonl --no-delay
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from gridrisk import ConfigError, GridStrategyError, PerformanceStore, TuningStore

from gridtrader.config import load_config
from gridtrader.executor import IntentExecutor
from gridtrader.feed import ReplayFeed
from gridtrader.gateway import PaperGateway
from gridtrader.notifier import Notifier
from gridtrader.runner import GridRunner


def setup_logging(json_file: Optional[str] = None) -> None:
    """Set up logging with both console and optional JSON file output.

    Args:
        json_file: Path to JSON log file (optional).
    """
    # Console handler (human-readable)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_formatter = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(console_handler)

    if json_file:
        try:
            import json

            class JsonFormatter(logging.Formatter):
                def format(self, record):
                    log_dict = {
                        "timestamp": self.formatTime(record),
                        "level": record.levelname,
                        "logger": record.name,
                        "message": record.getMessage(),
                    }
                    if record.exc_info:
                        log_dict["exception"] = self.formatException(record.exc_info)
                    return json.dumps(log_dict)

            file_handler = logging.FileHandler(json_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JsonFormatter())
            root_logger.addHandler(file_handler)
        except Exception as e:
            logging.warning(f"Failed to set up JSON logging: {e}")

    # Reduce noise from libraries
    logging.getLogger("telebot").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


async def main(
    config_path: Optional[str] = None,
    events_path: Optional[str] = None,
    no_delay: bool = False,
) -> int:
    """Main async entry point.

    Args:
        config_path: Path to configuration file.
        events_path: JSON-lines file of recorded events.
        no_delay: Skip the inter-cycle delay (fast replay).

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = load_config(config_path)
        logger.info(f"Loaded configuration for {config.grid.trading_asset}")
    except FileNotFoundError as e:
        logger.error(f"Configuration file not found: {e}")
        return 1
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if events_path is None:
        logger.error("No event source given, use --events")
        return 1

    if not Path(events_path).is_file():
        logger.error(f"Event file not found: {events_path}")
        return 1

    telegram_config = None
    if config.notification and config.notification.telegram:
        telegram_config = config.notification.telegram
    notifier = Notifier(telegram_config)

    store = None
    if config.runner.performance_file:
        store = PerformanceStore(config.runner.performance_file)

    tuning_store = None
    if config.grid.auto_optimize and config.runner.tuning_file:
        tuning_store = TuningStore(config.runner.tuning_file)

    gateway = PaperGateway(account_value=config.grid.total_capital)
    executor = IntentExecutor(gateway, shadow_mode=config.runner.shadow_mode)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info(f"Received signal {sig.name}, initiating shutdown")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    runner = GridRunner(
        params=config.grid.to_params(),
        feed=ReplayFeed(events_path),
        executor=executor,
        runner_config=config.runner,
        notifier=notifier,
        store=store,
        tuning_store=tuning_store,
        shutdown_event=shutdown_event,
        cycle_delay=0.0 if no_delay else None,
    )

    try:
        reason = await runner.run()
    except GridStrategyError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    logger.info(f"Gridtrader stopped: {reason}")
    return 0 if reason is not None and not reason.requires_liquidation else 2


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="Gridtrader - Adaptive grid market maker with risk limits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: conf/gridtrader.yaml)",
    )
    parser.add_argument(
        "--events",
        "-e",
        type=str,
        default=None,
        help="JSON-lines file of recorded ticker and fill events",
    )
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Skip the inter-cycle delay when replaying",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Path to JSON log file (optional)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(json_file=args.log_file)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("gridtrader").setLevel(logging.DEBUG)
        logging.getLogger("gridrisk").setLevel(logging.DEBUG)

    try:
        exit_code = asyncio.run(main(args.config, args.events, args.no_delay))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli()
