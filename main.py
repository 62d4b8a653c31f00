"""
Light Node Bot - Main Entry Point

Loads wallet identities and proxies, then runs the orchestration cycle
(claim-if-eligible, ensure-running) alongside the health monitor until
SIGINT/SIGTERM.

Usage:
    python main.py                 # Run continuously
    python main.py --once          # Run a single cycle and exit
    python main.py --status        # Print a read-only status table
    python main.py --generate 5    # Create 5 new wallets in the wallets file
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Tuple

from pydantic import ValidationError

from core.config import NodeSettings
from core.dashboard import show_status
from core.exceptions import ConfigurationError
from core.health_monitor import HealthMonitor
from core.logging_setup import setup_logging
from core.orchestrator import Orchestrator
from core.proxy_manager import ProxyManager
from core.utils import StopSignal, safe_json_read, safe_json_write
from core.wallet import WalletIdentity

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Light Node Bot - node automation for multiple wallets")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--status", action="store_true", help="Print node status for every wallet and exit")
    parser.add_argument("--generate", type=int, metavar="N", help="Generate N new wallets and exit")
    parser.add_argument("--invite-code", type=str, help="Override the invite code used for registration")
    parser.add_argument("--no-health", action="store_true", help="Disable the background health monitor")
    return parser.parse_args(argv)


def load_identities(settings: NodeSettings) -> Tuple[List[WalletIdentity], List[Optional[str]]]:
    """Build identities from the enabled wallet records.

    Invalid records are logged and skipped.

    Returns:
        Identities and their explicit proxy strings (parallel lists).
    """
    identities: List[WalletIdentity] = []
    proxies: List[Optional[str]] = []
    for position, record in enumerate(settings.enabled_wallets(), 1):
        try:
            identity = WalletIdentity.from_record(record)
        except ConfigurationError as e:
            logger.error(f"Skipping wallet #{position}: {e}")
            continue
        identities.append(identity)
        proxies.append(record.proxy)
    return identities, proxies


def generate_wallets(settings: NodeSettings, count: int) -> List[WalletIdentity]:
    """Create *count* fresh identities and append them to the wallets file."""
    if count < 1:
        raise ConfigurationError("--generate needs a positive count")

    existing = safe_json_read(settings.wallets_file)
    if existing is None:
        entries = []
    elif isinstance(existing, dict):
        entries = existing.get("wallets", [])
    else:
        entries = existing
    if not isinstance(entries, list):
        raise ConfigurationError(f"{settings.wallets_file} does not contain a wallet list")

    created = [WalletIdentity.generate() for _ in range(count)]
    entries.extend(identity.to_record().model_dump(exclude_none=True) for identity in created)

    if isinstance(existing, dict):
        existing["wallets"] = entries
        safe_json_write(settings.wallets_file, existing)
    else:
        safe_json_write(settings.wallets_file, entries)

    for identity in created:
        logger.info(f"Generated wallet {identity.address}")
    logger.info(f"Saved {count} new wallets to {settings.wallets_file}")
    return created


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution loop.

    1. Parses command line arguments and loads settings.
    2. Sets up logging.
    3. Loads wallet identities and the proxy pool.
    4. Runs the Orchestrator (and HealthMonitor) until a stop signal.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)

    try:
        settings = NodeSettings()
    except ValidationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.invite_code:
        settings.invite_code = args.invite_code

    setup_logging(settings.log_level, settings.log_file)

    if args.generate is not None:
        try:
            generate_wallets(settings, args.generate)
        except (ConfigurationError, OSError) as e:
            logger.error(f"Wallet generation failed: {e}")
            return 1
        return 0

    identities, explicit_proxies = load_identities(settings)
    if not identities:
        logger.error(
            f"No usable wallets found. Add records to {settings.wallets_file} "
            f"or run with --generate N."
        )
        return 1
    logger.info(f"Loaded {len(identities)} wallets")

    proxy_manager = ProxyManager(settings)
    if not proxy_manager.routes:
        logger.info("No proxies loaded; all wallets will connect directly.")

    stop_signal = StopSignal()
    orchestrator = Orchestrator(
        settings,
        identities,
        proxy_manager=proxy_manager,
        stop_signal=stop_signal,
        explicit_proxies=explicit_proxies,
    )

    def handle_signal():
        logger.info("Received shutdown signal. Initiating graceful shutdown...")
        orchestrator.stop()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

    try:
        if args.status:
            await show_status(orchestrator)
            return 0

        tasks = [asyncio.create_task(orchestrator.run_forever(once=args.once))]
        monitor_task = None
        if not args.once and not args.no_health:
            monitor = HealthMonitor(orchestrator.records, settings, stop_signal)
            monitor_task = asyncio.create_task(monitor.run())
            tasks.append(monitor_task)

        await tasks[0]
        if monitor_task is not None:
            stop_signal.set()
            await monitor_task
    except KeyboardInterrupt:
        logger.info("Stopping (KeyboardInterrupt)...")
    finally:
        logger.info("Cleaning up resources...")
        orchestrator.stop()
        await orchestrator.close()

    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
