"""
Health monitoring for the light-node bot.

Runs alongside the orchestrator and, on a fixed interval, probes every
wallet's node.  An unhealthy node gets a recovery action:

    resync  -> full ``setup_wallet`` pass (default)
    start   -> just ``start``

Each wallet is checked under its record lock, so a probe never
interleaves with the orchestrator driving the same wallet.  A wallet the
orchestrator is busy with is skipped for that tick.  Failures are
isolated per wallet.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from core.config import NodeSettings
from core.exceptions import ConfigurationError
from core.logging_setup import wallet_logger
from core.orchestrator import SessionRecord
from core.utils import StopSignal

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check outcome for one wallet"""
    HEALTHY = "HEALTHY"
    RECOVERED = "RECOVERED"
    UNHEALTHY = "UNHEALTHY"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"


@dataclass
class HealthCheckResult:
    """Result of a health check"""
    address: str
    status: HealthStatus
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    recovery_attempted: bool = False
    error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status in (HealthStatus.HEALTHY, HealthStatus.RECOVERED)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        result = asdict(self)
        result['status'] = self.status.value
        return result


class HealthMonitor:
    """
    Periodic per-wallet health probe with automatic recovery.

    Shares the orchestrator's :class:`SessionRecord` list; it reads the
    list but never adds or removes records.
    """

    def __init__(
        self,
        records: Sequence[SessionRecord],
        settings: NodeSettings,
        stop_signal: Optional[StopSignal] = None,
    ):
        self.records = records
        self.settings = settings
        self.stop_signal = stop_signal or StopSignal()
        self.recovery_mode = settings.health_recovery_mode
        self.interval = settings.health_check_interval_seconds
        self.last_results: Dict[str, HealthCheckResult] = {}

    async def _recover(self, record: SessionRecord) -> bool:
        if self.recovery_mode == "start":
            return await record.session.start()
        return await record.session.setup_wallet()

    async def check_record(self, record: SessionRecord) -> HealthCheckResult:
        """Probe one wallet and recover it if unhealthy.  Never raises."""
        if record.disabled or record.lock.locked():
            return HealthCheckResult(record.address, HealthStatus.SKIPPED)

        log = wallet_logger(__name__, record.address)
        try:
            async with record.lock:
                if await record.session.check_health():
                    return HealthCheckResult(record.address, HealthStatus.HEALTHY)

                log.warning("Node unhealthy, running %s recovery", self.recovery_mode, step="health")
                if self.stop_signal.is_set():
                    return HealthCheckResult(record.address, HealthStatus.UNHEALTHY)

                recovered = await self._recover(record)
                status = HealthStatus.RECOVERED if recovered else HealthStatus.UNHEALTHY
                if recovered:
                    log.info("Node recovered", step="health")
                else:
                    log.error("Recovery failed", step="health")
                return HealthCheckResult(record.address, status, recovery_attempted=True)
        except ConfigurationError as e:
            record.disabled = True
            record.last_error = str(e)
            log.error("Disabling wallet: %s", e, step="health")
            return HealthCheckResult(record.address, HealthStatus.ERROR, error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Health check error: %s", e, step="health")
            return HealthCheckResult(record.address, HealthStatus.ERROR, error=str(e))

    async def check_all(self) -> Dict[str, HealthCheckResult]:
        """Check every wallet once, in order."""
        results: Dict[str, HealthCheckResult] = {}
        for record in list(self.records):
            if self.stop_signal.is_set():
                break
            results[record.address] = await self.check_record(record)

        self.last_results = results
        counts: Dict[str, int] = {}
        for result in results.values():
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        logger.info(f"Health check complete: {counts or 'no wallets checked'}")
        return results

    def unhealthy_addresses(self) -> List[str]:
        return [a for a, r in self.last_results.items() if r.status in (HealthStatus.UNHEALTHY, HealthStatus.ERROR)]

    async def run(self) -> None:
        """Check all wallets every ``health_check_interval_seconds`` until stopped."""
        logger.info(f"Health monitor started (interval {self.interval:.0f}s, recovery={self.recovery_mode})")
        while not await self.stop_signal.sleep(self.interval):
            await self.check_all()
        logger.info("Health monitor stopped.")

    def summary(self) -> Dict[str, Any]:
        return {address: r.to_dict() for address, r in self.last_results.items()}
