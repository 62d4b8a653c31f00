"""Orchestration engine for the light-node bot.

This module drives the outer loop over every wallet:

* One :class:`SessionRecord` per wallet, created at startup and kept for
  the life of the process.
* Per-wallet retry budget with a cancellable inter-attempt delay.
* Proxy selection per attempt (sticky, round-robin or random).
* Per-wallet isolation: one wallet's failure never blocks another's
  progress in the same cycle.
* Optional bounded fan-out across wallets.
* Cycle summaries and a cancellable inter-cycle sleep, so a shutdown
  request does not have to wait out a full hour.

Classes:
    SessionRecord: Mutable per-wallet bookkeeping.
    CycleSummary: Totals for one pass over every wallet.
    Orchestrator: Main loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from core.config import NodeSettings
from core.exceptions import ConfigurationError
from core.logging_setup import wallet_logger
from core.proxy_manager import ProxyManager, ProxyRoute
from core.utils import StopSignal
from core.wallet import WalletIdentity
from nodes.client import ResilientRequestClient
from nodes.session import NodeLifecycleSession, NodeState

logger = logging.getLogger(__name__)

SessionFactory = Callable[[WalletIdentity, Optional[ProxyRoute]], NodeLifecycleSession]

# Per-wallet cycle results
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"
DISABLED = "disabled"


@dataclass
class SessionRecord:
    """Bookkeeping for one wallet.

    Mutated only by the :class:`Orchestrator` and the health monitor,
    always while holding :attr:`lock`.

    Attributes:
        identity: Wallet being automated.
        session: Its :class:`NodeLifecycleSession`.
        index: Position in the wallet list (drives proxy rotation).
        proxy: Assigned (sticky) route, if any.
        consecutive_failures: Cycles in a row that ended without success.
        last_seen: Unix time of the last successful setup pass.
        last_error: Description of the most recent failure.
        disabled: Set on a configuration error; never cleared.
    """

    identity: WalletIdentity
    session: NodeLifecycleSession
    index: int = 0
    proxy: Optional[ProxyRoute] = None
    consecutive_failures: int = 0
    last_seen: Optional[float] = None
    last_error: Optional[str] = None
    disabled: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def address(self) -> str:
        return self.identity.address

    @property
    def state(self) -> NodeState:
        return self.session.state


@dataclass
class CycleSummary:
    """Totals for one orchestration cycle."""

    cycle: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    disabled: int = 0
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped + self.disabled

    def add(self, result: str) -> None:
        setattr(self, result, getattr(self, result) + 1)

    def to_dict(self) -> Dict[str, float]:
        return {
            "cycle": self.cycle,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "disabled": self.disabled,
            "duration": round(self.duration, 2),
        }


class Orchestrator:
    """
    Drive every wallet through repeated setup cycles.

    Each cycle visits every wallet, runs ``setup_wallet`` with a bounded
    retry budget and moves on regardless of the outcome.  Between cycles
    the loop sleeps ``cycle_interval_seconds`` on the shared stop signal.
    """

    def __init__(
        self,
        settings: NodeSettings,
        identities: Sequence[WalletIdentity] = (),
        proxy_manager: Optional[ProxyManager] = None,
        stop_signal: Optional[StopSignal] = None,
        session_factory: Optional[SessionFactory] = None,
        explicit_proxies: Optional[Sequence[Optional[str]]] = None,
    ):
        """
        Args:
            settings: Global configuration.
            identities: Wallets to automate, in order.
            proxy_manager: Route pool; ``None`` means direct connections.
            stop_signal: Shared shutdown flag (created if omitted).
            session_factory: Builds a session for ``(identity, route)``.
                Defaults to a real client-backed session.
            explicit_proxies: Per-wallet proxy strings, parallel to
                *identities*; they override the pool assignment.
        """
        self.settings = settings
        self.proxy_manager = proxy_manager
        self.stop_signal = stop_signal or StopSignal()
        self.session_factory = session_factory or self._default_session
        self.cycle_count = 0
        self.last_summary: Optional[CycleSummary] = None
        self.records: List[SessionRecord] = self.build_records(identities, explicit_proxies)

    def _default_session(
        self, identity: WalletIdentity, route: Optional[ProxyRoute],
    ) -> NodeLifecycleSession:
        client = ResilientRequestClient(
            self.settings, proxy=route, stop_signal=self.stop_signal,
        )
        return NodeLifecycleSession(
            identity, client, self.settings, stop_signal=self.stop_signal,
        )

    def build_records(
        self,
        identities: Sequence[WalletIdentity],
        explicit_proxies: Optional[Sequence[Optional[str]]] = None,
    ) -> List[SessionRecord]:
        """Create one :class:`SessionRecord` per identity."""
        records = []
        for index, identity in enumerate(identities):
            explicit = None
            if explicit_proxies and index < len(explicit_proxies):
                explicit = explicit_proxies[index]
            route = self.proxy_manager.assign(index, explicit) if self.proxy_manager else None
            records.append(SessionRecord(
                identity=identity,
                session=self.session_factory(identity, route),
                index=index,
                proxy=route,
            ))
            logger.debug(
                "Wallet %d %s -> %s", index + 1, identity.address,
                route.masked() if route else "direct",
            )
        return records

    def active_records(self) -> List[SessionRecord]:
        return [r for r in self.records if not r.disabled]

    def _route_for(self, record: SessionRecord, attempt: int) -> Optional[ProxyRoute]:
        if self.proxy_manager is None:
            return record.proxy
        return self.proxy_manager.select(record.index, attempt, record.proxy)

    async def process_record(self, record: SessionRecord) -> str:
        """Run ``setup_wallet`` for one wallet under its retry budget.

        Returns:
            One of ``succeeded``, ``failed``, ``skipped`` or ``disabled``.
        """
        if record.disabled:
            return DISABLED

        log = wallet_logger(__name__, record.address)
        budget = self.settings.max_attempts_per_wallet

        async with record.lock:
            for attempt in range(budget):
                if self.stop_signal.is_set():
                    return SKIPPED

                route = self._route_for(record, attempt)
                try:
                    await record.session.client.set_proxy(route)
                    log.info(
                        "Setup attempt %d/%d via %s", attempt + 1, budget,
                        route.masked() if route else "direct", step="cycle",
                    )
                    ok = await record.session.setup_wallet()
                except ConfigurationError as e:
                    record.disabled = True
                    record.last_error = str(e)
                    log.error("Disabling wallet: %s", e, step="cycle")
                    return DISABLED
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    ok = False
                    record.last_error = f"{type(e).__name__}: {e}"
                    log.exception("Unexpected error during setup: %s", e, step="cycle")

                if ok:
                    record.consecutive_failures = 0
                    record.last_seen = time.time()
                    record.last_error = None
                    if self.proxy_manager:
                        self.proxy_manager.record_success(route)
                    log.info("Wallet setup complete", step="cycle")
                    return SUCCEEDED

                if self.proxy_manager:
                    self.proxy_manager.record_failure(route)
                if record.last_error is None:
                    record.last_error = "node not running after setup"

                if attempt < budget - 1:
                    log.warning(
                        "Setup failed, retrying in %.0fs (%d/%d)",
                        self.settings.wallet_retry_delay_seconds, attempt + 1, budget,
                        step="cycle",
                    )
                    if await self.stop_signal.sleep(self.settings.wallet_retry_delay_seconds):
                        # Shutdown is not a wallet failure
                        log.info("Shutdown requested, abandoning retries", step="cycle")
                        return SKIPPED

        record.consecutive_failures += 1
        log.error(
            "Wallet setup failed (%d consecutive cycles)",
            record.consecutive_failures, step="cycle",
        )
        return FAILED

    async def _process_guarded(self, record: SessionRecord) -> str:
        try:
            return await self.process_record(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unhandled error for {record.address}: {e}")
            return FAILED

    async def run_cycle(self) -> CycleSummary:
        """Visit every wallet once and return the cycle totals."""
        self.cycle_count += 1
        summary = CycleSummary(cycle=self.cycle_count)
        started = time.monotonic()
        logger.info(f"Starting cycle {self.cycle_count} over {len(self.records)} wallets")

        if self.settings.max_concurrent_wallets > 1:
            await self._run_concurrent(summary)
        else:
            await self._run_sequential(summary)

        summary.duration = time.monotonic() - started
        self.last_summary = summary
        logger.info(
            "Cycle %d complete in %.1fs: %d succeeded, %d failed, %d skipped, %d disabled",
            summary.cycle, summary.duration, summary.succeeded,
            summary.failed, summary.skipped, summary.disabled,
        )
        return summary

    async def _run_sequential(self, summary: CycleSummary) -> None:
        for position, record in enumerate(self.records):
            if self.stop_signal.is_set():
                summary.add(DISABLED if record.disabled else SKIPPED)
                continue
            result = await self._process_guarded(record)
            summary.add(result)

            is_last = position == len(self.records) - 1
            if not is_last and result != DISABLED and self.settings.inter_wallet_delay_seconds:
                await self.stop_signal.sleep(self.settings.inter_wallet_delay_seconds)

    async def _run_concurrent(self, summary: CycleSummary) -> None:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_wallets)

        async def bounded(record: SessionRecord) -> str:
            async with semaphore:
                if self.stop_signal.is_set():
                    return DISABLED if record.disabled else SKIPPED
                return await self._process_guarded(record)

        results = await asyncio.gather(*(bounded(r) for r in self.records))
        for result in results:
            summary.add(result)

    async def run_forever(self, once: bool = False) -> None:
        """Run cycles until stopped.

        Args:
            once: Run a single cycle and return.
        """
        logger.info("Orchestrator loop started.")
        while not self.stop_signal.is_set():
            await self.run_cycle()
            if once:
                break
            if not self.active_records():
                logger.error("All wallets are disabled; stopping.")
                break
            logger.info(
                "Next cycle in %.0f minutes", self.settings.cycle_interval_seconds / 60
            )
            if await self.stop_signal.sleep(self.settings.cycle_interval_seconds):
                break
        logger.info("Orchestrator loop stopped.")

    def stop(self) -> None:
        """Stop scheduling new work.  In-flight requests may be abandoned."""
        self.stop_signal.set()

    async def close(self) -> None:
        """Close every session's transport."""
        for record in self.records:
            try:
                await record.session.close()
            except Exception as e:
                logger.warning(f"Cleanup error for {record.address}: {e}")

    async def map_sessions(
        self, func: Callable[[NodeLifecycleSession], Awaitable[Dict]],
    ) -> List[Dict]:
        """Apply a read-only coroutine to every active session in order."""
        results = []
        for record in self.active_records():
            async with record.lock:
                results.append(await func(record.session))
        return results
