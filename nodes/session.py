"""Per-wallet light-node lifecycle session.

:class:`NodeLifecycleSession` drives one wallet through the remote
protocol: registration, start (with verified read-back), stop, daily
point claims and health probes.  It keeps a local :class:`NodeState`
mirror of the remote node, which is advisory only -- the remote service
is authoritative and the state is revalidated every cycle.

State machine::

    UNREGISTERED --ensure_registration--> STOPPED
    STOPPED      --start (verified)-----> RUNNING
    RUNNING      --stop-----------------> STOPPED
    check_status resyncs STOPPED <-> RUNNING; it never goes back to
    UNREGISTERED (a 404 there is a registration race, not a removal).

Every signed call embeds the wallet address and a millisecond timestamp
in its challenge message.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from core.config import NodeSettings
from core.exceptions import (
    ConfigurationError,
    ProtocolMismatchError,
    RegistrationError,
    TransientNetworkError,
)
from core.logging_setup import wallet_logger
from core.utils import StopSignal, interruptible_sleep
from core.wallet import WalletIdentity
from nodes.client import OutcomeKind, RequestOutcome, ResilientRequestClient

logger = logging.getLogger(__name__)

START_ACK_MESSAGE = "node action executed successfully"


class NodeState(Enum):
    """Local mirror of the remote node state."""
    UNREGISTERED = "unregistered"
    STOPPED = "registered_stopped"
    RUNNING = "registered_running"


@dataclass(frozen=True)
class PointsSnapshot:
    """Points and referral data read from the wallet-details endpoint.

    Never cached beyond one orchestration cycle.
    """

    points: int = 0
    referral_code: Optional[str] = None
    referral_count: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


def _data_section(payload: Any) -> Dict[str, Any]:
    """Return ``payload["data"]`` or raise if the shape is wrong."""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise ProtocolMismatchError(f"Expected an object with a 'data' object, got {payload!r}")
    return payload["data"]


class NodeLifecycleSession:
    """Drive one wallet's light node on the remote service.

    Attributes:
        identity: The wallet being automated (owned exclusively).
        client: Request layer used for every remote call.
        state: Local :class:`NodeState` mirror.
    """

    def __init__(
        self,
        identity: WalletIdentity,
        client: ResilientRequestClient,
        settings: NodeSettings,
        invite_code: Optional[str] = None,
        stop_signal: Optional[StopSignal] = None,
    ) -> None:
        self.identity = identity
        self.client = client
        self.settings = settings
        self.invite_code = invite_code or settings.invite_code
        self.stop_signal = stop_signal
        self.base_url = settings.api_base_url.rstrip("/")
        self.state = NodeState.UNREGISTERED
        self.log = wallet_logger(__name__, identity.address)

    @property
    def address(self) -> str:
        return self.identity.address

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _signed_body(self, message_template: str) -> Dict[str, Any]:
        """Sign ``message_template`` for this wallet at the current time.

        The template receives ``address`` and ``timestamp`` fields.
        """
        timestamp = _now_ms()
        message = message_template.format(address=self.address, timestamp=timestamp)
        return {"sign": self.identity.sign(message), "timestamp": timestamp}

    async def _request(self, step: str, method: str, path: str,
                       body: Optional[Dict[str, Any]] = None, **kwargs: Any) -> RequestOutcome:
        """Execute a call, logging exhausted retries against *step*.

        Extra keyword arguments go to ``client.execute``.
        """
        outcome = await self.client.execute(method, self._url(path), body, **kwargs)
        if outcome.kind in (OutcomeKind.EXHAUSTED_RETRIES, OutcomeKind.RATE_LIMITED):
            self.log.warning("Request gave up: %s", outcome.reason, step=step)
        return outcome

    async def _sleep(self, seconds: float) -> bool:
        return await interruptible_sleep(seconds, self.stop_signal)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def fetch_wallet_details(self) -> Optional[Dict[str, Any]]:
        """Read ``referral/wallet-details``; ``None`` when unavailable."""
        outcome = await self._request(
            "wallet_details", "GET", f"referral/wallet-details/{self.address}",
        )
        if outcome.kind is not OutcomeKind.SUCCESS:
            return None
        try:
            return _data_section(outcome.payload)
        except ProtocolMismatchError as exc:
            self.log.warning("Unexpected wallet details: %s", exc, step="wallet_details")
            return None

    async def verify_invite(self, invite_code: str) -> bool:
        """Ask the service whether *invite_code* is valid."""
        outcome = await self._request(
            "verify_invite", "POST", "referral/verify-referral-code",
            {"invite_code": invite_code},
        )
        if outcome.kind is not OutcomeKind.SUCCESS:
            return False
        try:
            valid = _data_section(outcome.payload).get("valid") is True
        except ProtocolMismatchError as exc:
            self.log.warning("%s", exc, step="verify_invite")
            return False
        if valid:
            self.log.info("Invite code %s is valid", invite_code, step="verify_invite")
        return valid

    async def register_wallet(self, invite_code: str) -> bool:
        """Bind this wallet to *invite_code*."""
        outcome = await self._request(
            "register", "POST", f"referral/register-wallet/{invite_code}",
            {"walletAddress": self.address},
        )
        if outcome.kind is OutcomeKind.SUCCESS and outcome.payload:
            self.log.info("Wallet successfully registered", step="register")
            return True
        self.log.error("Failed to register wallet (%s)", outcome.kind.value, step="register")
        return False

    async def ensure_registration(self, invite_code: Optional[str] = None) -> None:
        """Make sure the wallet is registered with the service.

        A wallet whose details already carry a referral code is treated
        as registered (idempotent no-op).

        Raises:
            RegistrationError: Invalid invite code or the registration
                call did not return a success payload.
        """
        code = invite_code or self.invite_code
        details = await self.fetch_wallet_details()
        if details and details.get("referralCode"):
            if self.state is NodeState.UNREGISTERED:
                self.state = NodeState.STOPPED
            return

        self.log.info("Wallet not registered, attempting registration...", step="register")
        if not await self.verify_invite(code):
            raise RegistrationError(f"Invalid invite code: {code}")
        if not await self.register_wallet(code):
            raise RegistrationError(f"Registration failed for {self.address}")

        if self.state is NodeState.UNREGISTERED:
            self.state = NodeState.STOPPED

    # ------------------------------------------------------------------
    # Status / points / health
    # ------------------------------------------------------------------

    async def check_status(self, register_on_missing: bool = True) -> bool:
        """Read the remote node status.

        Args:
            register_on_missing: On a 404, fire a best-effort registration
                (result ignored).  Disable to keep the read side-effect free.

        Returns:
            ``True`` if the node reports a start timestamp.
        """
        outcome = await self._request(
            "status", "GET", f"light-node/node-status/{self.address}",
        )

        if outcome.kind is OutcomeKind.NOT_FOUND:
            self.log.info("Node not found for this wallet", step="status")
            if register_on_missing:
                # Best effort; register_wallet logs its own failure
                await self.register_wallet(self.invite_code)
            return False

        if outcome.kind is not OutcomeKind.SUCCESS:
            # Not a verified absence; leave the local mirror alone
            return False

        try:
            data = _data_section(outcome.payload)
        except ProtocolMismatchError as exc:
            self.log.warning("%s", exc, step="status")
            return False

        if data.get("startTimestamp") is not None:
            self.state = NodeState.RUNNING
            self.log.info("Node running since %s", data["startTimestamp"], step="status")
            return True

        if self.state is NodeState.RUNNING:
            self.state = NodeState.STOPPED
        self.log.info("Node not running", step="status")
        return False

    async def get_points(self) -> PointsSnapshot:
        """Read points and referral data (zeros when unavailable)."""
        details = await self.fetch_wallet_details()
        if details is None:
            self.log.error("Failed to check total points", step="points")
            return PointsSnapshot()

        try:
            points = max(0, int(details.get("nodePoints") or 0))
        except (TypeError, ValueError):
            points = 0
        referrals = details.get("referrals") or []
        snapshot = PointsSnapshot(
            points=points,
            referral_code=details.get("referralCode") or None,
            referral_count=len(referrals) if isinstance(referrals, list) else 0,
        )
        self.log.info("Total points: %d", snapshot.points, step="points")
        return snapshot

    async def check_health(self) -> bool:
        """Lightweight probe.  Never raises; errors mean unhealthy.

        Capped at ``health_probe_max_attempts`` so a failing endpoint
        cannot hold the wallet's record lock through the full retry policy.
        """
        try:
            outcome = await self._request(
                "health", "GET", f"light-node/health/{self.address}",
                max_attempts=self.settings.health_probe_max_attempts,
            )
            if outcome.kind is not OutcomeKind.SUCCESS:
                return False
            payload = outcome.payload
            return isinstance(payload, dict) and payload.get("status") == "healthy"
        except Exception as exc:
            self.log.error("Failed to check node health: %s", exc, step="health")
            return False

    # ------------------------------------------------------------------
    # Signed actions
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start the node and verify it through a status read.

        The write acknowledgement is not immediately consistent with the
        read path, so after an acknowledged start the session waits the
        settle delay and requires :meth:`check_status` to confirm a start
        timestamp.  Retried up to ``start_max_attempts`` times.

        Returns:
            ``True`` only when a post-settle status read confirmed the
            node is running.

        Raises:
            ConfigurationError: Signing failed.
        """
        attempts = self.settings.start_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                body = self._signed_body("Node activation request for {address} at {timestamp}")
                outcome = await self._request(
                    "start", "POST", f"light-node/node-action/{self.address}/start", body,
                )

                acknowledged = outcome.kind is OutcomeKind.ALREADY_DONE or (
                    outcome.kind is OutcomeKind.SUCCESS
                    and isinstance(outcome.payload, dict)
                    and str(outcome.payload.get("message", "")).lower() == START_ACK_MESSAGE
                )
                if acknowledged:
                    if await self._sleep(self.settings.settle_delay_seconds):
                        return False
                    if await self.check_status():
                        self.log.info("Node connected and verified running", step="start")
                        return True
            except ConfigurationError:
                raise
            except Exception as exc:
                self.log.error("Start attempt %d failed: %s", attempt, exc, step="start")

            if attempt < attempts:
                self.log.warning("Start attempt %d/%d failed, retrying...", attempt, attempts, step="start")
                if await self._sleep(self.settings.start_retry_delay_seconds):
                    return False

        self.log.error("Could not start node after %d attempts", attempts, step="start")
        return False

    async def stop(self) -> bool:
        """Stop the node.

        Success requires a response whose ``message`` mentions success;
        a 405 counts as already stopped.

        Raises:
            ConfigurationError: Signing failed.
        """
        body = self._signed_body("Node deactivation request for {address} at {timestamp}")
        try:
            outcome = await self._request(
                "stop", "POST", f"light-node/node-action/{self.address}/stop", body,
                raise_on_exhausted=True,
            )
            if outcome.kind is OutcomeKind.ALREADY_DONE:
                self.state = NodeState.STOPPED
                self.log.info("Node already stopped", step="stop")
                return True
            if outcome.kind is not OutcomeKind.SUCCESS:
                return False
            payload = outcome.payload
            if not isinstance(payload, dict) or "success" not in str(payload.get("message", "")).lower():
                raise ProtocolMismatchError(f"Unexpected stop response: {payload!r}")
        except (ProtocolMismatchError, TransientNetworkError) as exc:
            self.log.error("Error stopping node: %s", exc, step="stop")
            return False

        self.state = NodeState.STOPPED
        self.log.info("Node stopped successfully", step="stop")
        return True

    async def claim_points(self) -> bool:
        """Claim the daily node points.

        A 405 means the points were already claimed today and counts as
        success.

        Raises:
            ConfigurationError: Signing failed.
        """
        body = self._signed_body("I am claiming my daily node point for {address} at {timestamp}")
        body["walletAddress"] = self.address
        try:
            outcome = await self._request(
                "claim", "POST", "light-node/claim-node-points", body,
                raise_on_exhausted=True,
            )
            if outcome.kind is OutcomeKind.ALREADY_DONE:
                self.log.info("Points already claimed today", step="claim")
                return True
            if outcome.kind is not OutcomeKind.SUCCESS:
                return False
            if not isinstance(outcome.payload, dict):
                raise ProtocolMismatchError(f"Unexpected claim response: {outcome.payload!r}")
        except (ProtocolMismatchError, TransientNetworkError) as exc:
            self.log.error("Failed to claim points: %s", exc, step="claim")
            return False

        self.log.info("Daily claim result: %s", outcome.payload.get("message", "ok"), step="claim")
        return True

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    async def setup_wallet(self) -> bool:
        """One full pass for this wallet.

        ensure_registration -> check_status -> (running and points over
        threshold: stop then claim) -> re-read status -> start if not
        running.  Registration failure aborts the pass; start, stop and
        claim failures are logged and the pass carries on.

        Returns:
            ``True`` if the wallet is registered and the node is running
            at the end of the pass.

        Raises:
            ConfigurationError: Signing failed; the wallet is unusable.
        """
        try:
            await self.ensure_registration()
        except RegistrationError as exc:
            self.log.error("Wallet setup failed: %s", exc, step="register")
            return False

        running = await self.check_status()

        if running:
            snapshot = await self.get_points()
            threshold = self.settings.claim_point_threshold
            if snapshot.points >= threshold:
                self.log.info(
                    "Points %d >= %d, stopping node to claim",
                    snapshot.points, threshold, step="setup",
                )
                if not await self.stop():
                    self.log.warning("Stop failed; claiming anyway", step="setup")
                if not await self.claim_points():
                    self.log.warning("Claim failed; will retry next cycle", step="setup")
                running = await self.check_status()

        if not running:
            running = await self.start()
            if not running:
                self.log.warning("Node not running after setup", step="setup")

        return running

    async def close(self) -> None:
        await self.client.close()

    def __repr__(self) -> str:
        return f"NodeLifecycleSession({self.address!r}, state={self.state.value})"


async def probe_wallet(session: NodeLifecycleSession) -> Dict[str, Any]:
    """Read-only status snapshot used by the console report."""
    # One call in flight per session
    running = await session.check_status(register_on_missing=False)
    snapshot = await session.get_points()
    return {
        "address": session.address,
        "running": running,
        "points": snapshot.points,
        "referral_code": snapshot.referral_code,
        "referral_count": snapshot.referral_count,
        "proxy": session.client.proxy.masked() if session.client.proxy else None,
    }
