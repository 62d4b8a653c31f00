"""Application configuration for the light-node automation bot.

Central configuration module powered by Pydantic v2.  Settings are loaded
from environment variables (with ``.env`` file support) and the wallet
records file (``config/wallets.json`` by default).

Key exports:
    NodeSettings: Root settings model (instantiate once in ``main.py``).
    WalletRecord: A supplied wallet identity (address + private key).
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import logging
from pathlib import Path
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.utils import safe_json_read

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime input files (wallets, proxies)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


class WalletRecord(BaseModel):
    """A wallet identity supplied to the bot.

    Attributes:
        private_key: Hex-encoded signing key (``0x``-prefixed or bare).
        address: Optional declared address.  When present it must match
            the address derived from ``private_key``.
        proxy: Optional sticky proxy route for this wallet
            (``protocol://[user:pass@]host:port``).
        enabled: Set to ``False`` to skip this wallet entirely.
    """

    private_key: str
    address: Optional[str] = None
    proxy: Optional[str] = None
    enabled: bool = True


class NodeSettings(BaseSettings):
    """Root configuration model.

    All fields can be set via environment variables or a ``.env`` file
    (variable name = upper-case field name).

    Section overview:
        * **Remote service** -- API root, dashboard origin, invite code.
        * **Request policy** -- timeout, retry ceiling, backoff, cooldowns.
        * **Node lifecycle** -- claim threshold, start/verify policy.
        * **Orchestration** -- per-wallet retry budget, cycle cadence,
          fan-out.
        * **Health** -- probe interval and recovery action.
        * **Inputs** -- wallet and proxy files, rotation strategy.
    """

    # Core
    log_level: str = "INFO"
    log_file: str = str(LOGS_DIR / "node_bot.log")

    # Remote service
    api_base_url: str = "https://referralapi.layeredge.io/api"
    dashboard_origin: str = "https://dashboard.layeredge.io"
    invite_code: str = "O8Ijyqih"

    # Request policy
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    # High on purpose: the retry loop doubles as the circuit breaker
    request_max_retries: int = Field(default=30, ge=1)
    # Linear backoff base (delay = base * attempt)
    request_retry_delay_seconds: float = Field(default=3.0, ge=0)
    rate_limit_cooldown_seconds: float = Field(default=10.0, ge=0)
    success_cooldown_seconds: float = Field(default=1.0, ge=0)

    # Node lifecycle
    claim_point_threshold: int = Field(default=100, ge=0)
    start_max_attempts: int = Field(default=3, ge=1)
    start_retry_delay_seconds: float = Field(default=5.0, ge=0)
    # Read-after-write lag on the remote status endpoint
    settle_delay_seconds: float = Field(default=5.0, ge=0)

    # Orchestration
    max_attempts_per_wallet: int = Field(default=3, ge=1)
    wallet_retry_delay_seconds: float = Field(default=10.0, ge=0)
    inter_wallet_delay_seconds: float = Field(default=2.0, ge=0)
    cycle_interval_seconds: float = Field(default=3600.0, ge=0)
    max_concurrent_wallets: int = Field(default=1, ge=1)

    # Health
    health_check_interval_seconds: float = Field(default=300.0, gt=0)
    health_recovery_mode: Literal["resync", "start"] = "resync"
    # Attempt ceiling for one health probe; the record lock is held meanwhile
    health_probe_max_attempts: int = Field(default=2, ge=1)

    # Inputs
    wallets_file: str = str(CONFIG_DIR / "wallets.json")
    proxies_file: str = str(CONFIG_DIR / "proxies.txt")
    proxy_rotation_strategy: Literal["sticky", "round_robin", "random"] = "sticky"

    # Inline wallet records (JSON list in the WALLETS env var)
    wallets: List[WalletRecord] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Merge wallet records from ``wallets_file`` after construction."""
        self._load_wallets_file()

    def _load_wallets_file(self) -> None:
        """Load wallet records from the configured JSON file.

        Accepted shapes::

            [{"private_key": "0x...", "address": "0x...", "proxy": "..."}]
            {"wallets": [ ... ]}

        Records whose private key (or declared address) is already
        present are skipped, so inline ``WALLETS`` entries win.
        """
        if not Path(self.wallets_file).exists():
            return

        data = safe_json_read(self.wallets_file)
        if data is None:
            logger.warning(
                "Failed to load wallet records from %s", self.wallets_file
            )
            return

        entries = data.get("wallets", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            logger.warning(
                "Ignoring %s: expected a list of wallet records",
                self.wallets_file,
            )
            return

        known = {w.private_key.lower() for w in self.wallets}
        known |= {w.address.lower() for w in self.wallets if w.address}

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                record = WalletRecord(**entry)
            except Exception as exc:
                logger.debug("Skipping invalid wallet entry: %s", exc)
                continue
            keys = {record.private_key.lower()}
            if record.address:
                keys.add(record.address.lower())
            if keys & known:
                continue
            known |= keys
            self.wallets.append(record)

    def enabled_wallets(self) -> List[WalletRecord]:
        """Return the wallet records that are not disabled."""
        return [w for w in self.wallets if w.enabled]
