import pytest
from unittest.mock import AsyncMock, MagicMock

from core.config import NodeSettings
from core.wallet import WalletIdentity
from core.exceptions import TransientNetworkError
from nodes.client import OutcomeKind, RequestOutcome

# Well-known development keys (never funded)
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TEST_KEY_2 = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
TEST_ADDRESS_2 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.fixture
def settings(tmp_path):
    """Settings with every delay zeroed and no input files."""
    return NodeSettings(
        _env_file=None,
        log_file=str(tmp_path / "logs" / "test.log"),
        wallets_file=str(tmp_path / "wallets.json"),
        proxies_file=str(tmp_path / "proxies.txt"),
        request_max_retries=3,
        request_retry_delay_seconds=0,
        rate_limit_cooldown_seconds=0,
        success_cooldown_seconds=0,
        start_retry_delay_seconds=0,
        settle_delay_seconds=0,
        wallet_retry_delay_seconds=0,
        inter_wallet_delay_seconds=0,
        cycle_interval_seconds=0,
    )


@pytest.fixture
def identity():
    return WalletIdentity(TEST_KEY)


class FakeClient:
    """Scripted stand-in for ``ResilientRequestClient``.

    Routes are matched by method and URL fragment.  A route with several
    outcomes returns them in order and then repeats the last one.
    """

    def __init__(self):
        self.routes = []
        self.calls = []
        self.options = []
        self.proxy = None
        self.close = AsyncMock()

    def on(self, method, fragment, *outcomes):
        self.routes.append((method, fragment, list(outcomes)))
        return self

    def _match(self, method, url):
        for m, fragment, outcomes in self.routes:
            if m == method and fragment in url:
                if isinstance(outcomes[0], Exception):
                    raise outcomes.pop(0)
                return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        return RequestOutcome.exhausted("no route", 1)

    async def execute(self, method, url, body=None, *, raise_on_exhausted=False, **kwargs):
        self.calls.append((method, url, body))
        self.options.append(dict(kwargs, raise_on_exhausted=raise_on_exhausted))
        outcome = self._match(method, url)
        if raise_on_exhausted and outcome.kind is OutcomeKind.EXHAUSTED_RETRIES:
            raise TransientNetworkError(url, outcome.reason)
        return outcome

    async def set_proxy(self, route):
        self.proxy = route

    def called(self, fragment):
        return [c for c in self.calls if fragment in c[1]]

    def order(self):
        """Short names of the calls made, in order."""
        names = []
        for method, url, _ in self.calls:
            for name in ("wallet-details", "verify-referral-code", "register-wallet",
                         "node-status", "/start", "/stop", "claim-node-points", "health"):
                if name in url:
                    names.append(name.strip("/"))
                    break
        return names


def details(points=0, referral_code="abc123", referrals=None):
    return RequestOutcome.success({"data": {
        "nodePoints": points,
        "referralCode": referral_code,
        "referrals": referrals or [],
    }})


def status(start_timestamp=None):
    return RequestOutcome.success({"data": {"startTimestamp": start_timestamp}})


START_ACK = RequestOutcome.success({"message": "node action executed successfully"})
STOP_OK = RequestOutcome.success({"message": "node action executed successfully"})


@pytest.fixture
def fake_client():
    return FakeClient()


def mock_session_factory(results):
    """Build sessions whose ``setup_wallet`` returns (or raises) per address."""
    def factory(identity, route):
        session = MagicMock()
        session.address = identity.address
        session.client = FakeClient()
        outcome = results.get(identity.address, True)
        if isinstance(outcome, Exception):
            session.setup_wallet = AsyncMock(side_effect=outcome)
        elif isinstance(outcome, list):
            session.setup_wallet = AsyncMock(side_effect=outcome)
        else:
            session.setup_wallet = AsyncMock(return_value=outcome)
        session.start = AsyncMock(return_value=True)
        session.check_health = AsyncMock(return_value=True)
        session.close = AsyncMock()
        return session
    return factory
