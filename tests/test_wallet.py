import pytest

from eth_account import Account
from eth_account.messages import encode_defunct

from core.config import WalletRecord
from core.exceptions import ConfigurationError
from core.wallet import WalletIdentity
from tests.conftest import TEST_ADDRESS, TEST_KEY


class TestWalletIdentity:
    """Test suite for WalletIdentity."""

    def test_address_derived_from_key(self):
        assert WalletIdentity(TEST_KEY).address == TEST_ADDRESS

    def test_key_without_prefix(self):
        assert WalletIdentity(TEST_KEY[2:]).address == TEST_ADDRESS

    @pytest.mark.parametrize("key", [None, "", "   ", "0x1234", "not-a-key"])
    def test_invalid_key_is_configuration_error(self, key):
        with pytest.raises(ConfigurationError):
            WalletIdentity(key)

    def test_sign_recovers_to_address(self):
        identity = WalletIdentity(TEST_KEY)
        message = f"Node activation request for {TEST_ADDRESS} at 1700000000000"

        signature = identity.sign(message)

        assert signature.startswith("0x")
        assert len(signature) == 132
        assert Account.recover_message(encode_defunct(text=message), signature=signature) == TEST_ADDRESS

    def test_signature_depends_on_message(self):
        identity = WalletIdentity(TEST_KEY)
        assert identity.sign("a at 1") != identity.sign("a at 2")

    def test_immutable(self):
        identity = WalletIdentity(TEST_KEY)
        with pytest.raises(AttributeError):
            identity.foo = "bar"

    def test_generate_creates_distinct_identities(self):
        first = WalletIdentity.generate()
        second = WalletIdentity.generate()
        assert first.address != second.address
        assert WalletIdentity(first.export_key()).address == first.address

    def test_export_key_is_prefixed(self):
        assert WalletIdentity(TEST_KEY[2:]).export_key() == TEST_KEY

    def test_to_record(self):
        record = WalletIdentity(TEST_KEY).to_record()
        assert record.address == TEST_ADDRESS
        assert record.private_key == TEST_KEY


class TestFromRecord:

    def test_matching_address(self):
        record = WalletRecord(private_key=TEST_KEY, address=TEST_ADDRESS.lower())
        assert WalletIdentity.from_record(record).address == TEST_ADDRESS

    def test_address_optional(self):
        assert WalletIdentity.from_record(WalletRecord(private_key=TEST_KEY)).address == TEST_ADDRESS

    def test_mismatched_address(self):
        record = WalletRecord(private_key=TEST_KEY, address="0x" + "1" * 40)
        with pytest.raises(ConfigurationError):
            WalletIdentity.from_record(record)
