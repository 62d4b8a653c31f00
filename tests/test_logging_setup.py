import gzip
import logging
import os
from unittest.mock import patch

import pytest

from core.logging_setup import (
    CompressedRotatingFileHandler,
    setup_logging,
    short_address,
    wallet_logger,
)
from tests.conftest import TEST_ADDRESS


class TestCompressedRotatingFileHandler:
    """Test suite for CompressedRotatingFileHandler."""

    def test_rotation_filename(self, tmp_path):
        handler = CompressedRotatingFileHandler(str(tmp_path / "test.log"), maxBytes=1024, backupCount=3)
        try:
            assert handler.rotation_filename("test.log.1") == "test.log.1.gz"
        finally:
            handler.close()

    def test_rotate_compresses_file(self, tmp_path):
        source = tmp_path / "source.log"
        dest = tmp_path / "dest.log.gz"
        source.write_bytes(b"line 1\nline 2\n")

        handler = CompressedRotatingFileHandler(str(tmp_path / "test.log"), maxBytes=1024, backupCount=3)
        try:
            handler.rotate(str(source), str(dest))
        finally:
            handler.close()

        assert not source.exists()
        with gzip.open(dest, "rb") as f:
            assert f.read() == b"line 1\nline 2\n"


class TestSetupLogging:
    """Test suite for setup_logging function."""

    @staticmethod
    def _configure(*args, **kwargs):
        with patch("logging.basicConfig") as mock_basic_config:
            setup_logging(*args, **kwargs)
        call_kwargs = mock_basic_config.call_args[1]
        for handler in call_kwargs["handlers"]:
            handler.close()
        return call_kwargs

    def test_default_level(self, tmp_path):
        call_kwargs = self._configure(log_file=str(tmp_path / "bot.log"))
        assert call_kwargs["level"] == logging.INFO
        assert call_kwargs["force"] is True
        assert len(call_kwargs["handlers"]) == 2

    def test_custom_and_invalid_level(self, tmp_path):
        assert self._configure("DEBUG", str(tmp_path / "a.log"))["level"] == logging.DEBUG
        assert self._configure("NOPE", str(tmp_path / "b.log"))["level"] == logging.INFO

    def test_creates_log_directory(self, tmp_path):
        log_file = tmp_path / "nested" / "dir" / "bot.log"
        self._configure(log_file=str(log_file))
        assert os.path.isdir(log_file.parent)

    def test_aiohttp_logger_quietened(self, tmp_path):
        self._configure("DEBUG", str(tmp_path / "c.log"))
        assert logging.getLogger("aiohttp").level == logging.WARNING


class TestWalletLogger:

    def test_short_address(self):
        assert short_address(TEST_ADDRESS) == "0xf39F...2266"
        assert short_address("") == "?"
        assert short_address("0xabc") == "0xabc"

    def test_prefix_and_record_fields(self, caplog):
        log = wallet_logger("tests.wallet", TEST_ADDRESS)
        with caplog.at_level(logging.INFO, logger="tests.wallet"):
            log.info("Node started", step="start")
            log.info("No step here")

        first, second = caplog.records
        assert first.getMessage() == "[0xf39F...2266] [start] Node started"
        assert first.address == TEST_ADDRESS
        assert first.step == "start"
        assert second.getMessage() == "[0xf39F...2266] No step here"
        assert second.step is None

    @pytest.mark.parametrize("level", ["warning", "error"])
    def test_levels(self, caplog, level):
        log = wallet_logger("tests.wallet", TEST_ADDRESS)
        with caplog.at_level(logging.DEBUG, logger="tests.wallet"):
            getattr(log, level)("failed %d times", 3, step="claim")
        assert caplog.records[0].getMessage() == "[0xf39F...2266] [claim] failed 3 times"
