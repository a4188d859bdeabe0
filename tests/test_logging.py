"""Tests for logging configuration."""

import io
import logging

import pytest

from wasm_release.logging import configure_logging, resolve_level


class TestResolveLevel:
    """Tests for resolve_level function."""

    def test_default(self):
        """Without flags the settings level applies."""
        assert resolve_level(default="WARNING") == logging.WARNING
        assert resolve_level(default="debug") == logging.DEBUG

    def test_verbose(self):
        """-v should enable debug output."""
        assert resolve_level(verbosity=1) == logging.DEBUG

    def test_quiet_wins(self):
        """-q should override -v."""
        assert resolve_level(verbosity=2, quiet=True) == logging.WARNING


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_writes_to_stream(self):
        """Log records should go to the given stream."""
        stream = io.StringIO()
        configure_logging(stream=stream, no_color=True)

        logging.getLogger("wasm_release.test").info("compiling fazer")

        assert "compiling fazer" in stream.getvalue()

    def test_quiet_drops_info(self):
        """Quiet mode should drop info records."""
        stream = io.StringIO()
        configure_logging(quiet=True, stream=stream, no_color=True)

        logging.getLogger("wasm_release.test").info("compiling fazer")
        logging.getLogger("wasm_release.test").warning("slow download")

        assert "compiling fazer" not in stream.getvalue()
        assert "slow download" in stream.getvalue()
