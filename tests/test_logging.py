"""Tests for logging setup and the serial traffic log."""

import logging

import pytest

from actuator_panel.core.logging import (
    SERIAL_LOGGER_ID,
    VERBOSE,
    VerboseLogger,
    get_logger,
    log_serial_recv,
    log_serial_sent,
    setup_file_logger,
)


@pytest.fixture
def serial_logger():
    """Reset the serial logger around each test."""
    serial_logger = logging.getLogger(SERIAL_LOGGER_ID)
    saved = list(serial_logger.handlers)
    serial_logger.handlers.clear()
    yield serial_logger
    for handler in serial_logger.handlers:
        handler.close()
    serial_logger.handlers[:] = saved


class TestSerialLog:
    """Tests for the serial communication log file."""

    def test_sent_and_received_lines_are_logged(self, serial_logger, tmp_path):
        log_file = tmp_path / "logs" / "serial.log"
        setup_file_logger(str(log_file), SERIAL_LOGGER_ID)

        log_serial_sent("M")
        log_serial_recv("N")
        log_serial_recv("HEIGHT:42.5")
        for handler in serial_logger.handlers:
            handler.flush()

        lines = log_file.read_text().splitlines()
        assert len(lines) == 3
        assert lines[0].endswith("Sent: M")
        assert lines[1].endswith("Recv: N")
        assert lines[2].endswith("Recv: HEIGHT:42.5")

    def test_serial_log_does_not_propagate(self, serial_logger, tmp_path):
        setup_file_logger(str(tmp_path / "serial.log"), SERIAL_LOGGER_ID)
        assert not serial_logger.propagate

    def test_no_file_configured(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        file_logger = logging.getLogger("actuator_panel.test.no_file")
        file_logger.handlers.clear()

        setup_file_logger(None, file_logger.name)
        file_logger.info("M", extra={"source": "Sent"})

        assert not any(isinstance(h, logging.FileHandler) for h in file_logger.handlers)
        assert not file_logger.propagate
        assert list(tmp_path.iterdir()) == []
        file_logger.handlers.clear()


class TestVerboseLogger:

    def test_get_logger_returns_verbose_logger(self):
        assert isinstance(get_logger("actuator_panel.test"), VerboseLogger)

    def test_get_logger_defaults_to_calling_module(self):
        assert get_logger().name == __name__

    def test_verbose_level(self, caplog):
        logger = get_logger("actuator_panel.test.verbose")
        with caplog.at_level(VERBOSE, logger="actuator_panel.test.verbose"):
            logger.verbose("raw chunk")
        assert caplog.records[-1].levelname == "VERBOSE"
