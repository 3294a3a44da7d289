# SPDX-License-Identifier: Apache-2.0
import logging

import pytest

from utils.logger import SensitiveDataFilter, get_logger, setup_logging


def _record(msg, *args):
    return logging.LogRecord("chainvoice.test", logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.parametrize(
    "message",
    [
        "private_key=4wBqpZM9xaSheZzJSMawUHDgZ7miWfSsxmfVF5jJpYP",
        "secret-key: abcdef",
        "Authorization: Bearer eyJhbGciOi",
    ],
)
def test_sensitive_values_are_masked(message):
    record = _record(message)

    assert SensitiveDataFilter().filter(record)
    assert "***" in record.getMessage()


def test_masks_values_passed_as_args():
    record = _record("loading identity with token=%s", "abc123")

    SensitiveDataFilter().filter(record)

    assert record.getMessage() == "loading identity with token=***"


def test_plain_messages_are_untouched():
    record = _record("Committed %d bytes to slot %d", 100, 2)

    SensitiveDataFilter().filter(record)

    assert record.getMessage() == "Committed 100 bytes to slot 2"


def test_get_logger_prefixes_app_name():
    assert get_logger("core.room").name == "chainvoice.core.room"
    assert get_logger("chainvoice.storage").name == "chainvoice.storage"


def test_setup_logging_writes_file(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        logger = setup_logging(log_dir=str(tmp_path), level="DEBUG", console_output=False)
        logger.warning("hello from test")
        for handler in root.handlers:
            handler.flush()

        content = (tmp_path / "chainvoice.log").read_text(encoding="utf-8")
        assert "hello from test" in content
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
