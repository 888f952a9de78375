import logging

from chatrelay.core.logging import RedactingFormatter, redact, setup_logging


def test_redacts_api_keys_and_bearer_tokens():
    text = redact("key=sk-abcdefghijklmnopqrstuvwx auth=Bearer eyJhbGciOiJIUzI1NiJ9.payload.sig")
    assert "sk-abcdefghijklmnopqrstuvwx" not in text
    assert "eyJhbGciOiJIUzI1NiJ9" not in text
    assert text == "key=*** auth=Bearer ***"


def test_formatter_redacts_arguments():
    record = logging.LogRecord(
        "chatrelay", logging.WARNING, __file__, 1, "calling with %s", ("sk-0123456789abcdefghijklmn",), None
    )
    assert RedactingFormatter("%(message)s").format(record) == "calling with ***"


def test_setup_logging_levels():
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logging("not-a-level")
    assert logging.getLogger().level == logging.INFO
