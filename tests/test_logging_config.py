import logging

from jobbyai.core.logging_config import sanitize_log_data, setup_logging


def test_sanitize_log_data_redacts_secrets():
    data = {
        "stripe-signature": "t=1,v1=abc",
        "Authorization": "Bearer xyz",
        "user_id": 7,
    }

    sanitized = sanitize_log_data(data)

    assert sanitized["stripe-signature"] == "***REDACTED***"
    assert sanitized["Authorization"] == "***REDACTED***"
    assert sanitized["user_id"] == 7
    # Input is left untouched
    assert data["Authorization"] == "Bearer xyz"


def test_setup_logging_writes_log_file(tmp_path):
    root = logging.getLogger()
    previous_handlers, previous_level = root.handlers[:], root.level
    try:
        setup_logging("debug", log_dir=str(tmp_path))
        assert root.level == logging.DEBUG

        logging.getLogger("jobbyai.test").info("ledger ready")
        for handler in root.handlers:
            handler.flush()

        assert "ledger ready" in (tmp_path / "jobbyai.log").read_text()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)
