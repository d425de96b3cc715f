"""Logging setup and URL redaction."""

import logging

from monoma.utils import get_url_domain, setup_console_logging


def test_get_url_domain_hides_api_key():
    assert get_url_domain("https://eth-sepolia.g.alchemy.com/v2/secret-key") == "eth-sepolia.g.alchemy.com"
    assert get_url_domain("http://localhost:8545") == "localhost:8545"


def test_setup_console_logging_with_file(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    log_file = tmp_path / "logs" / "monoma.log"

    root = setup_console_logging(default_log_level="warning", log_file=log_file)
    try:
        logging.getLogger("monoma.test").info("Burned 1.000000 USDC")
        for handler in root.handlers:
            handler.flush()
        assert "Burned 1.000000 USDC" in log_file.read_text()
        assert logging.getLogger("urllib3.connectionpool").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
