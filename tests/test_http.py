from __future__ import annotations

import os
from unittest.mock import patch

from webground.services.http import CHROME_USER_AGENT, browser_headers, sanitize_ssl_keylogfile


def test_sanitize_ssl_keylogfile_unsets_unwritable_path():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": r"Z:\does-not-exist\virtual_file.log"}, clear=False):
        with patch("builtins.open", side_effect=PermissionError):
            sanitize_ssl_keylogfile()
        assert "SSLKEYLOGFILE" not in os.environ


def test_sanitize_ssl_keylogfile_keeps_usable_path():
    with patch.dict(os.environ, {"SSLKEYLOGFILE": r"C:\tmp\keylog.log"}, clear=False):
        with patch("pathlib.Path.exists", return_value=True):
            with patch("builtins.open"):
                sanitize_ssl_keylogfile()
        assert os.environ.get("SSLKEYLOGFILE") == r"C:\tmp\keylog.log"


def test_browser_headers_default_to_chrome():
    headers = browser_headers()
    assert headers["User-Agent"] == CHROME_USER_AGENT
    assert headers["Accept-Language"].startswith("en-US")
