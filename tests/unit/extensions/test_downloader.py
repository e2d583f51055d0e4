"""Tests for the URL downloader."""

import logging
from unittest.mock import MagicMock, Mock

import pytest
import requests

from fuseml.core.extensions.downloader import RETRY_LOGGERS, URLDownloader, build_retry_session
from fuseml.core.extensions.exceptions import FetchError


def _response(status_code=200, chunks=(b"data",), headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.iter_content.return_value = iter(chunks)
    return response


class TestURLDownloader:
    """Test suite for URLDownloader."""

    def setup_method(self):
        self.session = Mock()
        self.downloader = URLDownloader(session=self.session, max_size=10)

    def test_download(self, tmp_path):
        self.session.get.return_value = _response(chunks=(b"kind: ", b"Pod\n"))
        target = tmp_path / "sub" / "app.yaml"

        assert self.downloader.download("https://example.com/app.yaml", target) == target

        assert target.read_bytes() == b"kind: Pod\n"
        assert not (tmp_path / "sub" / "app.yaml.tmp").exists()
        self.session.get.assert_called_once_with("https://example.com/app.yaml", stream=True, timeout=300)

    def test_not_found(self, tmp_path):
        self.session.get.return_value = _response(status_code=404)
        with pytest.raises(FetchError, match="server returned 404"):
            self.downloader.download("https://example.com/missing.yaml", tmp_path / "missing.yaml")
        assert not (tmp_path / "missing.yaml").exists()

    def test_content_length_over_limit(self, tmp_path):
        self.session.get.return_value = _response(headers={"Content-Length": "1000"})
        with pytest.raises(FetchError, match="File too large"):
            self.downloader.download("https://example.com/big.tgz", tmp_path / "big.tgz")

    def test_streamed_size_over_limit(self, tmp_path):
        self.session.get.return_value = _response(chunks=(b"123456", b"789012"))
        with pytest.raises(FetchError, match="exceeded size limit"):
            self.downloader.download("https://example.com/big.tgz", tmp_path / "big.tgz")
        assert list(tmp_path.iterdir()) == []

    def test_transport_error(self, tmp_path):
        self.session.get.side_effect = requests.ConnectionError("connection reset")
        with pytest.raises(FetchError, match="connection reset"):
            self.downloader.download("https://example.com/app.yaml", tmp_path / "app.yaml")


def test_retry_session_configuration():
    session = build_retry_session(4, allowed_methods=("GET", "DELETE"))
    retry = session.get_adapter("https://example.com").max_retries

    assert retry.total == 4
    assert 503 in retry.status_forcelist
    assert "DELETE" in retry.allowed_methods
    assert "POST" not in retry.allowed_methods


class TestRetryLogging:
    """Retry attempts are logged only in debug mode."""

    def setup_method(self):
        for name in RETRY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)

    def test_retries_silent_by_default(self):
        build_retry_session(3)
        for name in RETRY_LOGGERS:
            assert logging.getLogger(name).getEffectiveLevel() >= logging.ERROR

    def test_debug_shows_retries(self):
        URLDownloader(max_retries=3, debug=True)
        for name in RETRY_LOGGERS:
            assert logging.getLogger(name).level == logging.DEBUG
