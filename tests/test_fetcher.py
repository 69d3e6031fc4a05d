# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for FetcherInterface and RequestsFetcher."""

import io
import logging
import os
import sys
import time
import unittest
from typing import ClassVar, Iterator, Optional
from unittest.mock import Mock, patch

import requests
import urllib3

from tests import utils
from tufclient.api import exceptions
from tufclient.client import FetcherInterface, RequestsFetcher

logger = logging.getLogger(__name__)

FETCHER_DATA_DIR = os.path.join(utils.TESTS_DIR, "repository_data", "fetcher")


def _mock_response(*reads: object) -> Mock:
    """Return a streamed response mock whose body reads return (or raise)
    ``reads`` in turn."""
    response = Mock()
    response.url = "http://localhost/file"
    response.raw.read1.side_effect = list(reads)
    return response


class TestRequestsFetcher(unittest.TestCase):
    """RequestsFetcher against a static file server."""

    server: ClassVar[utils.TestServerProcess]
    root_bytes: ClassVar[bytes]
    base_url: ClassVar[str]
    url: ClassVar[str]

    @classmethod
    def setUpClass(cls) -> None:
        cls.server = utils.TestServerProcess(
            log=logger, extra_cmd_args=[FETCHER_DATA_DIR]
        )
        with open(os.path.join(FETCHER_DATA_DIR, "1.root.json"), "rb") as f:
            cls.root_bytes = f.read()

        cls.base_url = f"http://{utils.TEST_HOST_ADDRESS}:{cls.server.port}"
        cls.url = f"{cls.base_url}/1.root.json"

    @classmethod
    def tearDownClass(cls) -> None:
        cls.server.clean()

    def setUp(self) -> None:
        self.fetcher = RequestsFetcher()

    def test_fetch(self) -> None:
        data = b"".join(self.fetcher.fetch(self.url))
        self.assertEqual(data, self.root_bytes)

    def test_fetch_chunk_size(self) -> None:
        self.fetcher.chunk_size = 1000
        chunks = list(self.fetcher.fetch(self.url))

        self.assertEqual(b"".join(chunks), self.root_bytes)
        self.assertGreaterEqual(len(chunks), 3)
        self.assertTrue(all(0 < len(chunk) <= 1000 for chunk in chunks))

    def test_unparseable_url(self) -> None:
        with self.assertRaises(exceptions.TransportError):
            self.fetcher.fetch("no-scheme-no-host")

    def test_not_found(self) -> None:
        with self.assertRaises(exceptions.HTTPStatusError) as cm:
            self.fetcher.fetch(f"{self.base_url}/nope.json")
        self.assertEqual(cm.exception.status_code, 404)

    def test_download_bytes(self) -> None:
        data = self.fetcher.download_bytes(self.url, 512000, timeout=15)
        self.assertEqual(data, self.root_bytes)

        # max_length is inclusive
        data = self.fetcher.download_bytes(self.url, len(self.root_bytes))
        self.assertEqual(data, self.root_bytes)

        with self.assertRaises(exceptions.LengthExceededError):
            self.fetcher.download_bytes(self.url, len(self.root_bytes) - 1)

    def test_download_file(self) -> None:
        with self.fetcher.download_file(self.url, 512000) as f:
            self.assertEqual(f.tell(), 0)
            f.seek(0, io.SEEK_END)
            self.assertEqual(f.tell(), len(self.root_bytes))

        with self.assertRaises(exceptions.LengthExceededError):
            with self.fetcher.download_file(self.url, 1):
                self.fail("length check did not stop the download")

    def test_user_agent(self) -> None:
        fetcher = RequestsFetcher(app_user_agent="MyApp/1.0")
        session = fetcher._get_session(self.url)
        self.assertTrue(
            session.headers["User-Agent"].startswith("MyApp/1.0 tufclient/")
        )

        # one session per scheme and host
        self.assertIs(fetcher._get_session(f"{self.base_url}/x"), session)
        self.assertIsNot(fetcher._get_session("https://example.com/"), session)


class TestRequestsFetcherSlowServer(unittest.TestCase):
    """RequestsFetcher against a server that sends slowly."""

    server: ClassVar[utils.TestServerProcess]
    base_url: ClassVar[str]

    @classmethod
    def setUpClass(cls) -> None:
        cls.server = utils.TestServerProcess(
            log=logger, server=os.path.join(utils.TESTS_DIR, "slow_server.py")
        )
        cls.base_url = f"http://{utils.TEST_HOST_ADDRESS}:{cls.server.port}"

    @classmethod
    def tearDownClass(cls) -> None:
        cls.server.clean()

    def test_timeout_while_trickling(self) -> None:
        # Every read returns well within socket_timeout, but the whole body
        # takes about 6 seconds
        fetcher = RequestsFetcher(socket_timeout=5)
        start = time.monotonic()
        with self.assertRaises(exceptions.SlowRetrievalError):
            fetcher.download_bytes(f"{self.base_url}/slow", 100, timeout=1.0)
        self.assertLess(time.monotonic() - start, 2.0)

    def test_timeout_while_stalled(self) -> None:
        fetcher = RequestsFetcher(socket_timeout=5)
        start = time.monotonic()
        with self.assertRaises(exceptions.SlowRetrievalError):
            fetcher.download_bytes(f"{self.base_url}/stall", 100, timeout=1.0)
        self.assertLess(time.monotonic() - start, 2.0)

    def test_socket_timeout_while_stalled(self) -> None:
        fetcher = RequestsFetcher(socket_timeout=0.5)
        with self.assertRaises(exceptions.SlowRetrievalError):
            fetcher.download_bytes(f"{self.base_url}/stall", 100)

    def test_slow_download_completes_without_timeout(self) -> None:
        fetcher = RequestsFetcher(socket_timeout=5)
        data = fetcher.download_bytes(f"{self.base_url}/slow", 100)
        self.assertEqual(data, b"x" * 20)


class TestRequestsFetcherErrors(unittest.TestCase):
    """Error mapping of RequestsFetcher, with the session mocked."""

    url = "http://localhost/file"

    @patch.object(requests.Session, "get")
    def test_read_timeout(self, mock_get: Mock) -> None:
        response = _mock_response(
            b"da",
            urllib3.exceptions.ReadTimeoutError(None, self.url, "timed out"),
        )
        mock_get.return_value = response

        chunks = RequestsFetcher().fetch(self.url)
        self.assertEqual(next(chunks), b"da")
        with self.assertRaises(exceptions.SlowRetrievalError):
            next(chunks)
        response.close.assert_called_once()

    @patch.object(requests.Session, "get")
    def test_broken_body(self, mock_get: Mock) -> None:
        response = _mock_response(
            urllib3.exceptions.ProtocolError("connection broken")
        )
        mock_get.return_value = response

        with self.assertRaises(exceptions.TransportError) as cm:
            next(RequestsFetcher().fetch(self.url))
        self.assertNotIsInstance(cm.exception, exceptions.SlowRetrievalError)
        response.close.assert_called_once()

    @patch.object(requests.Session, "get")
    def test_read_timeout_follows_download_timeout(
        self, mock_get: Mock
    ) -> None:
        mock_get.side_effect = lambda *args, **kwargs: _mock_response(
            b"data", b""
        )

        fetcher = RequestsFetcher(socket_timeout=30)
        fetcher.download_bytes(self.url, 100, timeout=2)
        self.assertLessEqual(mock_get.call_args.kwargs["timeout"], 2)

        fetcher.download_bytes(self.url, 100)
        self.assertEqual(mock_get.call_args.kwargs["timeout"], 30)

    @patch.object(
        requests.Session,
        "get",
        side_effect=requests.exceptions.Timeout("timed out"),
    )
    def test_request_timeout(self, mock_get: Mock) -> None:
        with self.assertRaises(exceptions.SlowRetrievalError):
            RequestsFetcher().fetch(self.url)
        mock_get.assert_called_once()

    @patch.object(requests.Session, "get")
    def test_connection_retried(self, mock_get: Mock) -> None:
        mock_get.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            _mock_response(b"data", b""),
        ]

        fetcher = RequestsFetcher(retry_attempts=1, retry_interval=0)
        self.assertEqual(b"".join(fetcher.fetch(self.url)), b"data")
        self.assertEqual(mock_get.call_count, 2)

    @patch.object(
        requests.Session,
        "get",
        side_effect=requests.exceptions.ConnectionError("refused"),
    )
    def test_connection_not_retried(self, mock_get: Mock) -> None:
        with self.assertRaises(exceptions.TransportError) as cm:
            RequestsFetcher().fetch(self.url)
        self.assertNotIsInstance(cm.exception, exceptions.HTTPStatusError)
        mock_get.assert_called_once()


class _SlowFetcher(FetcherInterface):
    """Yields one byte per ``delay`` seconds, ignoring the timeout."""

    def __init__(self, chunks: int, delay: float) -> None:
        self.chunks = chunks
        self.delay = delay
        self.timeouts = []

    def _fetch(self, url: str, timeout: Optional[float]) -> Iterator[bytes]:
        self.timeouts.append(timeout)
        for _ in range(self.chunks):
            time.sleep(self.delay)
            yield b"x"


class _BrokenFetcher(FetcherInterface):
    def _fetch(self, url: str, timeout: Optional[float]) -> Iterator[bytes]:
        raise ValueError("broken")


class TestFetcherInterface(unittest.TestCase):
    """Download checks common to all fetchers."""

    def test_timeout_checked_between_chunks(self) -> None:
        fetcher = _SlowFetcher(chunks=5, delay=0.05)
        with self.assertRaises(exceptions.SlowRetrievalError):
            fetcher.download_bytes("http://localhost/file", 100, timeout=0.01)
        self.assertEqual(fetcher.timeouts, [0.01])

    def test_no_timeout(self) -> None:
        fetcher = _SlowFetcher(chunks=3, delay=0)
        self.assertEqual(fetcher.download_bytes("http://h/file", 3), b"xxx")
        self.assertEqual(fetcher.timeouts, [None])

    def test_other_errors_become_transport_errors(self) -> None:
        with self.assertRaises(exceptions.TransportError) as cm:
            _BrokenFetcher().fetch("http://localhost/file")
        self.assertIsInstance(cm.exception.__cause__, ValueError)


if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
