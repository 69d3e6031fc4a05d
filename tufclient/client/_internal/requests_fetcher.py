# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""``FetcherInterface`` implementation using the Requests HTTP library."""

import logging
import time
from typing import Dict, Iterator, Optional, Tuple
from urllib import parse

import requests
import urllib3

import tufclient
from tufclient.api import exceptions
from tufclient.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)

# requests rejects a read timeout of zero
_MIN_TIMEOUT = 0.01


class RequestsFetcher(FetcherInterface):
    """Downloads with the requests library.

    The body is read with ``read1()`` of the underlying urllib3 response:
    every read returns as soon as any bytes are available, so a server that
    sends slowly cannot keep a read going past the download timeout.

    Attributes:
        socket_timeout: Seconds to wait for the connection and for each
            read. Lowered to the time left when a download timeout is given.
        chunk_size: Maximum number of bytes returned by one read.
        app_user_agent: Application user agent prefixed to the default one.
        retry_attempts: Number of times a request is retried after a
            connection failure. HTTP errors and timeouts are not retried.
        retry_interval: Seconds between retries.
    """

    def __init__(
        self,
        socket_timeout: float = 30,
        chunk_size: int = 400000,
        app_user_agent: Optional[str] = None,
        retry_attempts: int = 0,
        retry_interval: float = 1.0,
    ) -> None:
        # One session per scheme and host: connections are reused, but no
        # state (such as cookies) is shared between hosts.
        self._sessions: Dict[Tuple[str, str], requests.Session] = {}

        self.socket_timeout = socket_timeout
        self.chunk_size = chunk_size
        self.app_user_agent = app_user_agent
        self.retry_attempts = retry_attempts
        self.retry_interval = retry_interval

    def _fetch(
        self, url: str, timeout: Optional[float] = None
    ) -> Iterator[bytes]:
        """Return an iterator over the content of the HTTP(S) ``url``.

        Raises:
            exceptions.SlowRetrievalError: A read timed out, or ``timeout``
                passed.
            exceptions.HTTPStatusError: HTTP error code was received.
            exceptions.TransportError: Connection failed after all retries.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        session = self._get_session(url)
        response = self._get_with_retries(session, url, deadline)

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            response.close()
            raise exceptions.HTTPStatusError(
                str(e), e.response.status_code
            ) from e

        return self._chunks(response, deadline)

    def _read_timeout(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.socket_timeout

        remaining = deadline - time.monotonic()
        return max(_MIN_TIMEOUT, min(self.socket_timeout, remaining))

    def _get_with_retries(
        self, session: requests.Session, url: str, deadline: Optional[float]
    ) -> requests.Response:
        """Send the GET request, retrying on connection failures.

        The body is streamed. The timeout applies both to connecting and
        to each read of the socket.
        """
        attempt = 0
        while True:
            try:
                return session.get(
                    url, stream=True, timeout=self._read_timeout(deadline)
                )
            except requests.exceptions.Timeout as e:
                raise exceptions.SlowRetrievalError(
                    f"Timed out requesting {url}"
                ) from e
            except requests.exceptions.ConnectionError as e:
                if attempt >= self.retry_attempts:
                    raise exceptions.TransportError(
                        f"Failed to connect to {url}"
                    ) from e
                attempt += 1
                logger.debug(
                    "Retry %d/%d of %s: %s",
                    attempt,
                    self.retry_attempts,
                    url,
                    e,
                )
                time.sleep(self.retry_interval)
                if deadline is not None and time.monotonic() > deadline:
                    raise exceptions.SlowRetrievalError(
                        f"Timed out retrying {url}"
                    ) from e

    def _chunks(
        self, response: requests.Response, deadline: Optional[float]
    ) -> Iterator[bytes]:
        """Yield the body of ``response`` as it arrives.

        A generator, so that connecting and reading the body fail
        separately.
        """
        try:
            while True:
                if deadline is not None and time.monotonic() > deadline:
                    raise exceptions.SlowRetrievalError(
                        f"Download of {response.url} timed out"
                    )
                chunk = response.raw.read1(self.chunk_size, decode_content=True)
                if not chunk:
                    return
                yield chunk
        except urllib3.exceptions.TimeoutError as e:
            raise exceptions.SlowRetrievalError(
                f"Read of {response.url} timed out"
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise exceptions.TransportError(
                f"Failed to read {response.url}"
            ) from e
        finally:
            response.close()

    def _get_session(self, url: str) -> requests.Session:
        """Return the session for the scheme and host of ``url``.

        Raises:
            exceptions.TransportError: ``url`` cannot be parsed.
        """
        parsed_url = parse.urlparse(url)
        if not parsed_url.scheme:
            raise exceptions.TransportError(f"Failed to parse URL {url}")

        session_index = (parsed_url.scheme, parsed_url.hostname or "")
        session = self._sessions.get(session_index)
        if session is not None:
            logger.debug("Reusing session %s", session_index)
            return session

        session = requests.Session()
        user_agent = (
            f"tufclient/{tufclient.__version__} "
            f"{session.headers['User-Agent']}"
        )
        if self.app_user_agent is not None:
            user_agent = f"{self.app_user_agent} {user_agent}"
        session.headers["User-Agent"] = user_agent

        self._sessions[session_index] = session
        logger.debug("Made new session %s", session_index)
        return session
