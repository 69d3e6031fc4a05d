# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Network download interface used by the client.

A ``FetcherInterface`` implementation provides raw bytes for a URL. This
module bounds every download by length and total time, whatever the
implementation.
"""

import abc
import logging
import tempfile
import time
from contextlib import contextmanager
from typing import IO, Iterator, Optional

from tufclient.api import exceptions

logger = logging.getLogger(__name__)


class FetcherInterface(metaclass=abc.ABCMeta):
    """Abstract network download.

    Applications can plug in their own network stack by implementing
    ``_fetch()``. The rest of the class is provided.
    """

    @abc.abstractmethod
    def _fetch(self, url: str, timeout: Optional[float]) -> Iterator[bytes]:
        """Return an iterator over the content of ``url``.

        Implementations must raise ``HTTPStatusError`` for HTTP error
        codes. Other errors that are not ``TransportError`` are wrapped
        in one by ``fetch()``.

        The whole download should take at most ``timeout`` seconds (None
        means no limit). Chunks should be yielded as they arrive, so that
        the caller can abandon a download that takes too long.

        Raises:
            exceptions.HTTPStatusError: HTTP error code was received.
            exceptions.SlowRetrievalError: ``timeout`` passed.
        """
        raise NotImplementedError  # pragma: no cover

    def fetch(
        self, url: str, timeout: Optional[float] = None
    ) -> Iterator[bytes]:
        """Return an iterator over the content of ``url``.

        Raises:
            exceptions.TransportError: The download failed.
            exceptions.HTTPStatusError: HTTP error code was received.
        """
        try:
            return self._fetch(url, timeout)
        except exceptions.TransportError:
            raise
        except Exception as e:
            raise exceptions.TransportError(f"Failed to download {url}") from e

    @contextmanager
    def download_file(
        self, url: str, max_length: int, timeout: Optional[float] = None
    ) -> Iterator[IO]:
        """Download ``url`` into a temporary file and yield the file.

        The download is abandoned as soon as more than ``max_length`` bytes
        have arrived or ``timeout`` seconds have passed. Use the returned
        context manager in a ``with`` block so the file is always released.

        Args:
            url: URL of the file.
            max_length: Maximum number of bytes to accept.
            timeout: Maximum total download time in seconds, or None for no
                limit.

        Raises:
            exceptions.TransportError: The download failed.
            exceptions.LengthExceededError: More than ``max_length`` bytes
                were received.
            exceptions.SlowRetrievalError: ``timeout`` passed.
            exceptions.HTTPStatusError: HTTP error code was received.

        Yields:
            ``TemporaryFile`` with the content of ``url``, positioned at
            its start.
        """
        logger.debug("Downloading %s", url)
        deadline = None if timeout is None else time.monotonic() + timeout
        received = 0

        with tempfile.TemporaryFile() as temp_file:
            chunks = self.fetch(url, timeout)
            try:
                for chunk in chunks:
                    received += len(chunk)
                    if received > max_length:
                        raise exceptions.LengthExceededError(
                            f"{url} is longer than {max_length} bytes"
                        )
                    if deadline is not None and time.monotonic() > deadline:
                        raise exceptions.SlowRetrievalError(
                            f"Download of {url} took more than {timeout}s"
                        )
                    temp_file.write(chunk)
            except exceptions.TransportError:
                raise
            except Exception as e:
                raise exceptions.TransportError(
                    f"Failed to download {url}"
                ) from e
            finally:
                # Releases the connection of an abandoned download
                close = getattr(chunks, "close", None)
                if close is not None:
                    close()

            logger.debug("Downloaded %d bytes of %s", received, url)
            temp_file.seek(0)
            yield temp_file

    def download_bytes(
        self, url: str, max_length: int, timeout: Optional[float] = None
    ) -> bytes:
        """Download ``url`` and return its content.

        Bounded and failing like ``download_file()``.
        """
        with self.download_file(url, max_length, timeout) as dl_file:
            return dl_file.read()
