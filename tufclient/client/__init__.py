# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""TUF client public API."""

from tufclient.api.metadata import TargetFile
from tufclient.client._internal.requests_fetcher import RequestsFetcher
from tufclient.client.cache import MetadataCache
from tufclient.client.config import UpdaterConfig
from tufclient.client.fetcher import FetcherInterface
from tufclient.client.updater import Updater

__all__ = [  # noqa: PLE0604
    FetcherInterface.__name__,
    MetadataCache.__name__,
    RequestsFetcher.__name__,
    TargetFile.__name__,
    Updater.__name__,
    UpdaterConfig.__name__,
]
