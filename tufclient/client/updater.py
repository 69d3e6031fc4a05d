# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Client update workflow.

``Updater`` implements the `TUF client workflow
<https://theupdateframework.github.io/specification/latest/#detailed-client-workflow>`_:
it finds out which target files a repository currently offers, and downloads
them so that every byte is verified by signed metadata.

Using an ``Updater``:
  * Creating one loads the trusted root from the metadata directory. That
    root is the source of trust for all other metadata. Without a usable
    local root the ``bootstrap`` root given by the application is used, and
    stored.
  * ``refresh()`` updates the top-level metadata from the local cache and
    the remote repository. The first target lookup refreshes implicitly. A
    failed refresh keeps the metadata trusted before it in use, except that
    newer roots verified before the failure are kept.
  * For each target, ``get_targetinfo()`` looks up its length and hashes,
    loading delegated targets metadata as needed.
    ``find_cached_target()`` checks for an up to date local copy, and
    ``download_target()`` downloads and verifies the file.

One ``Updater`` serializes its refreshes and lookups. Several ``Updater``
instances sharing a metadata directory at the same time are not supported.
"""

import functools
import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar, cast
from urllib import parse

from tufclient.api import exceptions
from tufclient.api.metadata import (
    MetaFile,
    Root,
    Snapshot,
    TargetFile,
    Targets,
    Timestamp,
)
from tufclient.client._internal import requests_fetcher
from tufclient.client._internal.delegations import DelegationResolver
from tufclient.client._internal.trusted_metadata_set import TrustedMetadataSet
from tufclient.client.cache import MetadataCache
from tufclient.client.config import UpdaterConfig
from tufclient.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
S = TypeVar("S")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Updater:
    """Verified access to the targets of one repository.

    Args:
        metadata_dir: Writable local metadata directory. It should contain
            a trusted root.json.
        metadata_base_url: Base URL of the remote metadata.
        target_dir: Writable local target directory, the default location
            for ``find_cached_target()`` and ``download_target()``.
        target_base_url: Default base URL of remote targets, overridable in
            ``download_target()``.
        fetcher: Downloads metadata and targets. Default is a
            ``RequestsFetcher``.
        config: Limits and options. Default is ``UpdaterConfig()``.
        bootstrap: Root metadata to trust (and store in ``metadata_dir``)
            when there is no usable local root.json.
        clock: Returns the current time as a timezone aware datetime.
            Metadata expiry is checked against it.

    Raises:
        BootstrapMissingError: No usable local root.json and no
            ``bootstrap``.
        RepositoryError: ``bootstrap`` is not valid root metadata.
        OSError: ``bootstrap`` could not be stored.
    """

    def __init__(
        self,
        metadata_dir: str,
        metadata_base_url: str,
        target_dir: Optional[str] = None,
        target_base_url: Optional[str] = None,
        fetcher: Optional[FetcherInterface] = None,
        config: Optional[UpdaterConfig] = None,
        bootstrap: Optional[bytes] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or UpdaterConfig()
        self.target_dir = target_dir
        self._cache = MetadataCache(metadata_dir)
        self._metadata_base_url = _with_trailing_slash(metadata_base_url)
        self._target_base_url = None
        if target_base_url is not None:
            self._target_base_url = _with_trailing_slash(target_base_url)

        self._bootstrap = bootstrap
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._fetcher = fetcher or requests_fetcher.RequestsFetcher(
            app_user_agent=self.config.app_user_agent
        )

        self._trusted_set = self._load_trusted_root()

    def refresh(self) -> None:
        """Update the top-level metadata: root, timestamp, snapshot and
        targets, in that order.

        The update is built on the stored root in a new trusted set, which
        replaces the metadata in use only if every step succeeds. There is
        one exception: if root rotation fails after newer roots have been
        verified, the newest of them replaces the metadata in use on its own,
        so the next lookup refreshes again. Verified roots are stored as
        soon as they are verified.

        Delegated targets metadata is loaded on demand by
        ``get_targetinfo()``. With `consistent snapshots
        <https://theupdateframework.github.io/specification/latest/#consistent-snapshots>`_
        it comes from the same repository state as the top-level metadata.

        Raises:
            OSError: New metadata could not be stored.
            RepositoryError: Metadata failed to verify.
            TransportError: Metadata could not be downloaded.
        """
        with self._lock:
            trusted_set = self._load_trusted_root()
            try:
                self._load_root(trusted_set)
            except Exception:
                if len(trusted_set.root_chain) > 1:
                    logger.debug(
                        "Root rotation stopped at v%d",
                        trusted_set.root.version,
                    )
                    self._trusted_set = trusted_set
                raise

            self._load_timestamp(trusted_set)
            self._load_snapshot(trusted_set)
            self._load_targets(trusted_set, Targets.type, Root.type)

            self._trusted_set = trusted_set
            logger.debug("Refreshed to root v%d", trusted_set.root.version)

    def get_targetinfo(self, target_path: str) -> Optional[TargetFile]:
        """Return the ``TargetFile`` for ``target_path``, or None if the
        repository has no such target.

        Refreshes first if top-level targets metadata is not loaded yet.
        Delegated targets metadata needed for the lookup is loaded, at most
        once per refresh for each role.

        Args:
            target_path: `path-relative-URL string
                <https://url.spec.whatwg.org/#path-relative-url-string>`_
                that identifies the target within the repository.

        Raises:
            OSError: New metadata could not be stored.
            ExpiredMetadataError: Trusted metadata expired since refresh.
            DelegationNotFoundError: A terminating delegation matched
                ``target_path`` but the target was not found below it.
            RepositoryError: Metadata failed to verify.
            TransportError: Metadata could not be downloaded.
        """
        with self._lock:
            if Targets.type not in self._trusted_set:
                self.refresh()

            trusted_set = self._trusted_set
            trusted_set.check_freshness(self._clock())
            resolver = DelegationResolver(
                self.config.max_delegations, self.config.max_delegation_depth
            )
            return resolver.walk(
                target_path, functools.partial(self._load_targets, trusted_set)
            )

    def find_cached_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
    ) -> Optional[str]:
        """Return ``filepath`` if it holds the target described by
        ``targetinfo``, otherwise None.

        ``filepath`` defaults to a file in ``target_dir`` named after the
        target path.

        Raises:
            ValueError: Neither ``filepath`` nor ``target_dir`` is set.
        """
        filepath = filepath or self._target_file_path(targetinfo)
        try:
            with open(filepath, "rb") as target_file:
                targetinfo.verify_length_and_hashes(target_file)
        except (OSError, exceptions.PinMismatchError):
            return None

        return filepath

    def download_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
        target_base_url: Optional[str] = None,
    ) -> str:
        """Download the target described by ``targetinfo`` and return the
        path it was written to.

        Args:
            targetinfo: ``TargetFile`` from ``get_targetinfo()``.
            filepath: File to write, overwritten if it exists. Defaults to
                a file in ``target_dir`` named after the target path.
            target_base_url: Base URL of the target. Defaults to the one
                given to ``Updater()``.

        Raises:
            ValueError: No file path or no base URL is available.
            TransportError: The target could not be downloaded.
            PinMismatchError: The download does not match ``targetinfo``.
            OSError: The target could not be written.
        """
        filepath = filepath or self._target_file_path(targetinfo)
        if target_base_url is not None:
            target_base_url = _with_trailing_slash(target_base_url)
        else:
            target_base_url = self._target_base_url
        if target_base_url is None:
            raise ValueError(
                "target_base_url must be given to Updater() or "
                "download_target()"
            )

        target_path = targetinfo.path
        if (
            self._trusted_set.root.consistent_snapshot
            and self.config.prefix_targets_with_hash
        ):
            target_path = targetinfo.get_prefixed_paths()[0]

        with self._fetcher.download_file(
            f"{target_base_url}{target_path}",
            targetinfo.length,
            self.config.fetch_timeout,
        ) as target_file:
            targetinfo.verify_length_and_hashes(target_file)
            target_file.seek(0)
            with open(filepath, "wb") as destination:
                shutil.copyfileobj(target_file, destination)

        logger.debug("Downloaded %s to %s", targetinfo.path, filepath)
        return filepath

    def _target_file_path(self, targetinfo: TargetFile) -> str:
        if self.target_dir is None:
            raise ValueError("target_dir must be set if filepath is not given")

        # The quoted target path is a flat, safe file name
        return os.path.join(self.target_dir, parse.quote(targetinfo.path, ""))

    def _download_metadata(
        self, role: str, max_length: int, version: Optional[int] = None
    ) -> bytes:
        """Download metadata of ``role``, by version if ``version`` is set."""
        if role == Root.type:
            # Root is always requested by version
            filename = f"{version}.root.json"
        else:
            filename = MetadataCache.filename_for(
                role, version, version is not None
            )

        return self._fetcher.download_bytes(
            f"{self._metadata_base_url}{filename}",
            max_length,
            self.config.fetch_timeout,
        )

    def _download_pinned(
        self,
        trusted_set: TrustedMetadataSet,
        role: str,
        pin: MetaFile,
        max_length: int,
    ) -> bytes:
        """Download metadata of ``role`` as pinned by its parent.

        The pinned length, if any, replaces ``max_length``. The pinned
        version is requested under consistent snapshots.
        """
        version = None
        if trusted_set.root.consistent_snapshot:
            version = pin.version

        return self._download_metadata(role, pin.length or max_length, version)

    def _load_trusted_root(self) -> TrustedMetadataSet:
        """Return a new trusted set built on the stored root, or on the
        bootstrap root if the stored one is missing or invalid.
        """
        try:
            return TrustedMetadataSet(
                self._cache.load(Root.type), self._clock()
            )
        except (OSError, exceptions.RepositoryError) as e:
            if self._bootstrap is None:
                raise exceptions.BootstrapMissingError(
                    "No usable local root.json and no bootstrap root"
                ) from e
            logger.debug("Using bootstrap root: local root not usable: %s", e)

        trusted_set = TrustedMetadataSet(self._bootstrap, self._clock())
        self._cache.store(Root.type, self._bootstrap)
        return trusted_set

    def _load_root(self, trusted_set: TrustedMetadataSet) -> None:
        """Rotate to the newest remote root, one version at a time.

        Every verified root is stored right away.
        """
        for _ in range(self.config.max_root_rotations):
            next_version = trusted_set.root.version + 1
            try:
                data = self._download_metadata(
                    Root.type, self.config.root_max_length, next_version
                )
            except exceptions.HTTPStatusError as e:
                # 403 and 404 mean there is no newer root
                if e.status_code not in {403, 404}:
                    raise
                break

            trusted_set.update_root(data)
            if trusted_set.root.version != next_version:
                logger.debug("Root v%d was served again", next_version - 1)
                break
            self._cache.store(Root.type, data)

        # Fast-forward attack recovery: metadata signed by rotated keys is no
        # reference for rollback checks
        old_root, new_root = trusted_set.root_chain[0], trusted_set.root
        if any(
            new_root.role_keys_changed(old_root, role)
            for role in (Timestamp.type, Snapshot.type)
        ):
            logger.debug("Timestamp or snapshot keys rotated")
            self._cache.remove(Timestamp.type)
            self._cache.remove(Snapshot.type)

    def _load_cached(
        self, role: str, update: Callable[[bytes], S]
    ) -> Optional[S]:
        """Return the result of ``update`` on the cached metadata of
        ``role``, or None if there is none or it does not verify.
        """
        try:
            return update(self._cache.load(role))
        except (OSError, exceptions.RepositoryError) as e:
            logger.debug("Cached %s not usable: %s", role, e)
            return None

    def _load_timestamp(self, trusted_set: TrustedMetadataSet) -> None:
        # The cached timestamp, even if not trusted, protects against
        # rollback of the remote one
        cached = self._load_cached(
            Timestamp.type, trusted_set.update_timestamp
        )
        data = self._download_metadata(
            Timestamp.type, self.config.timestamp_max_length
        )
        if trusted_set.update_timestamp(data) is not cached:
            self._cache.store(Timestamp.type, data)

    def _load_snapshot(self, trusted_set: TrustedMetadataSet) -> None:
        update_cached = functools.partial(
            trusted_set.update_snapshot, trusted=True
        )
        if self._load_cached(Snapshot.type, update_cached) is not None:
            logger.debug("Cached snapshot is current")
            return

        data = self._download_pinned(
            trusted_set,
            Snapshot.type,
            trusted_set.timestamp.snapshot_meta,
            self.config.snapshot_max_length,
        )
        trusted_set.update_snapshot(data)
        self._cache.store(Snapshot.type, data)

    def _load_targets(
        self, trusted_set: TrustedMetadataSet, role: str, delegator: str
    ) -> Targets:
        """Return trusted metadata of targets role ``role``, loading it from
        the cache or the remote repository if needed.
        """
        if role in trusted_set:
            return cast(Targets, trusted_set[role])

        def update(data: bytes) -> Targets:
            return trusted_set.update_delegated_targets(data, role, delegator)

        targets = self._load_cached(role, update)
        if targets is not None:
            logger.debug("Cached %s is current", role)
            return targets

        pin = trusted_set.snapshot.meta.get(f"{role}.json")
        if pin is None:
            raise exceptions.PinMismatchError(
                f"{role} is delegated but snapshot has no pin for it"
            )

        data = self._download_pinned(
            trusted_set, role, pin, self.config.targets_max_length
        )
        targets = update(data)
        self._cache.store(role, data)
        return targets


def _with_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"
