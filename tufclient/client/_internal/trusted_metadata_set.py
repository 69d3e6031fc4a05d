# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""The metadata a client currently trusts, and the rules for changing it.

``TrustedMetadataSet`` implements the verification half of the client
workflow: it decides whether metadata bytes may become trusted. Finding and
storing those bytes is up to the caller (``Updater``).

Trusted payloads are available by role name (``trusted_set["targets"]``)
and, for top-level roles, as properties (``trusted_set.root``).

Rules:
 * Roles load in order: root, timestamp, snapshot, targets, delegated
   targets. A role cannot load before the roles it depends on, and root and
   timestamp cannot change once the next role has been seen. Calls out of
   order raise ``RuntimeError``.
 * A load either succeeds or leaves the set as it was.
 * Metadata that is correctly signed but stale (expired, or for snapshot a
   version other than the timestamp pin) is remembered as a rollback
   reference. It is never trusted, but later metadata of that role must not
   be older than it.
 * A version equal to the newest known one is only accepted with an
   identical canonical payload.

Example, with ``cache`` and ``download`` provided by the caller:

>>> trusted_set = TrustedMetadataSet(cache.load("root"))
>>> trusted_set.update_root(download("root", trusted_set.root.version + 1))
>>> try:
>>>     trusted_set.update_timestamp(cache.load("timestamp"))
>>> except (RepositoryError, OSError):
>>>     pass  # a bad local file only costs a download
>>> trusted_set.update_timestamp(download("timestamp"))
"""

import logging
from collections import abc
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Type, Union, cast

from tufclient.api import exceptions
from tufclient.api.metadata import (
    Metadata,
    Root,
    Signed,
    Snapshot,
    T,
    Targets,
    Timestamp,
)

logger = logging.getLogger(__name__)

Delegator = Union[Root, Targets]


class TrustedMetadataSet(abc.Mapping):
    """Verified metadata of one client update.

    Args:
        root_data: Root metadata the caller trusts. It is only checked
            against its own keys: it is the source of all other trust.
        reference_time: Time expiry is checked against. Default is now.

    Attributes:
        reference_time: Time expiry is checked against.
        root_chain: Every root this set has trusted, oldest first.

    Raises:
        RepositoryError: ``root_data`` is not valid self-signed root
            metadata.
    """

    def __init__(
        self, root_data: bytes, reference_time: Optional[datetime] = None
    ):
        self.reference_time = reference_time or datetime.now(timezone.utc)
        self.root_chain: List[Root] = []
        self._trusted: Dict[str, Metadata] = {}
        self._references: Dict[str, Metadata] = {}

        # Expiry of a root is only checked once rotation is over
        root_md = _verified(Root, root_data, None, Root.type)
        self._accept(Root.type, root_md)

    def __getitem__(self, role: str) -> Signed:
        return self._trusted[role].signed

    def __len__(self) -> int:
        return len(self._trusted)

    def __iter__(self) -> Iterator[str]:
        return iter(self._trusted)

    @property
    def root(self) -> Root:
        return cast(Root, self[Root.type])

    @property
    def timestamp(self) -> Timestamp:
        return cast(Timestamp, self[Timestamp.type])

    @property
    def snapshot(self) -> Snapshot:
        return cast(Snapshot, self[Snapshot.type])

    @property
    def targets(self) -> Targets:
        return cast(Targets, self[Targets.type])

    def check_freshness(
        self, reference_time: Optional[datetime] = None
    ) -> None:
        """Make ``reference_time`` (default: now) the reference time and
        check that no trusted metadata is expired at it.

        Raises:
            ExpiredMetadataError: Some trusted metadata is expired.
        """
        self.reference_time = reference_time or datetime.now(timezone.utc)
        for role_name in self._trusted:
            self._check_expiry(role_name)

    def update_root(self, data: bytes) -> Root:
        """Verify ``data`` as the next root and trust it.

        The new root must be signed by a threshold of the trusted root's root
        keys and of its own root keys. Its version must be one higher than
        the trusted one. Loading the trusted root again is a no-op. Expiry
        is not checked: an expired root may still lead to a valid newer one.

        Raises:
            RuntimeError: Timestamp has already been loaded.
            RepositoryError: ``data`` is not a valid next root.
        """
        if self._seen(Timestamp.type):
            raise RuntimeError("Root cannot change after timestamp")

        root_md = _verified(Root, data, self.root, Root.type)
        new_root = root_md.signed
        if self._is_known(Root.type, root_md):
            logger.debug("Root v%d is already trusted", new_root.version)
            return self.root

        expected = self.root.version + 1
        if new_root.version != expected:
            raise exceptions.PinMismatchError(
                f"Expected root v{expected}, got v{new_root.version}"
            )

        new_root.verify_delegate(
            Root.type, root_md.signed_bytes, root_md.signatures
        )
        self._accept(Root.type, root_md)
        return new_root

    def update_timestamp(self, data: bytes) -> Timestamp:
        """Verify ``data`` as timestamp and trust it.

        Raises:
            RuntimeError: Snapshot has already been loaded.
            ExpiredMetadataError: The final root or the new timestamp is
                expired. An expired timestamp is kept as rollback reference.
            RepositoryError: ``data`` is not a valid timestamp.
        """
        if self._seen(Snapshot.type):
            raise RuntimeError("Timestamp cannot change after snapshot")

        # Rotation is over: this root is final
        self._check_expiry(Root.type)

        timestamp_md = _verified(Timestamp, data, self.root, Timestamp.type)
        new_timestamp = timestamp_md.signed
        if self._is_known(Timestamp.type, timestamp_md):
            if Timestamp.type in self._trusted:
                logger.debug("Timestamp is unchanged")
                return self.timestamp

        previous = self._newest(Timestamp.type)
        if previous is not None:
            known = cast(Timestamp, previous.signed).snapshot_meta.version
            pinned = new_timestamp.snapshot_meta.version
            if pinned < known:
                raise exceptions.RollbackError(
                    f"Timestamp pins snapshot v{pinned}, older than v{known}"
                )

        if new_timestamp.is_expired(self.reference_time):
            self._keep_reference(Timestamp.type, timestamp_md)
            raise exceptions.ExpiredMetadataError("timestamp.json is expired")

        self._accept(Timestamp.type, timestamp_md)
        return new_timestamp

    def update_snapshot(
        self, data: bytes, trusted: Optional[bool] = False
    ) -> Snapshot:
        """Verify ``data`` as snapshot and trust it.

        Args:
            data: Snapshot metadata.
            trusted: ``data`` was verified by a set like this one before
                (it was read from the local cache). The length and hashes
                pinned by timestamp are then not checked, so an older local
                snapshot still serves as rollback reference.

        Raises:
            RuntimeError: Timestamp is not trusted, or targets has already
                been loaded.
            ExpiredMetadataError: Timestamp or the new snapshot is expired.
            PinMismatchError: ``data`` does not match the timestamp pin.
            RepositoryError: ``data`` is not a valid snapshot.
        """
        if Timestamp.type not in self._trusted:
            raise RuntimeError("Snapshot cannot load before timestamp")
        if Targets.type in self._trusted:
            raise RuntimeError("Snapshot cannot change after targets")

        self._check_expiry(Timestamp.type)
        pin = self.timestamp.snapshot_meta
        if not trusted:
            pin.verify_length_and_hashes(data)

        snapshot_md = _verified(Snapshot, data, self.root, Snapshot.type)
        new_snapshot = snapshot_md.signed
        self._is_known(Snapshot.type, snapshot_md)

        previous = self._newest(Snapshot.type)
        if previous is not None:
            _check_meta_kept(cast(Snapshot, previous.signed), new_snapshot)

        if new_snapshot.is_expired(self.reference_time):
            self._keep_reference(Snapshot.type, snapshot_md)
            raise exceptions.ExpiredMetadataError("snapshot.json is expired")

        if new_snapshot.version != pin.version:
            self._keep_reference(Snapshot.type, snapshot_md)
            raise exceptions.PinMismatchError(
                f"Timestamp pins snapshot v{pin.version}, "
                f"got v{new_snapshot.version}"
            )

        self._accept(Snapshot.type, snapshot_md)
        return new_snapshot

    def update_targets(self, data: bytes) -> Targets:
        """Verify ``data`` as top-level targets and trust it.

        Raises:
            RuntimeError: Snapshot is not trusted.
            RepositoryError: ``data`` is not valid targets metadata.
        """
        return self.update_delegated_targets(data, Targets.type, Root.type)

    def update_delegated_targets(
        self, data: bytes, role_name: str, delegator_name: str
    ) -> Targets:
        """Verify ``data`` as metadata of targets role ``role_name`` and
        trust it.

        Args:
            data: Targets metadata.
            role_name: Name of the role ``data`` is for.
            delegator_name: Name of the trusted role that delegates to
                ``role_name``: "root" for top-level targets.

        Raises:
            RuntimeError: Snapshot or the delegator is not trusted.
            ExpiredMetadataError: Snapshot or the new metadata is expired.
            PinMismatchError: Snapshot has no pin for ``role_name``, or
                ``data`` does not match it.
            RepositoryError: ``data`` is not valid targets metadata.
        """
        if Snapshot.type not in self._trusted:
            raise RuntimeError("Targets cannot load before snapshot")

        self._check_expiry(Snapshot.type)
        delegator = cast(Optional[Delegator], self.get(delegator_name))
        if delegator is None:
            raise RuntimeError(f"Delegator {delegator_name} is not trusted")

        pin = self.snapshot.meta.get(f"{role_name}.json")
        if pin is None:
            raise exceptions.PinMismatchError(
                f"Snapshot has no pin for {role_name}"
            )
        pin.verify_length_and_hashes(data)

        targets_md = _verified(Targets, data, delegator, role_name)
        new_targets = targets_md.signed
        self._is_known(role_name, targets_md)

        if new_targets.version != pin.version:
            raise exceptions.PinMismatchError(
                f"Snapshot pins {role_name} v{pin.version}, "
                f"got v{new_targets.version}"
            )

        if new_targets.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError(f"{role_name} is expired")

        self._accept(role_name, targets_md)
        return new_targets

    def _seen(self, role_name: str) -> bool:
        return role_name in self._trusted or role_name in self._references

    def _check_expiry(self, role_name: str) -> None:
        if self[role_name].is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError(f"{role_name} is expired")

    def _accept(self, role_name: str, md: Metadata) -> None:
        self._trusted[role_name] = md
        self._references.pop(role_name, None)
        if role_name == Root.type:
            self.root_chain.append(cast(Root, md.signed))
        logger.debug("Trusting %s v%d", role_name, md.signed.version)

    def _keep_reference(self, role_name: str, md: Metadata) -> None:
        logger.debug(
            "Keeping %s v%d as reference", role_name, md.signed.version
        )
        self._references[role_name] = md

    def _newest(self, role_name: str) -> Optional[Metadata]:
        """Return the newest verified metadata of ``role_name``: trusted or
        rollback reference.
        """
        known = [
            md
            for md in (
                self._trusted.get(role_name),
                self._references.get(role_name),
            )
            if md is not None
        ]
        if not known:
            return None

        return max(known, key=lambda md: md.signed.version)

    def _is_known(self, role_name: str, md: Metadata) -> bool:
        """Return True if ``md`` is the newest known metadata of
        ``role_name``.

        Raises:
            RollbackError: ``md`` is older than the newest known metadata,
                or has the same version with a different payload.
        """
        newest = self._newest(role_name)
        if newest is None:
            return False

        version, known_version = md.signed.version, newest.signed.version
        if version < known_version:
            raise exceptions.RollbackError(
                f"{role_name} v{version} is older than v{known_version}"
            )
        if version > known_version:
            return False
        if md.signed_bytes != newest.signed_bytes:
            raise exceptions.RollbackError(
                f"{role_name} v{version} differs from the known v{version}"
            )

        return True


def _check_meta_kept(previous: Snapshot, new: Snapshot) -> None:
    """Raise if ``new`` drops or rolls back a pin that ``previous`` has."""
    for filename, old_pin in previous.meta.items():
        new_pin = new.meta.get(filename)
        if new_pin is None:
            raise exceptions.RoleRemovedError(
                f"Snapshot v{new.version} no longer lists {filename}"
            )
        if new_pin.version < old_pin.version:
            raise exceptions.RollbackError(
                f"Snapshot v{new.version} pins {filename} v{new_pin.version}"
                f", older than v{old_pin.version}"
            )


def _verified(
    payload_type: Type[T],
    data: bytes,
    delegator: Optional[Delegator],
    role_name: str,
) -> Metadata[T]:
    """Parse ``data`` and check its payload type and signatures.

    Without a delegator the payload must be a root that verifies itself.
    """
    md = Metadata[T].from_bytes(data)
    if not isinstance(md.signed, payload_type):
        raise exceptions.MalformedMetadataError(
            f"Expected {payload_type.type} metadata, got {md.signed.type}"
        )

    issuer = delegator if delegator is not None else md.signed
    issuer.verify_delegate(role_name, md.signed_bytes, md.signatures)
    return md
