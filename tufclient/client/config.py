# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Limits and options of an ``Updater``."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class UpdaterConfig:
    """Limits that bound the work a repository can make the client do, and
    client options.

    Args:
        max_root_rotations: Number of new root versions loaded in one
            refresh, at most.
        max_delegations: Number of delegated targets roles loaded for one
            target lookup, at most.
        max_delegation_depth: Length of a delegation chain below top-level
            targets, at most.
        root_max_length: Size limit of a root file in bytes.
        timestamp_max_length: Size limit of a timestamp file in bytes.
        snapshot_max_length: Size limit of a snapshot file in bytes, used
            when timestamp does not pin the length.
        targets_max_length: Size limit of a targets file in bytes, used when
            snapshot does not pin the length.
        fetch_timeout: Seconds one download may take in total. None means
            only the fetcher's own socket timeout applies.
        prefix_targets_with_hash: Request targets as ``<hash>.<name>`` when
            the repository uses consistent snapshots. Set to False for
            repositories that publish targets under their plain names only.
        app_user_agent: Prepended to the user agent of the default fetcher,
            e.g. "MyApp/1.0.0".
    """

    max_root_rotations: int = 256
    max_delegations: int = 32
    max_delegation_depth: int = 16
    root_max_length: int = 512000
    timestamp_max_length: int = 16384
    snapshot_max_length: int = 2000000
    targets_max_length: int = 5000000
    fetch_timeout: Optional[float] = None
    prefix_targets_with_hash: bool = True
    app_user_agent: Optional[str] = None
