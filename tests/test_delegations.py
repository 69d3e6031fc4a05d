# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for 'tufclient/client/_internal/delegations.py'."""

import sys
import unittest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from tests import utils
from tufclient.api.exceptions import DelegationNotFoundError
from tufclient.api.metadata import (
    SPECIFICATION_VERSION,
    DelegatedRole,
    Delegations,
    SuccinctRoles,
    TargetFile,
    Targets,
)
from tufclient.client._internal.delegations import DelegationResolver


def _empty_targets() -> Targets:
    expires = datetime.now(timezone.utc) + timedelta(days=1)
    return Targets(1, SPECIFICATION_VERSION, expires, targets={})


class TestDelegationResolver(unittest.TestCase):
    """Walk in-memory delegation graphs without any metadata verification."""

    def setUp(self) -> None:
        self.roles: Dict[str, Targets] = {"targets": _empty_targets()}
        self.loads: List[Tuple[str, str]] = []

    def _load(self, role: str, delegator: str) -> Targets:
        self.loads.append((role, delegator))
        return self.roles[role]

    def _delegate(
        self,
        delegator: str,
        name: str,
        terminating: bool = False,
        paths: Optional[List[str]] = None,
    ) -> None:
        targets = self.roles[delegator]
        if targets.delegations is None:
            targets.delegations = Delegations({}, roles={})
        assert targets.delegations.roles is not None
        role = DelegatedRole([], 1, name, terminating, paths or ["*"])
        targets.delegations.roles[name] = role
        self.roles.setdefault(name, _empty_targets())

    def _add_target(self, role: str, path: str) -> TargetFile:
        target = TargetFile(1, {"sha256": "abc"}, path)
        self.roles[role].targets[path] = target
        return target

    def _walk(
        self, path: str, resolver: Optional[DelegationResolver] = None
    ) -> Optional[TargetFile]:
        resolver = resolver or DelegationResolver()
        return resolver.walk(path, self._load)

    def test_resolve(self) -> None:
        self.assertEqual(
            DelegationResolver.resolve("a", self.roles["targets"]), []
        )

        self._delegate("targets", "A", paths=["a/*"])
        self._delegate("targets", "B", terminating=True)
        self._delegate("targets", "C")
        self.assertEqual(
            DelegationResolver.resolve("a/file", self.roles["targets"]),
            [("A", False), ("B", True)],
        )
        self.assertEqual(
            DelegationResolver.resolve("other", self.roles["targets"]),
            [("B", True)],
        )

    def test_resolve_succinct_roles(self) -> None:
        targets = self.roles["targets"]
        succinct = SuccinctRoles([], 1, bit_length=4, name_prefix="bin")
        targets.delegations = Delegations({}, succinct_roles=succinct)

        # sha256("a/path") starts with 0x9
        self.assertEqual(
            DelegationResolver.resolve("a/path", targets), [("bin-9", True)]
        )

    def test_target_in_top_level(self) -> None:
        target = self._add_target("targets", "file")
        self.assertIs(self._walk("file"), target)
        self.assertEqual(self.loads, [("targets", "root")])

    def test_preorder_search(self) -> None:
        #   targets -> A -> B
        #          \-> C
        self._delegate("targets", "A")
        self._delegate("targets", "C")
        self._delegate("A", "B")
        target = self._add_target("C", "file")

        self.assertIs(self._walk("file"), target)
        self.assertEqual(
            self.loads,
            [
                ("targets", "root"),
                ("A", "targets"),
                ("B", "A"),
                ("C", "targets"),
            ],
        )

    def test_first_match_wins(self) -> None:
        self._delegate("targets", "A")
        self._delegate("targets", "B")
        target_a = self._add_target("A", "file")
        self._add_target("B", "file")
        self.assertIs(self._walk("file"), target_a)

    def test_cycle_is_skipped(self) -> None:
        self._delegate("targets", "A")
        self._delegate("A", "targets")
        self.assertIsNone(self._walk("file"))
        self.assertEqual(self.loads, [("targets", "root"), ("A", "targets")])

    def test_terminating_delegation(self) -> None:
        self._delegate("targets", "A", terminating=True)
        self._delegate("targets", "B")
        self._add_target("B", "file")

        with self.assertRaises(DelegationNotFoundError):
            self._walk("file")
        self.assertEqual(self.loads, [("targets", "root"), ("A", "targets")])

    def test_terminating_delegation_below_other_roles(self) -> None:
        # A -> C is terminating: B is never searched
        self._delegate("targets", "A")
        self._delegate("targets", "B")
        self._delegate("A", "C", terminating=True)
        self._add_target("B", "file")

        with self.assertRaises(DelegationNotFoundError):
            self._walk("file")
        self.assertEqual(
            self.loads,
            [("targets", "root"), ("A", "targets"), ("C", "A")],
        )

    def test_non_matching_terminating_delegation(self) -> None:
        self._delegate("targets", "A", terminating=True, paths=["other"])
        target = self._add_target("targets", "file")
        self.assertIs(self._walk("file"), target)

        self.assertIsNone(self._walk("missing"))

    def test_max_delegations(self) -> None:
        self._delegate("targets", "A")
        self._delegate("A", "B")
        self._add_target("B", "file")

        self.assertIsNone(self._walk("file", DelegationResolver(1, 16)))
        self.assertEqual(self.loads, [("targets", "root"), ("A", "targets")])

    def test_max_delegation_depth(self) -> None:
        self._delegate("targets", "A")
        self._delegate("A", "B")
        self._add_target("B", "file")

        self.assertIsNone(self._walk("file", DelegationResolver(32, 1)))
        self.assertEqual(self.loads, [("targets", "root"), ("A", "targets")])

        self.loads.clear()
        self.assertIsNotNone(self._walk("file", DelegationResolver(32, 2)))

    def test_terminating_delegation_beyond_max_depth(self) -> None:
        # A delegates to C (terminating) one level below the depth limit.
        # C is not searched, and neither is B.
        self._delegate("targets", "A")
        self._delegate("targets", "B")
        self._delegate("A", "C", terminating=True)
        self._add_target("B", "file")
        self._add_target("C", "file")

        with self.assertRaises(DelegationNotFoundError):
            self._walk("file", DelegationResolver(32, 1))
        self.assertEqual(self.loads, [("targets", "root"), ("A", "targets")])

    def test_terminating_delegation_from_top_level_beyond_max_depth(
        self,
    ) -> None:
        self._delegate("targets", "A", terminating=True)
        self._add_target("A", "file")

        with self.assertRaises(DelegationNotFoundError):
            self._walk("file", DelegationResolver(32, 0))
        self.assertEqual(self.loads, [("targets", "root")])


if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
