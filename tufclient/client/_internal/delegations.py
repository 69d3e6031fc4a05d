# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Target delegation graph traversal.

``DelegationResolver`` finds the role responsible for a target path by
walking the graph of target delegations, starting from the top-level targets
role. The order of delegations in a delegating role defines their
trustworthiness: the first role that lists the target wins.
"""

import logging
from typing import Callable, List, Optional, Set, Tuple

from tufclient.api import exceptions
from tufclient.api.metadata import Root, TargetFile, Targets

logger = logging.getLogger(__name__)

# Loads and returns verified targets metadata for (role name, delegator name)
TargetsLoader = Callable[[str, str], Targets]


class DelegationResolver:
    """Resolves target paths through the delegation graph.

    Args:
        max_delegations: Maximum number of delegated targets roles loaded
            for one target path. The top-level targets role is not counted.
        max_delegation_depth: Maximum length of a delegation chain below the
            top-level targets role.
    """

    def __init__(
        self, max_delegations: int = 32, max_delegation_depth: int = 16
    ):
        self.max_delegations = max_delegations
        self.max_delegation_depth = max_delegation_depth

    @staticmethod
    def resolve(target_path: str, targets: Targets) -> List[Tuple[str, bool]]:
        """Return (role name, terminating) of the roles ``targets``
        delegates ``target_path`` to, in search order.

        The list ends at the first terminating delegation: roles after it
        are never searched.
        """
        candidates: List[Tuple[str, bool]] = []
        if targets.delegations is None:
            return candidates

        for name, terminating in targets.delegations.get_roles_for_target(
            target_path
        ):
            candidates.append((name, terminating))
            if terminating:
                break

        return candidates

    def walk(
        self, target_path: str, load_targets: TargetsLoader
    ) -> Optional[TargetFile]:
        """Search the delegation graph for ``target_path``, depth first in
        order of delegation.

        A matching terminating delegation limits the rest of the search to
        the role it delegates to: no other role not yet visited is searched,
        even when the terminating role cannot be searched itself because of
        the depth limit.

        Args:
            target_path: Target path to look for.
            load_targets: Returns verified ``Targets`` for a (role name,
                delegator name) pair.

        Raises:
            DelegationNotFoundError: The search ended at a terminating
                delegation without finding the target.
            RepositoryError: Metadata failed to load or verify.

        Returns:
            The ``TargetFile``, or None if the target was not found.
        """
        # Stack of (role name, delegator name, depth)
        pending = [(Targets.type, Root.type, 0)]
        searched: Set[str] = set()
        terminated_by: Optional[str] = None

        while pending:
            if len(searched) > self.max_delegations:
                logger.debug(
                    "Giving up on %s: %d roles unsearched after loading %d "
                    "delegated roles",
                    target_path,
                    len(pending),
                    self.max_delegations,
                )
                return None

            role_name, delegator_name, depth = pending.pop()
            if role_name in searched:
                logger.debug("Skipping %s: already searched", role_name)
                continue

            targets = load_targets(role_name, delegator_name)
            target = targets.targets.get(target_path)
            if target is not None:
                logger.debug("Found %s in %s", target_path, role_name)
                return target

            searched.add(role_name)

            children = self.resolve(target_path, targets)
            if children and children[-1][1]:
                terminated_by = children[-1][0]
                logger.debug("Search limited to %s", terminated_by)
                pending.clear()

            if children and depth >= self.max_delegation_depth:
                logger.debug(
                    "Not searching delegations of %s: depth limit %d",
                    role_name,
                    self.max_delegation_depth,
                )
                continue

            # Reversed, so that the first delegation is popped first
            pending.extend(
                (child, role_name, depth + 1) for child, _ in reversed(children)
            )

        if terminated_by is not None:
            raise exceptions.DelegationNotFoundError(
                f"{target_path} not found: search ended at terminating "
                f"delegation to {terminated_by}"
            )

        return None
