"""Dependency resolution for stack orchestration.

Orders a stack set so every stack follows the stacks it depends on, and
produces the exact reverse of that order for teardown.
"""

import logging
from collections.abc import Sequence

from stackset import StackDescriptor

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Structural problem in a stack set, raised before any remote call."""


class DuplicateStackError(ResolutionError):
    """Two descriptors share a name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate stack name: '{name}'")


class UnknownDependencyError(ResolutionError):
    """A depends_on entry names a stack that is not in the set."""

    def __init__(self, stack_name: str, missing: str):
        self.stack_name = stack_name
        self.missing = missing
        super().__init__(f"Stack '{stack_name}' depends on unknown stack '{missing}'")


class CycleError(ResolutionError):
    """The dependency graph contains a cycle.

    Attributes:
        members: Stack names on the cycle, in dependency order
    """

    def __init__(self, members: list[str]):
        self.members = members
        path = ' -> '.join(members + members[:1])
        super().__init__(f"Dependency cycle detected: {path}")


class DependencyResolver:
    """Topological ordering of stack descriptors.

    Ties between stacks that are ready at the same time are broken by their
    position in the input sequence, so the same input always yields the same
    order.
    """

    def resolve(self, descriptors: Sequence[StackDescriptor]) -> list[StackDescriptor]:
        """Return descriptors in deployment order (dependencies first).

        Raises:
            DuplicateStackError: If two descriptors share a name
            UnknownDependencyError: If a depends_on entry is not in the set
            CycleError: If the dependencies form a cycle
        """
        index: dict[str, int] = {}
        for i, desc in enumerate(descriptors):
            if desc.name in index:
                raise DuplicateStackError(desc.name)
            index[desc.name] = i

        for desc in descriptors:
            for dep in desc.depends_on:
                if dep not in index:
                    raise UnknownDependencyError(desc.name, dep)

        # Kahn's algorithm; the ready list is kept sorted by declaration index
        dependents: dict[str, list[str]] = {d.name: [] for d in descriptors}
        indegree: dict[str, int] = {}
        for desc in descriptors:
            deps = set(desc.depends_on)
            indegree[desc.name] = len(deps)
            for dep in deps:
                dependents[dep].append(desc.name)

        ready = sorted((n for n, deg in indegree.items() if deg == 0), key=index.__getitem__)
        ordered: list[StackDescriptor] = []
        while ready:
            name = ready.pop(0)
            ordered.append(descriptors[index[name]])
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)
            ready.sort(key=index.__getitem__)

        if len(ordered) != len(descriptors):
            remaining = [d for d in descriptors if indegree[d.name] > 0]
            raise CycleError(self._find_cycle(remaining))

        logger.debug(f"Resolved order: {', '.join(d.name for d in ordered)}")
        return ordered

    def reverse(self, ordered: Sequence[StackDescriptor]) -> list[StackDescriptor]:
        """Return the teardown order: the exact reversal of a resolved order."""
        return list(reversed(ordered))

    def _find_cycle(self, remaining: list[StackDescriptor]) -> list[str]:
        """Extract one cycle from the stacks Kahn's algorithm could not place.

        DFS with visiting/visited markers; the first back edge found closes
        the cycle.
        """
        deps = {d.name: list(d.depends_on) for d in remaining}
        visited: set[str] = set()
        visiting: list[str] = []

        def _visit(name: str) -> list[str]:
            if name in visiting:
                return visiting[visiting.index(name):]
            if name in visited or name not in deps:
                return []
            visiting.append(name)
            for dep in deps[name]:
                cycle = _visit(dep)
                if cycle:
                    return cycle
            visiting.pop()
            visited.add(name)
            return []

        for desc in remaining:
            cycle = _visit(desc.name)
            if cycle:
                # visiting holds dependents before dependencies; report dependencies first
                return list(reversed(cycle))
        # Unreachable when Kahn's algorithm left nodes behind
        return [d.name for d in remaining]
