"""Dependency graph utilities.

Builds the reverse-dependency ("dependents") graph between workspace
packages and orders packages so that every dependency comes before the
packages that depend on it. The same order drives cascade propagation and
publishing: when package A depends on package B, B is published first.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from .errors import DependencyCycleError
from .models import DependencyGraph, Package, PackageOrder


def build_graph(packages: Iterable[Package]) -> DependencyGraph:
    """Build the dependents adjacency for a set of packages.

    Declared dependencies that are not workspace packages are ignored, so
    every edge in the result references a known package.

    Example:
        ui depends on core → dependents == {"core": {"ui"}, "ui": set()}
    """
    by_name = {pkg.name: pkg for pkg in packages}
    dependents: dict[str, set[str]] = {name: set() for name in by_name}

    for name, pkg in by_name.items():
        for dep in pkg.all_dependencies:
            if dep in by_name and dep != name:
                dependents[dep].add(name)

    return DependencyGraph(packages=by_name, dependents=dependents)


def affected_packages(graph: DependencyGraph, changed: Iterable[str]) -> set[str]:
    """Return ``changed`` plus every package that transitively depends on it.

    Uses an explicit work-list rather than recursion since workspace graphs
    are user-controlled and may be arbitrarily deep.
    """
    affected: set[str] = set()
    queue = deque(name for name in changed if name in graph.packages)
    while queue:
        name = queue.popleft()
        if name in affected:
            continue
        affected.add(name)
        queue.extend(sorted(graph.dependents[name] - affected))
    return affected


def _cycle_members(graph: DependencyGraph, unresolved: set[str]) -> set[str]:
    """Return the unresolved packages that sit on a dependency cycle.

    Kahn's algorithm leaves both the cycles and everything downstream of
    them unresolved, including packages wedged between two cycles. Only the
    strongly connected components with more than one member are cycles
    (self-dependencies are dropped by build_graph). Components are found
    with Tarjan's algorithm driven by an explicit stack.
    """

    def successors(name: str) -> list[str]:
        return sorted(graph.dependents[name] & unresolved)

    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    members: set[str] = set()

    for root in sorted(unresolved):
        if root in index:
            continue
        index[root] = lowlink[root] = len(index)
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(successors(root)))]

        while work:
            name, pending = work[-1]
            descended = False
            for succ in pending:
                if succ not in index:
                    index[succ] = lowlink[succ] = len(index)
                    stack.append(succ)
                    on_stack.add(succ)
                    work.append((succ, iter(successors(succ))))
                    descended = True
                    break
                if succ in on_stack:
                    lowlink[name] = min(lowlink[name], index[succ])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[name])
            if lowlink[name] == index[name]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == name:
                        break
                if len(component) > 1:
                    members.update(component)

    return members


def topological_order(
    graph: DependencyGraph, seed: Iterable[str] | None = None
) -> list[PackageOrder]:
    """Order packages by dependency level using Kahn's algorithm.

    The seed (default: every package) is first extended with all of its
    transitive dependents, since a dependent of a changed package is itself
    affected. Packages whose in-workspace dependencies all lie outside that
    set start at level 0; every other package sits one level above its
    deepest dependency. Names within a level are sorted for deterministic
    output, but carry no ordering constraint between them.

    Args:
        graph: Dependency graph of the workspace.
        seed: Names of packages to order, e.g. packages with changes.

    Returns:
        PackageOrder entries sorted by level ascending.

    Raises:
        DependencyCycleError: If the extended set contains a cycle. The error
            names the unresolved packages that sit on the cycle, not the
            packages merely downstream of it.
    """
    names = affected_packages(graph, graph.packages if seed is None else seed)

    # Count incoming edges from within the set being ordered
    in_degree = {name: 0 for name in names}
    for name in names:
        for dependent in graph.dependents[name]:
            if dependent in names:
                in_degree[dependent] += 1

    levels = {name: 0 for name in names}
    queue = deque(sorted(name for name, degree in in_degree.items() if degree == 0))
    ordered: list[str] = []

    while queue:
        name = queue.popleft()
        ordered.append(name)
        for dependent in sorted(graph.dependents[name]):
            if dependent not in names:
                continue
            levels[dependent] = max(levels[dependent], levels[name] + 1)
            in_degree[dependent] -= 1
            # All dependencies placed: the dependent can be placed too
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(names):
        raise DependencyCycleError(_cycle_members(graph, names - set(ordered)))

    result = [
        PackageOrder(package=graph.packages[name], level=levels[name])
        for name in ordered
    ]
    result.sort(key=lambda entry: (entry.level, entry.package.name))
    return result
