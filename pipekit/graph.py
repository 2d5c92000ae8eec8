"""Dependency graph of pipeline steps."""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field


class GraphError(Exception):
    """Raised for self-dependencies and dependency cycles."""


@dataclass
class GraphStep:
    """The parts of a pipeline step the graph needs.

    ``run`` is a single command, ``strings`` a list of commands and
    ``sub_runs`` a list of ``(id, command)`` pairs.
    """

    id: str
    run: str = ""
    strings: list[str] = field(default_factory=list)
    sub_runs: list[tuple[str, str]] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


@dataclass
class Graph:
    """A DAG of step dependencies."""

    deps: dict[str, list[str]] = field(default_factory=dict)
    dependents: dict[str, list[str]] = field(default_factory=dict)
    in_degree: dict[str, int] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


_PIPE_VAR = re.compile(r"\$\{?PIPE_([A-Z0-9_]+)\}?")


def env_key(*args: str) -> str:
    """Environment key for step output: joined by '_', hyphens replaced, upper-cased."""
    joined = "_".join(args).replace("-", "_")
    return "PIPE_" + joined.upper()


def find_pipe_refs(step: GraphStep) -> list[str]:
    """All distinct PIPE_* variable names referenced in the step's commands."""
    commands: list[str] = []
    if step.run:
        commands.append(step.run)
    commands.extend(step.strings)
    commands.extend(command for _, command in step.sub_runs)
    refs = (
        "PIPE_" + match.group(1)
        for command in commands
        for match in _PIPE_VAR.finditer(command)
    )
    return list(dict.fromkeys(refs))


def build(steps: list[GraphStep]) -> Graph:
    """Build the graph from explicit ``depends_on`` and implicit $PIPE_* references.

    Unknown dependencies are dropped with a warning; self-dependencies and
    cycles raise GraphError.
    """
    graph = Graph()
    known: set[str] = set()
    producers: dict[str, str] = {}
    for step in steps:
        graph.order.append(step.id)
        graph.in_degree[step.id] = 0
        known.add(step.id)
        producers[env_key(step.id)] = step.id
        for sub_id, _ in step.sub_runs:
            producers[env_key(step.id, sub_id)] = step.id

    edges: set[tuple[str, str]] = set()

    def add_edge(source: str, target: str) -> None:
        if (source, target) in edges:
            return
        edges.add((source, target))
        graph.deps.setdefault(target, []).append(source)
        graph.dependents.setdefault(source, []).append(target)
        graph.in_degree[target] += 1

    for step in steps:
        for dep in step.depends_on:
            if dep == step.id:
                raise GraphError(f'step "{step.id}": self-dependency')
            if dep not in known:
                graph.warnings.append(f'step "{step.id}": unknown dependency "{dep}" (ignored)')
                continue
            add_edge(dep, step.id)
        for ref in find_pipe_refs(step):
            producer = producers.get(ref)
            if producer is not None and producer != step.id:
                add_edge(producer, step.id)

    _detect_cycle(graph)
    return graph


def _detect_cycle(graph: Graph) -> None:
    remaining = dict(graph.in_degree)
    queue = deque(step_id for step_id in graph.order if remaining[step_id] == 0)
    processed = 0
    while queue:
        current = queue.popleft()
        processed += 1
        for dependent in graph.dependents.get(current, []):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                queue.append(dependent)

    if processed < len(graph.order):
        in_cycle = [step_id for step_id in graph.order if remaining[step_id] > 0]
        raise GraphError(f"dependency cycle detected among steps: {', '.join(in_cycle)}")