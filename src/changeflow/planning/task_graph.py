"""
changeflow — task dependency graph

File: src/changeflow/planning/task_graph.py

Purpose
- Build a layered dependency graph from the ``task`` blocks of a tasks document and answer
  ordering questions about it.

Functional requirements
- A task's layer comes from an explicit ``layer`` field, else from the numbered heading it sits
  under, else from the leading number of its id.
- Topological order breaks ties by layer, then by natural task id order, so it is deterministic.
- Cycles are reported in a canonical rotation; dependencies on unknown ids are collected, not
  raised.
- Dependencies, dependents and runnable tasks are queryable directly or transitively.

Non-functional requirements
- Pure in-memory structure; no filesystem access.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from dataclasses import dataclass
from heapq import heapify, heappop, heappush
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Final

from changeflow.documents.blocks import BlockKind, TaskBlock, TaskStatus, extract_blocks
from changeflow.documents.markdown import Heading, iter_headings
from changeflow.errors import CyclicDependencyError

if TYPE_CHECKING:
    from changeflow.documents.frontmatter import Document

DEFAULT_LAYER_NAMES: Final[dict[int, str]] = {
    1: "data",
    2: "logic",
    3: "integration",
    4: "testing",
}
_LAYER_NUMBERS: Final[dict[str, int]] = {name: number for number, name in DEFAULT_LAYER_NAMES.items()}
_LAYER_HEADING_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<number>\d+)\.\s+(?P<name>\S.*)$")
_TASK_ID_LAYER_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<number>\d+)\.")
_UNASSIGNED: Final[int] = 0
_CUSTOM_LAYER_BASE: Final[int] = 100


@dataclass(frozen=True, slots=True, order=True)
class Layer:
    number: int
    name: str


UNASSIGNED_LAYER: Final[Layer] = Layer(_UNASSIGNED, "unassigned")


def spec_id_from_ref(spec_ref: str) -> str:
    """``specs/auth-flow.md#R1`` and ``specs/auth-flow.md:R1`` both map to ``auth-flow``."""
    path_part = spec_ref.split("#", 1)[0]
    if ":" in path_part:
        path_part = path_part.split(":", 1)[0]
    return PurePosixPath(path_part.strip().replace("\\", "/")).stem


def task_sort_key(task_id: str) -> tuple[tuple[int, int | str], ...]:
    """Natural ordering so ``1.2`` sorts before ``1.10``."""
    parts: list[tuple[int, int | str]] = []
    for part in re.split(r"[.\-_]", task_id):
        if part.isdigit():
            parts.append((0, int(part)))
        else:
            parts.append((1, part))
    return tuple(parts)


class TaskGraph:
    """Directed dependency graph over task ids with layer membership.

    Edges point from a dependency to its dependent, so a topological order is an
    implementation order.
    """

    __slots__ = (
        "_tasks",
        "_layers",
        "_children",
        "_parents",
        "_missing",
        "_duplicates",
    )

    def __init__(self) -> None:
        self._tasks: dict[str, TaskBlock] = {}
        self._layers: dict[str, Layer] = {}
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}
        self._missing: list[tuple[str, str]] = []
        self._duplicates: list[str] = []

    @classmethod
    def build(cls, tasks_document: Document | str) -> TaskGraph:
        """Build and validate the graph of ``tasks_document``.

        Raises ``CyclicDependencyError`` naming every task on a cycle.
        """
        graph = cls.from_document(tasks_document)
        cycles = graph.detect_cycles()
        if cycles:
            raise CyclicDependencyError(cycles)
        return graph

    @classmethod
    def from_document(cls, tasks_document: Document | str) -> TaskGraph:
        """Build the graph without rejecting cycles (validation reports them as findings)."""
        body = tasks_document if isinstance(tasks_document, str) else tasks_document.body
        located = extract_blocks(body, BlockKind.TASK)
        heading_layers = _heading_layers(iter_headings(body))
        offsets = [offset for offset, _ in heading_layers]

        tasks: list[TaskBlock] = []
        inferred: dict[int, Layer] = {}
        for index, (task, offset) in enumerate(located):
            tasks.append(task)
            position = bisect_right(offsets, offset)
            if position > 0:
                inferred[index] = heading_layers[position - 1][1]
        return cls.from_tasks(tasks, inferred_layers=inferred)

    @classmethod
    def from_tasks(
        cls,
        tasks: Iterable[TaskBlock],
        *,
        inferred_layers: Mapping[int, Layer] | None = None,
    ) -> TaskGraph:
        graph = cls()
        custom: dict[str, Layer] = {}
        ordered = list(tasks)
        for index, task in enumerate(ordered):
            if task.id in graph._tasks:
                graph._duplicates.append(task.id)
                continue
            layer = _explicit_layer(task.layer, custom)
            if layer is None and inferred_layers is not None:
                layer = inferred_layers.get(index)
            if layer is None:
                layer = _id_layer(task.id)
            graph._tasks[task.id] = task
            graph._layers[task.id] = layer
            graph._children[task.id] = set()
            graph._parents[task.id] = set()

        for task_id, task in graph._tasks.items():
            for dependency in task.depends_on:
                if dependency not in graph._tasks:
                    graph._missing.append((task_id, dependency))
                    continue
                graph._children[dependency].add(task_id)
                graph._parents[task_id].add(dependency)
        return graph

    @property
    def nodes(self) -> tuple[str, ...]:
        """All task ids in natural order."""
        return tuple(sorted(self._tasks, key=task_sort_key))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """All edges as ``(dependency, dependent)`` pairs in deterministic order."""
        ordered_edges: list[tuple[str, str]] = []
        for parent in self.nodes:
            for child in sorted(self._children[parent], key=task_sort_key):
                ordered_edges.append((parent, child))
        return tuple(ordered_edges)

    @property
    def missing_dependencies(self) -> tuple[tuple[str, str], ...]:
        """``(task_id, unknown_dependency_id)`` pairs in document order."""
        return tuple(self._missing)

    @property
    def duplicate_ids(self) -> tuple[str, ...]:
        return tuple(self._duplicates)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def task(self, task_id: str) -> TaskBlock:
        self._assert_node_exists(task_id)
        return self._tasks[task_id]

    def tasks(self) -> tuple[TaskBlock, ...]:
        return tuple(self._tasks[task_id] for task_id in self.nodes)

    def layer_of(self, task_id: str) -> Layer:
        self._assert_node_exists(task_id)
        return self._layers[task_id]

    def layers(self) -> tuple[tuple[Layer, tuple[str, ...]], ...]:
        """Tasks partitioned into ordered layers (``data`` before ``logic`` before ...)."""
        grouped: dict[Layer, list[str]] = {}
        for task_id in self.nodes:
            grouped.setdefault(self._layers[task_id], []).append(task_id)
        return tuple((layer, tuple(grouped[layer])) for layer in sorted(grouped))

    def group_by_spec(self) -> dict[str, tuple[str, ...]]:
        """Map spec id to the ids of the tasks referencing it, in natural order."""
        grouped: dict[str, list[str]] = {}
        for task_id in self.nodes:
            spec_ref = self._tasks[task_id].spec_ref
            if not spec_ref:
                continue
            grouped.setdefault(spec_id_from_ref(spec_ref), []).append(task_id)
        return {spec_id: tuple(task_ids) for spec_id, task_ids in sorted(grouped.items())}

    def topological_sort(self) -> tuple[str, ...]:
        """Return a deterministic implementation order or raise ``CyclicDependencyError``.

        Among ready tasks, lower layers come first, then natural id order.
        """
        indegree: dict[str, int] = {node: len(self._parents[node]) for node in self._tasks}
        ready = [self._ready_key(node) for node, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            _, _, node = heappop(ready)
            order.append(node)

            for child in self._children[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, self._ready_key(child))

        if len(order) != len(self._tasks):
            raise CyclicDependencyError(self.detect_cycles())

        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles with an iterative depth-first traversal.

        Returns cycle paths as closed paths, e.g. ``("1.1", "1.2", "1.3", "1.1")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self.nodes:
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, self._sorted_children(start))]

            while frames:
                node, child_iter = frames[-1]

                child = next(child_iter, None)
                if child is None:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, self._sorted_children(child)))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles, key=lambda path: tuple(task_sort_key(item) for item in path)))

    def get_dependencies(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(task_id)
        if not transitive:
            return tuple(sorted(self._parents[task_id], key=task_sort_key))
        return self._transitive_closure(task_id, upstream=True)

    def get_dependents(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(task_id)
        if not transitive:
            return tuple(sorted(self._children[task_id], key=task_sort_key))
        return self._transitive_closure(task_id, upstream=False)

    def get_runnable(self, completed: Set[str] | None = None) -> tuple[str, ...]:
        """
        Return tasks ready to implement.

        A task is runnable when it is not completed (by status or by ``completed``) and every
        dependency is.
        """
        done = set(completed or ())
        done.update(
            task_id for task_id, task in self._tasks.items() if task.status is TaskStatus.COMPLETED
        )
        runnable: list[str] = []
        for task_id in self.nodes:
            if task_id in done:
                continue
            if self._parents[task_id].issubset(done):
                runnable.append(task_id)
        return tuple(runnable)

    def serialize(self) -> dict[str, object]:
        """Serialize to a stable JSON/YAML-friendly mapping."""
        return {
            "nodes": list(self.nodes),
            "edges": [list(edge) for edge in self.edges],
            "layers": [
                {"number": layer.number, "name": layer.name, "tasks": list(task_ids)}
                for layer, task_ids in self.layers()
            ],
        }

    def _ready_key(self, task_id: str) -> tuple[Layer, tuple[tuple[int, int | str], ...], str]:
        return (self._layers[task_id], task_sort_key(task_id), task_id)

    def _sorted_children(self, task_id: str) -> Iterator[str]:
        return iter(sorted(self._children[task_id], key=task_sort_key))

    def _transitive_closure(self, task_id: str, *, upstream: bool) -> tuple[str, ...]:
        adjacency = self._parents if upstream else self._children
        visited: set[str] = set()
        pending: list[str] = list(adjacency[task_id])

        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(neighbor for neighbor in adjacency[node] if neighbor not in visited)

        return tuple(sorted(visited, key=task_sort_key))

    def _assert_node_exists(self, task_id: str) -> None:
        if task_id not in self._tasks:
            raise KeyError(f"Unknown task: {task_id}")


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])

    best = core
    best_key = tuple(task_sort_key(item) for item in core)
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        rotated_key = tuple(task_sort_key(item) for item in rotated)
        if rotated_key < best_key:
            best, best_key = rotated, rotated_key

    return best + (best[0],)


def _heading_layers(headings: Iterable[Heading]) -> list[tuple[int, Layer]]:
    layers: list[tuple[int, Layer]] = []
    for heading in headings:
        match = _LAYER_HEADING_RE.match(heading.text)
        if match is None:
            continue
        number = int(match.group("number"))
        name = _layer_name_from_heading(match.group("name"), number)
        layers.append((heading.offset, Layer(number, name)))
    return layers


def _layer_name_from_heading(text: str, number: int) -> str:
    # "Data Layer" / "Logic layer (core)" -> "data" / "logic"
    words = re.sub(r"\(.*?\)", "", text).strip().lower().split()
    if words and words[-1] == "layer":
        words = words[:-1]
    if not words:
        return DEFAULT_LAYER_NAMES.get(number, f"layer-{number}")
    return " ".join(words)


def _explicit_layer(value: str | None, custom: dict[str, Layer]) -> Layer | None:
    if value is None or not value.strip():
        return None
    text = value.strip().lower()
    if text.isdigit():
        number = int(text)
        return Layer(number, DEFAULT_LAYER_NAMES.get(number, f"layer-{number}"))
    if text in _LAYER_NUMBERS:
        return Layer(_LAYER_NUMBERS[text], text)
    if text not in custom:
        custom[text] = Layer(_CUSTOM_LAYER_BASE + len(custom), text)
    return custom[text]


def _id_layer(task_id: str) -> Layer:
    match = _TASK_ID_LAYER_RE.match(task_id)
    if match is None:
        return UNASSIGNED_LAYER
    number = int(match.group("number"))
    return Layer(number, DEFAULT_LAYER_NAMES.get(number, f"layer-{number}"))


__all__ = [
    "DEFAULT_LAYER_NAMES",
    "Layer",
    "TaskGraph",
    "UNASSIGNED_LAYER",
    "spec_id_from_ref",
    "task_sort_key",
]
