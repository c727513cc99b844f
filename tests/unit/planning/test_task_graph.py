"""Unit tests for planning.task_graph."""

from __future__ import annotations

import random

import pytest

from changeflow.documents.blocks import TaskAction, TaskBlock
from changeflow.errors import CyclicDependencyError
from changeflow.planning.task_graph import Layer, TaskGraph, spec_id_from_ref, task_sort_key

TASKS_BODY = """## 1. Data Layer

```yaml
task:
  id: "1.1"
  action: CREATE
  file: src/auth/models.py
  spec_ref: specs/auth.md#R1
```

```yaml
task:
  id: "1.2"
  action: CREATE
  file: src/auth/schema.py
  spec_ref: "specs/sessions.md:R2"
  depends_on: ["1.1"]
```

## 2. Service Layer

```yaml
task:
  id: "2.1"
  action: MODIFY
  file: src/auth/service.py
```

```yaml
task:
  id: "2.2"
  action: CREATE
  file: tests/test_service.py
  layer: testing
  status: completed
  depends_on: ["2.1", "1.2"]
```
"""


def _task(task_id: str, *depends_on: str) -> TaskBlock:
    return TaskBlock(id=task_id, action=TaskAction.CREATE, file=f"src/{task_id}.py", depends_on=depends_on)


def test_layers_come_from_headings_and_explicit_values() -> None:
    graph = TaskGraph.build(TASKS_BODY)

    assert graph.layers() == (
        (Layer(1, "data"), ("1.1", "1.2")),
        (Layer(2, "service"), ("2.1",)),
        (Layer(4, "testing"), ("2.2",)),
    )
    assert graph.group_by_spec() == {"auth": ("1.1",), "sessions": ("1.2",)}


def test_topological_order_prefers_lower_layers() -> None:
    graph = TaskGraph.build(TASKS_BODY)

    assert graph.topological_sort() == ("1.1", "1.2", "2.1", "2.2")


def test_dependency_queries_runnable_and_serialization_are_deterministic() -> None:
    graph = TaskGraph.build(TASKS_BODY)

    assert graph.get_dependencies("2.2") == ("1.2", "2.1")
    assert graph.get_dependencies("2.2", transitive=True) == ("1.1", "1.2", "2.1")
    assert graph.get_dependents("1.1", transitive=True) == ("1.2", "2.2")
    assert graph.get_runnable() == ("1.1", "2.1")
    assert graph.get_runnable({"1.1"}) == ("1.2", "2.1")

    payload = graph.serialize()
    assert payload["nodes"] == ["1.1", "1.2", "2.1", "2.2"]
    assert payload["edges"] == [["1.1", "1.2"], ["1.2", "2.2"], ["2.1", "2.2"]]


def test_three_task_cycle_is_reported_as_a_closed_path() -> None:
    graph = TaskGraph.from_tasks([_task("1.1", "1.3"), _task("1.2", "1.1"), _task("1.3", "1.2"), _task("2.1")])

    assert graph.detect_cycles() == (("1.1", "1.2", "1.3", "1.1"),)

    with pytest.raises(CyclicDependencyError) as error:
        graph.topological_sort()
    assert error.value.ids == ("1.1", "1.2", "1.3")
    assert "1.1 -> 1.2 -> 1.3 -> 1.1" in str(error.value)


MUTUAL_BODY = """```yaml
task:
  id: "1.1"
  action: CREATE
  file: a.py
  depends_on: ["1.2"]
```

```yaml
task:
  id: "1.2"
  action: CREATE
  file: b.py
  depends_on: ["1.1"]
```
"""


def test_mutual_dependency_names_both_tasks() -> None:
    assert TaskGraph.from_document(MUTUAL_BODY).detect_cycles() == (("1.1", "1.2", "1.1"),)

    with pytest.raises(CyclicDependencyError) as error:
        TaskGraph.build(MUTUAL_BODY)
    assert set(error.value.ids) == {"1.1", "1.2"}


def test_self_dependency_is_a_cycle() -> None:
    graph = TaskGraph.from_tasks([_task("1.1", "1.1")])

    assert graph.detect_cycles() == (("1.1", "1.1"),)


def test_unknown_dependencies_and_duplicates_are_recorded() -> None:
    graph = TaskGraph.from_tasks([_task("1.1", "9.9"), _task("1.2"), _task("1.2", "1.1")])

    assert graph.missing_dependencies == (("1.1", "9.9"),)
    assert graph.duplicate_ids == ("1.2",)
    assert graph.get_dependencies("1.2") == ()
    with pytest.raises(KeyError):
        graph.task("3.1")


def test_natural_id_ordering_and_spec_ids() -> None:
    assert sorted(["1.10", "1.2", "1.1"], key=task_sort_key) == ["1.1", "1.2", "1.10"]
    assert spec_id_from_ref("specs/auth-flow.md#R1") == "auth-flow"
    assert spec_id_from_ref("specs/auth-flow.md:R1") == "auth-flow"


def test_seeded_random_dag_topological_sort_stress() -> None:
    rng = random.Random(2_026_030_1)
    node_count = 300
    node_ids = [f"1.{index}" for index in range(node_count)]

    tasks: list[TaskBlock] = []
    for child_index, child in enumerate(node_ids):
        fan_in = min(4, child_index)
        parents = [node_ids[index] for index in rng.sample(range(child_index), fan_in) if rng.random() < 0.55]
        tasks.append(_task(child, *parents))

    graph = TaskGraph.from_tasks(tasks)
    order = graph.topological_sort()
    assert len(order) == node_count

    position = {node_id: index for index, node_id in enumerate(order)}
    for parent, child in graph.edges:
        assert position[parent] < position[child]
