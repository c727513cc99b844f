"""
changeflow — planning layer

File: src/changeflow/planning/__init__.py

Purpose
- Task dependency graph construction: the tasks document of a change becomes a layered DAG
  that drives validation and implementation ordering.

Functional requirements
- Must reject any task set containing a dependency cycle.

Non-functional requirements
- Must produce repeatable orderings given the same tasks document.
"""

from __future__ import annotations

from changeflow.planning.task_graph import Layer, TaskGraph, spec_id_from_ref

__all__ = ["Layer", "TaskGraph", "spec_id_from_ref"]
