"""
changeflow — package root

File: src/changeflow/__init__.py

Purpose
- Workflow orchestration core for spec-driven, multi-agent changes: a request becomes a
  proposal, is challenged, implemented, reviewed and finally archived into a permanent
  specification store.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).

Non-functional requirements
- Keep the package-level surface small; heavy submodules are imported by callers directly.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
