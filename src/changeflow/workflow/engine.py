"""
changeflow — workflow engine

File: src/changeflow/workflow/engine.py

Purpose
- Drive one change through its phases by composing validation, agent invocation, model
  selection and the task graph around explicit load/save of the ``Change`` record.

What should be included in this file
- Idempotent planning: proposal, each affected spec and the tasks document are authored only
  when missing or stale; fresh artifacts go straight to validation.
- The bounded challenge/reproposal loop and the bounded review/resolve loop.
- Explicit start-implementation and archive operations.

Functional requirements
- A transition is committed only after its gating validation reports no blocking findings.
- Loops stop once their counter reaches the configured maximum, whatever the verdict; the last
  verdict is returned to the caller.
- An agent failure leaves the persisted record as it was at the last completed round trip.
- Re-running an operation with nothing changed on disk invokes no agent and rewrites nothing.
- ``drive`` resumes from the persisted phase; a new change has no state file until its first
  completed agent round trip.

Non-functional requirements
- Decision events (transitions, skips, loop halts, agent calls) go through ``structlog`` with
  keyword fields; the logger is injectable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from changeflow.config.settings import WorkflowSettings
from changeflow.constants import (
    CHALLENGE_FILE,
    IMPLEMENTATION_FILE,
    PROPOSAL_FILE,
    REVIEW_FILE,
    SPECS_DIR,
    TASKS_FILE,
)
from changeflow.documents.affected import affected_spec_ids
from changeflow.documents.frontmatter import strip_frontmatter
from changeflow.documents.layout import ChangeLayout
from changeflow.documents.models import DocumentKind
from changeflow.errors import (
    CommandNotFoundError,
    MissingVerdictError,
    OrchestratorError,
    ParseError,
    ValidationError,
)
from changeflow.observability.logging import correlation_scope
from changeflow.orchestration.agents import AgentResult, AgentRunner, assemble_prompt, self_review_passed
from changeflow.orchestration.model_selector import ChangeStats
from changeflow.orchestration.prompts import (
    SYSTEM_PROMPT,
    archive_prompt,
    challenge_prompt,
    format_fix_prompt,
    implement_prompt,
    proposal_prompt,
    reproposal_prompt,
    resolve_prompt,
    review_prompt,
    spec_prompt,
    tasks_prompt,
)
from changeflow.orchestration.tool_surface import Role
from changeflow.planning.task_graph import TaskGraph
from changeflow.utils.fs import atomic_write, is_within, move_directory
from changeflow.utils.hashing import sha256_file
from changeflow.validation.engine import validate, validate_document
from changeflow.validation.report import ValidationReport
from changeflow.workflow.change import Change, Phase, UsageRecord, utc_now
from changeflow.workflow.state import StateStore
from changeflow.workflow.verdict import (
    PROPOSAL_PRECEDENCE,
    REVIEW_PRECEDENCE,
    ProposalVerdict,
    ReviewVerdict,
    find_proposal_verdicts,
    find_review_verdicts,
    parse_proposal_verdict,
    parse_review_verdict,
)

_Snapshot = dict[str, Any]


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one workflow operation."""

    change: Change
    report: ValidationReport
    verdict: str | None = None
    agent_calls: int = 0
    halted: bool = False
    skipped: tuple[str, ...] = ()
    archived_to: Path | None = None

    @property
    def phase(self) -> Phase:
        return self.change.phase

    @property
    def blocked(self) -> bool:
        return self.report.is_blocking

    def raise_for_blocking(self, step: str) -> None:
        if self.report.is_blocking:
            raise ValidationError(self.report, step=step)


class WorkflowEngine:
    """Phase machine for changes stored under ``settings.changes_dir``.

    Callers serialize operations per change id; the engine keeps no state between calls.
    """

    def __init__(
        self,
        settings: WorkflowSettings,
        runner: AgentRunner,
        *,
        store: StateStore | None = None,
        logger: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._store = store if store is not None else StateStore(settings.changes_dir)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock if clock is not None else utc_now

    @property
    def store(self) -> StateStore:
        return self._store

    # ------------------------------------------------------------------ planning

    async def plan(self, change_id: str, description: str | None = None) -> StepOutcome:
        """Author missing or stale planning artifacts, then validate the planning set.

        Creates the change on first use; ``description`` is required only when no proposal
        exists yet.
        """

        if not self._store.exists(change_id) and not description:
            raise ValueError(f"change {change_id!r} does not exist; a description is required to propose it")
        is_new = not self._store.exists(change_id)
        change = self._store.load_or_new(change_id, now=self._clock())
        change.require_phase(Phase.PROPOSED, action="plan")
        # A new change is persisted by its first commit, never before an agent round trip.
        snapshot: _Snapshot = {} if is_new else _snapshot(change)
        layout = self._store.layout(change_id)
        layout.root.mkdir(parents=True, exist_ok=True)

        with correlation_scope(change_id=change_id, phase=change.phase.value):
            calls, skipped = await self._author_planning(change, layout, description)
            report = self._gate(change, layout, step="planning", require=self._planning_paths(layout))
            if not report.is_blocking:
                self._mark_planning_validated(change, layout)
                change.last_action = "planned"
            self._commit(change, snapshot)
        return StepOutcome(change=change, report=report, agent_calls=calls, skipped=tuple(skipped))

    async def challenge(self, change_id: str) -> StepOutcome:
        """Run the challenge/reproposal loop until a verdict other than NEEDS_REVISION or the bound."""

        change = self._store.load(change_id)
        change.require_phase(Phase.PROPOSED, action="challenge")
        snapshot = _snapshot(change)
        layout = self._store.layout(change_id)
        limit = self._settings.planning_iterations
        calls = 0
        skipped: list[str] = []
        halted = False

        with correlation_scope(change_id=change_id, phase=change.phase.value):
            report = self._gate(change, layout, step="planning", require=self._planning_paths(layout))
            if report.is_blocking:
                self._commit(change, snapshot)
                return StepOutcome(change=change, report=report)
            self._mark_planning_validated(change, layout)
            reuse = self._store.is_fresh(change, CHALLENGE_FILE)

            while True:
                if reuse:
                    verdict = parse_proposal_verdict(
                        layout.challenge.read_text(encoding="utf-8"), source=CHALLENGE_FILE
                    )
                    skipped.append(CHALLENGE_FILE)
                    self._skip(change, CHALLENGE_FILE)
                    reuse = False
                else:
                    before = _digest(layout.challenge)
                    result = await self._invoke(
                        change,
                        Role.CHALLENGE,
                        challenge_prompt(change_id, self._display(layout), change.planning_iteration),
                        step=f"challenge-{change.planning_iteration}",
                    )
                    calls += 1
                    verdict = self._proposal_verdict(layout, result, before)
                    self._store.mark_validated(change, [CHALLENGE_FILE], now=self._clock())
                change.last_verdict = verdict.value
                change.last_action = "challenged"
                snapshot = self._commit(change, snapshot)

                if verdict is ProposalVerdict.APPROVED:
                    report = self._gate(change, layout, step="challenge", require=[layout.challenge])
                    if not report.is_blocking:
                        self._transition(change, Phase.CHALLENGED, reason="proposal approved")
                    break
                if verdict is ProposalVerdict.REJECTED:
                    self._transition(change, Phase.REJECTED, reason="proposal rejected")
                    break
                if change.planning_iteration >= limit:
                    halted = True
                    self._halt(change, loop="reproposal", iteration=change.planning_iteration, limit=limit)
                    break

                self._transition(change, Phase.PROPOSED, reason="proposal needs revision")
                change.planning_iteration += 1
                await self._invoke(
                    change,
                    Role.REPROPOSAL,
                    reproposal_prompt(change_id, self._display(layout), change.planning_iteration),
                    step=f"reproposal-{change.planning_iteration}",
                )
                calls += 1
                change.last_action = "reproposed"
                report = self._gate(change, layout, step="planning", require=self._planning_paths(layout))
                if report.is_blocking:
                    break
                self._mark_planning_validated(change, layout)
                snapshot = self._commit(change, snapshot)

            self._commit(change, snapshot)
        return StepOutcome(
            change=change,
            report=report,
            verdict=change.last_verdict,
            agent_calls=calls,
            halted=halted,
            skipped=tuple(skipped),
        )

    async def advance_planning(self, change_id: str, description: str | None = None) -> StepOutcome:
        """``plan`` followed by ``challenge`` when the planning set validates."""

        planned = await self.plan(change_id, description)
        if planned.blocked:
            return planned
        challenged = await self.challenge(change_id)
        return StepOutcome(
            change=challenged.change,
            report=challenged.report,
            verdict=challenged.verdict,
            agent_calls=planned.agent_calls + challenged.agent_calls,
            halted=challenged.halted,
            skipped=planned.skipped + challenged.skipped,
        )

    # ------------------------------------------------------------- implementation

    async def start_implementation(self, change_id: str) -> StepOutcome:
        """Move an approved change into implementation and run the implementing agent once."""

        change = self._store.load(change_id)
        change.require_phase(Phase.CHALLENGED, action="start-implementation")
        snapshot = _snapshot(change)
        layout = self._store.layout(change_id)

        with correlation_scope(change_id=change_id, phase=change.phase.value):
            report = self._gate(change, layout, step="implementation", require=self._planning_paths(layout))
            if report.is_blocking:
                self._commit(change, snapshot)
                return StepOutcome(change=change, report=report)

            graph = TaskGraph.build(strip_frontmatter(layout.tasks.read_text(encoding="utf-8")))
            self._logger.info(
                "workflow_task_order",
                change_id=change_id,
                task_count=len(graph),
                order=list(graph.topological_sort()),
            )
            await self._invoke(
                change,
                Role.IMPLEMENT,
                implement_prompt(change_id, self._display(layout)),
                step="implement",
            )
            self._transition(change, Phase.IMPLEMENTING, reason="implementation started")
            change.last_action = "implemented"
            self._commit(change, snapshot)
        return StepOutcome(change=change, report=report, agent_calls=1)

    async def advance_implementation(self, change_id: str) -> StepOutcome:
        """Run the review/resolve loop.

        APPROVED completes the change, MAJOR_ISSUES stops for manual intervention, and
        NEEDS_CHANGES resolves and re-reviews until the iteration bound.
        """

        change = self._store.load(change_id)
        change.require_phase(Phase.IMPLEMENTING, action="advance-implementation")
        snapshot = _snapshot(change)
        layout = self._store.layout(change_id)
        limit = self._settings.implementation_iterations
        report = ValidationReport(mode=self._settings.validation_mode, threshold=self._settings.blocking_severity)
        calls = 0
        skipped: list[str] = []
        halted = False

        with correlation_scope(change_id=change_id, phase=change.phase.value):
            reuse = self._store.is_fresh(change, REVIEW_FILE) and (
                not layout.implementation.is_file() or self._store.is_fresh(change, IMPLEMENTATION_FILE)
            )
            while True:
                if reuse:
                    verdict = parse_review_verdict(layout.review.read_text(encoding="utf-8"), source=REVIEW_FILE)
                    skipped.append(REVIEW_FILE)
                    self._skip(change, REVIEW_FILE)
                    reuse = False
                else:
                    before = _digest(layout.review)
                    result = await self._invoke(
                        change,
                        Role.REVIEW,
                        review_prompt(change_id, self._display(layout), change.implementation_iteration),
                        step=f"review-{change.implementation_iteration}",
                    )
                    calls += 1
                    verdict = self._review_verdict(layout, result, before)
                    self._store.mark_validated(change, [REVIEW_FILE, IMPLEMENTATION_FILE], now=self._clock())
                change.last_verdict = verdict.value
                change.last_action = "reviewed"
                snapshot = self._commit(change, snapshot)

                if verdict is ReviewVerdict.APPROVED:
                    report = self._gate(change, layout, step="completion", require=[layout.review])
                    if not report.is_blocking:
                        self._transition(change, Phase.COMPLETE, reason="implementation approved")
                    break
                if verdict is ReviewVerdict.MAJOR_ISSUES:
                    halted = True
                    self._transition(change, Phase.IMPLEMENTING, reason="major issues need manual intervention")
                    self._halt(change, loop="resolve", iteration=change.implementation_iteration, limit=limit)
                    break
                if change.implementation_iteration >= limit:
                    halted = True
                    self._halt(change, loop="resolve", iteration=change.implementation_iteration, limit=limit)
                    break

                self._transition(change, Phase.IMPLEMENTING, reason="implementation needs changes")
                change.implementation_iteration += 1
                await self._invoke(
                    change,
                    Role.RESOLVE,
                    resolve_prompt(change_id, self._display(layout)),
                    step=f"resolve-{change.implementation_iteration}",
                )
                calls += 1
                change.last_action = "resolved"
                # The review predates the fixes; the next round must review again.
                change.checksums.pop(REVIEW_FILE, None)
                snapshot = self._commit(change, snapshot)

            self._commit(change, snapshot)
        return StepOutcome(
            change=change,
            report=report,
            verdict=change.last_verdict,
            agent_calls=calls,
            halted=halted,
            skipped=tuple(skipped),
        )

    # -------------------------------------------------------------------- archive

    async def archive(self, change_id: str, *, reconcile_specs: bool = False) -> StepOutcome:
        """Publish the change's specs to the permanent store and move the change to the archive.

        With ``reconcile_specs`` the archive agent first folds the permanent versions into the
        change copies.
        """

        change = self._store.load(change_id)
        change.require_phase(Phase.COMPLETE, action="archive")
        snapshot = _snapshot(change)
        layout = self._store.layout(change_id)
        calls = 0

        with correlation_scope(change_id=change_id, phase=change.phase.value):
            if reconcile_specs:
                for attempt in range(max(1, self._settings.archive_iterations)):
                    result = await self._invoke(
                        change,
                        Role.ARCHIVE,
                        archive_prompt(change_id, self._display(layout), self._settings.specs_dir.as_posix()),
                        step=f"archive-{attempt}",
                    )
                    calls += 1
                    if self_review_passed(result.raw_output or result.output):
                        break

            report = self._gate(change, layout, step="archive", require=())
            if report.is_blocking:
                self._commit(change, snapshot)
                return StepOutcome(change=change, report=report, agent_calls=calls)

            published: list[str] = []
            for spec_path in layout.spec_files():
                target = self._settings.specs_dir / spec_path.name
                if target.is_file() and sha256_file(target) == sha256_file(spec_path):
                    continue
                atomic_write(target, spec_path.read_bytes())
                published.append(spec_path.stem)

            self._transition(change, Phase.ARCHIVED, reason="archived")
            change.last_action = "archived"
            self._store.save(change, now=self._clock())

            stamp = self._clock().date().isoformat()
            destination = move_directory(layout.root, self._settings.archive_dir / f"{stamp}-{change_id}")
            self._logger.info(
                "workflow_archived",
                change_id=change_id,
                destination=destination.as_posix(),
                published_specs=published,
            )
        return StepOutcome(change=change, report=report, agent_calls=calls, archived_to=destination)

    async def drive(self, change_id: str, description: str | None = None) -> StepOutcome:
        """Advance as far as the change can go, resuming from its persisted phase.

        Returns the outcome of the last operation run. With ``human_in_loop`` the run stops at
        Challenged so a person can start implementation; a terminal change is returned as is.
        """

        outcome: StepOutcome | None = None
        phase = self._store.load(change_id).phase if self._store.exists(change_id) else Phase.PROPOSED

        if phase is Phase.PROPOSED:
            outcome = await self.advance_planning(change_id, description)
            if outcome.phase is not Phase.CHALLENGED:
                return outcome
            phase = outcome.phase
        if phase is Phase.CHALLENGED:
            if self._settings.human_in_loop:
                return outcome if outcome is not None else self._idle(change_id)
            outcome = await self.start_implementation(change_id)
            if outcome.phase is not Phase.IMPLEMENTING:
                return outcome
            phase = outcome.phase
        if phase is Phase.IMPLEMENTING:
            outcome = await self.advance_implementation(change_id)
            if outcome.phase is not Phase.COMPLETE:
                return outcome
            phase = outcome.phase
        if phase is Phase.COMPLETE:
            return await self.archive(change_id)
        return outcome if outcome is not None else self._idle(change_id)

    # -------------------------------------------------------------------- helpers

    async def _author_planning(
        self,
        change: Change,
        layout: ChangeLayout,
        description: str | None,
    ) -> tuple[int, list[str]]:
        calls = 0
        skipped: list[str] = []
        display = self._display(layout)

        if self._store.is_fresh(change, PROPOSAL_FILE):
            skipped.append(PROPOSAL_FILE)
            self._skip(change, PROPOSAL_FILE)
        else:
            request = description or "Revise the existing proposal so that it validates."
            calls += await self._author(
                change,
                layout,
                PROPOSAL_FILE,
                DocumentKind.PROPOSAL,
                proposal_prompt(change.id, request, display),
                step="proposal",
            )

        spec_ids = self._affected_ids(layout)
        for spec_id in spec_ids:
            relative = f"{SPECS_DIR}/{spec_id}.md"
            if self._store.is_fresh(change, relative):
                skipped.append(relative)
                self._skip(change, relative)
                continue
            calls += await self._author(
                change,
                layout,
                relative,
                DocumentKind.SPEC,
                spec_prompt(change.id, spec_id, display),
                step=f"spec-{spec_id}",
            )

        if self._store.is_fresh(change, TASKS_FILE):
            skipped.append(TASKS_FILE)
            self._skip(change, TASKS_FILE)
        else:
            calls += await self._author(
                change,
                layout,
                TASKS_FILE,
                DocumentKind.TASKS,
                tasks_prompt(change.id, spec_ids, display),
                step="tasks",
            )
        return calls, skipped

    async def _author(
        self,
        change: Change,
        layout: ChangeLayout,
        relative: str,
        kind: DocumentKind,
        prompt: str,
        *,
        step: str,
    ) -> int:
        """Generate one artifact, then run bounded format-fix passes while it does not validate."""

        result = await self._invoke(change, Role.PROPOSAL, prompt, step=step)
        calls = 1
        for attempt in range(1, self._settings.format_iterations + 1):
            problems = self._artifact_problems(layout, relative, kind, result)
            if not problems:
                break
            self._logger.info(
                "workflow_format_fix",
                change_id=change.id,
                document=relative,
                attempt=attempt,
                problems=len(problems),
            )
            result = await self._invoke(
                change,
                Role.PROPOSAL,
                format_fix_prompt(change.id, self._display(layout), relative, problems),
                step=f"{step}-fix-{attempt}",
            )
            calls += 1
        return calls

    def _artifact_problems(
        self,
        layout: ChangeLayout,
        relative: str,
        kind: DocumentKind,
        result: AgentResult,
    ) -> list[str]:
        path = layout.root / relative
        if not path.is_file():
            return [f"{relative}: document was not written"]
        report = ValidationReport.from_findings(
            validate_document(path, kind, label=relative),
            mode=self._settings.validation_mode,
            threshold=self._settings.blocking_severity,
        )
        problems = [item.render() for item in report.blocking_findings()]
        if not problems and not self_review_passed(result.raw_output or result.output):
            problems.append(f"{relative}: self-review requested a revision")
        return problems

    async def _invoke(self, change: Change, role: Role, task: str, *, step: str) -> AgentResult:
        choice = self._settings.catalog_for(role).select(self._stats(change))
        prompt = assemble_prompt(task, system=SYSTEM_PROMPT)
        attempt = 0
        while True:
            try:
                with correlation_scope(step=step):
                    result = await self._runner.run(role, prompt, choice)
                break
            except CommandNotFoundError:
                raise
            except OrchestratorError as exc:
                attempt += 1
                if attempt > self._settings.script_retries:
                    raise
                self._logger.warning(
                    "workflow_agent_retry",
                    change_id=change.id,
                    role=role.value,
                    step=step,
                    attempt=attempt,
                    error=str(exc),
                )
                await asyncio.sleep(self._settings.retry_delay_secs)

        usage = result.usage
        change.record_usage(
            UsageRecord(
                step=step,
                model=choice.model,
                tokens_in=usage.tokens_in,
                tokens_out=usage.tokens_out,
                duration_ms=usage.duration_ms,
                cost_usd=usage.cost_usd,
            )
        )
        self._logger.info(
            "workflow_agent_invoked",
            change_id=change.id,
            role=role.value,
            step=step,
            provider=choice.provider.value,
            model=choice.model,
            effort=choice.effort,
            duration_ms=usage.duration_ms,
            cost_usd=usage.cost_usd,
        )
        return result

    def _gate(
        self,
        change: Change,
        layout: ChangeLayout,
        *,
        step: str,
        require: Iterable[Path],
    ) -> ValidationReport:
        report = validate(
            layout,
            mode=self._settings.validation_mode,
            threshold=self._settings.blocking_severity,
            specs_store=self._settings.specs_dir,
            require=require,
        )
        change.record_validation(
            step,
            [item.render() for item in report.blocking_findings()],
            at=self._clock(),
        )
        self._logger.info(
            "workflow_validation",
            change_id=change.id,
            step=step,
            blocking=report.is_blocking,
            summary=report.summary(),
        )
        return report

    def _transition(self, change: Change, target: Phase, *, reason: str) -> None:
        previous = change.phase
        change.transition_to(target, reason=reason)
        self._logger.info(
            "workflow_phase_transition",
            change_id=change.id,
            from_phase=previous.value,
            to_phase=target.value,
            reason=reason,
        )

    def _halt(self, change: Change, *, loop: str, iteration: int, limit: int) -> None:
        self._logger.warning(
            "workflow_loop_halted",
            change_id=change.id,
            loop=loop,
            iteration=iteration,
            limit=limit,
            last_verdict=change.last_verdict,
        )

    def _idle(self, change_id: str) -> StepOutcome:
        change = self._store.load(change_id)
        self._logger.info("workflow_drive_idle", change_id=change_id, phase=change.phase.value)
        report = ValidationReport(mode=self._settings.validation_mode, threshold=self._settings.blocking_severity)
        return StepOutcome(change=change, report=report, verdict=change.last_verdict)

    def _skip(self, change: Change, document: str) -> None:
        self._logger.info("workflow_artifact_skipped", change_id=change.id, document=document)

    def _commit(self, change: Change, snapshot: _Snapshot) -> _Snapshot:
        current = _snapshot(change)
        if current != snapshot:
            self._store.save(change, now=self._clock())
        return current

    def _proposal_verdict(
        self,
        layout: ChangeLayout,
        result: AgentResult,
        before: str | None,
    ) -> ProposalVerdict:
        """Verdict of this round: the agent output plus the challenge document if the agent rewrote it."""
        found = find_proposal_verdicts(result.output)
        if _digest(layout.challenge) not in (None, before):
            found |= find_proposal_verdicts(layout.challenge.read_text(encoding="utf-8"))
        if not found:
            raise MissingVerdictError(
                f"{result.role.value} output",
                expected=[verdict.value for verdict in PROPOSAL_PRECEDENCE],
            )
        return max(found, key=PROPOSAL_PRECEDENCE.index)

    def _review_verdict(
        self,
        layout: ChangeLayout,
        result: AgentResult,
        before: str | None,
    ) -> ReviewVerdict:
        found = find_review_verdicts(result.output)
        if _digest(layout.review) not in (None, before):
            found |= find_review_verdicts(layout.review.read_text(encoding="utf-8"))
        if not found:
            raise MissingVerdictError(
                f"{result.role.value} output",
                expected=[verdict.value for verdict in REVIEW_PRECEDENCE],
            )
        return max(found, key=REVIEW_PRECEDENCE.index)

    def _affected_ids(self, layout: ChangeLayout) -> tuple[str, ...]:
        if not layout.proposal.is_file():
            return ()
        try:
            return affected_spec_ids(layout.proposal.read_text(encoding="utf-8"))
        except ParseError:
            # The planning gate reports the malformed proposal.
            return ()

    def _planning_relatives(self, layout: ChangeLayout) -> list[str]:
        relatives = [PROPOSAL_FILE, TASKS_FILE]
        relatives.extend(f"{SPECS_DIR}/{spec_id}.md" for spec_id in self._affected_ids(layout))
        return relatives

    def _planning_paths(self, layout: ChangeLayout) -> list[Path]:
        return [layout.root / relative for relative in self._planning_relatives(layout)]

    def _mark_planning_validated(self, change: Change, layout: ChangeLayout) -> None:
        """Record planning checksums; a planning body edit invalidates the recorded challenge."""
        relatives = self._planning_relatives(layout)
        changed = not all(self._store.is_body_fresh(change, relative) for relative in relatives)
        self._store.mark_validated(change, relatives, now=self._clock())
        if changed:
            change.checksums.pop(CHALLENGE_FILE, None)

    def _stats(self, change: Change) -> ChangeStats:
        layout = self._store.layout(change.id)
        task_count = 0
        file_count = 0
        if self._store.is_fresh(change, TASKS_FILE):
            graph = TaskGraph.from_document(strip_frontmatter(layout.tasks.read_text(encoding="utf-8")))
            task_count = len(graph)
            file_count = len({task.file for task in graph.tasks()})
        return ChangeStats(spec_count=len(layout.spec_files()), task_count=task_count, file_count=file_count)

    def _display(self, layout: ChangeLayout) -> str:
        if not is_within(layout.root, self._settings.root):
            return layout.root.as_posix()
        return layout.root.resolve().relative_to(self._settings.root.resolve()).as_posix()


def _digest(path: Path) -> str | None:
    return sha256_file(path) if path.is_file() else None


def _snapshot(change: Change) -> _Snapshot:
    mapping = change.to_mapping()
    mapping.pop("updated_at", None)
    return mapping


__all__ = ["StepOutcome", "WorkflowEngine"]
