"""
changeflow — role prompt templates

File: src/changeflow/orchestration/prompts.py

Purpose
- Renders the task prompt handed to each agent role with strict placeholders.

Functional requirements
- Prompts name the document files the agent must author; the workflow never writes document
  content itself.
- A template referencing a variable that was not supplied fails loudly.

Non-functional requirements
- Must render deterministically for the same inputs.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final

from jinja2 import Environment, StrictUndefined, meta

SYSTEM_PROMPT: Final[str] = (
    "You are one step of a spec-driven change workflow. Author the requested documents "
    "directly on disk in the change directory. Every document starts with YAML frontmatter "
    "delimited by '---' lines. Structured records (task, requirement, issue) go in fenced "
    "```yaml blocks whose root key names the record kind."
)

_HEADER: Final[str] = "## Change ID\n{{ change_id }}\n\n"

TEMPLATES: Final[dict[str, str]] = {
    "proposal": _HEADER
    + """## Request
{{ description }}

## Instructions
1. Analyze the codebase and the request.
2. Write {{ change_dir }}/proposal.md with frontmatter `id: {{ change_id }}`, `type: proposal`,
   `version: 1`, `status: proposed`, and `affected_specs` listing one entry per capability
   that needs a detailed spec.
3. The body must contain the sections: Summary, Why, What Changes, Impact.
4. End your answer with <review>PASS</review> once you have re-read the file and found no
   problems, or <review>NEEDS_REVISION</review> if you had to fix it.

If proposal.md already exists, revise it in place and keep any manual edits.
""",
    "spec": _HEADER
    + """## Task
Write {{ change_dir }}/specs/{{ spec_id }}.md for the `{{ spec_id }}` capability declared in the proposal.

## Instructions
- Frontmatter: `id: {{ spec_id }}`, `type: spec`, `title`, `version: 1`.
- Sections: Overview, Requirements (one `requirement` yaml block each, with `id`,
  `priority`, `status`), Acceptance Criteria.
- Each `### Scenario:` must state WHEN and THEN.
- If the file already exists, update it in place and keep any manual edits.
""",
    "tasks": _HEADER
    + """## Task
Write {{ change_dir }}/tasks.md breaking the change into implementation tasks.

## Instructions
- Frontmatter: `id: {{ change_id }}`, `type: tasks`, `version: 1`, `proposal_ref: proposal.md`.
- Group tasks under the headings `## 1. Data`, `## 2. Logic`, `## 3. Integration`,
  `## 4. Testing`.
- Each task is a `task` yaml block with a quoted `id` ("N.M"), `action`, `file`, `spec_ref`
  (`specs/<id>.md#<anchor>`) and `depends_on`.
- Specs in this change: {{ spec_ids | join(", ") if spec_ids else "(none)" }}.
- If the file already exists, update it in place and keep any manual edits.
""",
    "reproposal": _HEADER
    + """## Task
Revise the proposal, specs and tasks in {{ change_dir }} to address every issue raised in
{{ change_dir }}/CHALLENGE.md (revision {{ iteration }}). Keep ids stable and bump `version`.
""",
    "challenge": _HEADER
    + """## Task
Review the proposal, specs and tasks in {{ change_dir }} (round {{ iteration + 1 }}) and write
{{ change_dir }}/CHALLENGE.md.

## Instructions
- Frontmatter: `id: {{ change_id }}`, `type: challenge`, `version: 1`, `verdict`.
- Record each problem as an `issue` yaml block (`id`, `severity`, `category`, `location`).
- Finish the document with exactly one checked verdict line:
  - [x] APPROVED
  - [x] NEEDS_REVISION
  - [x] REJECTED
""",
    "format_fix": _HEADER
    + """## Task
Fix {{ change_dir }}/{{ document }} so that it passes validation. Change only what the problems
below require.

## Problems
{% for problem in problems -%}
- {{ problem }}
{% else -%}
- (self-review requested a revision)
{% endfor -%}
""",
    "implement": _HEADER
    + """## Task
Implement every task in {{ change_dir }}/tasks.md in dependency order, following the specs in
{{ change_dir }}/specs/. Summarize what you changed in {{ change_dir }}/IMPLEMENTATION.md.
""",
    "review": _HEADER
    + """## Task
Review the implementation of {{ change_id }} against its specs (iteration {{ iteration }}) and write
{{ change_dir }}/REVIEW.md.

## Instructions
- Frontmatter: `id: {{ change_id }}`, `type: review`, `version: 1`, `iteration: {{ iteration }}`,
  `verdict`.
- Finish with exactly one checked verdict line:
  - [x] APPROVED
  - [x] NEEDS_CHANGES
  - [x] MAJOR_ISSUES
""",
    "resolve": _HEADER
    + """## Task
Fix every issue listed in {{ change_dir }}/REVIEW.md, then update {{ change_dir }}/IMPLEMENTATION.md.
""",
    "archive": _HEADER
    + """## Task
Reconcile each spec in {{ change_dir }}/specs/ with its current version in {{ specs_dir }}/ so that the
change copy becomes the complete new version of that spec. Edit only files under
{{ change_dir }}/specs/; the workflow copies them into {{ specs_dir }}/ afterwards.

End your answer with <review>PASS</review> once every change spec is a complete new version,
or <review>NEEDS_REVISION</review> if more reconciliation is needed.
""",
}

_ENVIRONMENT: Final[Environment] = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    newline_sequence="\n",
    keep_trailing_newline=True,
)


class PromptTemplateError(ValueError):
    """Raised for unknown templates or missing/extra variables."""


def template_variables(name: str) -> tuple[str, ...]:
    """Sorted names of the variables a template expects."""

    source = _source(name)
    return tuple(sorted(meta.find_undeclared_variables(_ENVIRONMENT.parse(source))))


def render_prompt(name: str, **variables: object) -> str:
    """Render one role template; every declared variable must be supplied, and nothing else."""

    expected = set(template_variables(name))
    missing = sorted(expected - set(variables))
    if missing:
        raise PromptTemplateError(f"{name}: missing template variables: {', '.join(missing)}")
    unexpected = sorted(set(variables) - expected)
    if unexpected:
        raise PromptTemplateError(f"{name}: unexpected template variables: {', '.join(unexpected)}")
    return _ENVIRONMENT.from_string(_source(name)).render(**variables)


def _source(name: str) -> str:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise PromptTemplateError(f"unknown prompt template: {name!r}") from None


def proposal_prompt(change_id: str, description: str, change_dir: str) -> str:
    return render_prompt("proposal", change_id=change_id, description=description, change_dir=change_dir)


def spec_prompt(change_id: str, spec_id: str, change_dir: str) -> str:
    return render_prompt("spec", change_id=change_id, spec_id=spec_id, change_dir=change_dir)


def tasks_prompt(change_id: str, spec_ids: Sequence[str], change_dir: str) -> str:
    return render_prompt("tasks", change_id=change_id, spec_ids=list(spec_ids), change_dir=change_dir)


def reproposal_prompt(change_id: str, change_dir: str, iteration: int) -> str:
    return render_prompt("reproposal", change_id=change_id, change_dir=change_dir, iteration=iteration)


def challenge_prompt(change_id: str, change_dir: str, iteration: int) -> str:
    return render_prompt("challenge", change_id=change_id, change_dir=change_dir, iteration=iteration)


def format_fix_prompt(change_id: str, change_dir: str, document: str, problems: Sequence[str]) -> str:
    return render_prompt(
        "format_fix",
        change_id=change_id,
        change_dir=change_dir,
        document=document,
        problems=list(problems),
    )


def implement_prompt(change_id: str, change_dir: str) -> str:
    return render_prompt("implement", change_id=change_id, change_dir=change_dir)


def review_prompt(change_id: str, change_dir: str, iteration: int) -> str:
    return render_prompt("review", change_id=change_id, change_dir=change_dir, iteration=iteration)


def resolve_prompt(change_id: str, change_dir: str) -> str:
    return render_prompt("resolve", change_id=change_id, change_dir=change_dir)


def archive_prompt(change_id: str, change_dir: str, specs_dir: str) -> str:
    return render_prompt("archive", change_id=change_id, change_dir=change_dir, specs_dir=specs_dir)


__all__ = [
    "SYSTEM_PROMPT",
    "TEMPLATES",
    "PromptTemplateError",
    "archive_prompt",
    "challenge_prompt",
    "format_fix_prompt",
    "implement_prompt",
    "proposal_prompt",
    "render_prompt",
    "reproposal_prompt",
    "resolve_prompt",
    "review_prompt",
    "spec_prompt",
    "tasks_prompt",
    "template_variables",
]
