from __future__ import annotations

import pytest

from changeflow.orchestration.prompts import (
    TEMPLATES,
    PromptTemplateError,
    challenge_prompt,
    format_fix_prompt,
    render_prompt,
    tasks_prompt,
    template_variables,
)


def test_every_template_names_the_change() -> None:
    for name in TEMPLATES:
        assert "change_id" in template_variables(name)


def test_format_fix_lists_each_problem() -> None:
    prompt = format_fix_prompt("add-auth", "changes/add-auth", "tasks.md", ["missing id", "bad layer"])

    assert prompt.startswith("## Change ID\nadd-auth\n\n")
    assert prompt.endswith("## Problems\n- missing id\n- bad layer\n")


def test_format_fix_without_problems_asks_for_a_revision() -> None:
    prompt = format_fix_prompt("add-auth", "changes/add-auth", "proposal.md", [])

    assert prompt.endswith("## Problems\n- (self-review requested a revision)\n")


def test_tasks_prompt_lists_specs() -> None:
    assert "Specs in this change: auth, sessions." in tasks_prompt("c", ["auth", "sessions"], "d")
    assert "Specs in this change: (none)." in tasks_prompt("c", [], "d")


def test_challenge_round_is_one_based() -> None:
    assert "(round 1)" in challenge_prompt("c", "d", 0)


def test_render_rejects_missing_extra_and_unknown() -> None:
    with pytest.raises(PromptTemplateError, match="missing template variables: change_dir"):
        render_prompt("implement", change_id="c")
    with pytest.raises(PromptTemplateError, match="unexpected template variables: extra"):
        render_prompt("implement", change_id="c", change_dir="d", extra=1)
    with pytest.raises(PromptTemplateError, match="unknown prompt template"):
        render_prompt("deploy", change_id="c")
