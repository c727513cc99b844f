from __future__ import annotations

import pytest

from changeflow.orchestration.model_selector import (
    ChangeStats,
    Complexity,
    ModelChoice,
    ModelSpec,
    Provider,
    ProviderCatalog,
    assess_complexity,
    catalogs_from_config,
    default_catalogs,
    select_model,
)


@pytest.mark.parametrize(
    ("stats", "expected"),
    [
        (ChangeStats(spec_count=1, task_count=2, file_count=19), Complexity.LOW),
        (ChangeStats(spec_count=2, task_count=5, file_count=30), Complexity.MEDIUM),
        (ChangeStats(spec_count=3, task_count=8), Complexity.HIGH),
        (ChangeStats(spec_count=4, task_count=17), Complexity.CRITICAL),
    ],
)
def test_complexity_buckets(stats: ChangeStats, expected: Complexity) -> None:
    assert assess_complexity(stats) is expected


def test_lowest_capable_model_wins() -> None:
    catalogs = default_catalogs()

    assert catalogs[Provider.CLAUDE].select(complexity=Complexity.LOW).model == "haiku"
    assert catalogs[Provider.CLAUDE].select(complexity=Complexity.HIGH).model == "opus"
    assert catalogs[Provider.GEMINI].select(ChangeStats(task_count=1)).model == "gemini-3-flash-preview"
    assert catalogs[Provider.CODEX].select(complexity=Complexity.CRITICAL).effort == "extra high"


def test_default_model_without_stats() -> None:
    choice = default_catalogs()[Provider.CLAUDE].select()

    assert choice == ModelChoice(Provider.CLAUDE, "sonnet", None, choice.spec)
    assert choice.spec is not None and choice.spec.id == "balanced"


def test_highest_model_when_none_is_capable() -> None:
    models = [ModelSpec("a", "small", Complexity.LOW), ModelSpec("b", "mid", Complexity.MEDIUM)]

    assert select_model(models, Complexity.CRITICAL).id == "b"
    with pytest.raises(ValueError):
        select_model([], Complexity.LOW)


def test_cost_estimate_needs_both_rates() -> None:
    priced = ModelSpec("x", "m", Complexity.LOW, None, 2.0, 8.0)

    assert priced.estimate_cost(500_000, 250_000) == pytest.approx(3.0)
    assert ModelSpec("y", "m", Complexity.LOW, None, 2.0).estimate_cost(10, 10) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"id": " ", "model": "m", "complexity": Complexity.LOW},
        {"id": "x", "model": "m", "complexity": Complexity.LOW, "cost_per_1m_input": -1.0},
        {"id": "x", "model": "m", "complexity": "extreme"},
    ],
)
def test_invalid_model_specs_are_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        ModelSpec(**kwargs)  # type: ignore[arg-type]


def test_catalog_validation() -> None:
    model = ModelSpec("fast", "haiku", Complexity.LOW)

    with pytest.raises(ValueError, match="duplicate"):
        ProviderCatalog(Provider.CLAUDE, "claude", (model, model), "fast")
    with pytest.raises(ValueError, match="default_model"):
        ProviderCatalog(Provider.CLAUDE, "claude", (model,), "deep")


def test_catalogs_from_config_override_one_provider() -> None:
    catalogs = catalogs_from_config(
        {
            "claude": {
                "command": "/opt/bin/claude",
                "models": [{"id": "only", "model": "opus", "complexity": "critical", "cost_per_1m_input": 15}],
                "default_model": "only",
            }
        }
    )

    claude = catalogs[Provider.CLAUDE]
    assert claude.command == "/opt/bin/claude"
    assert claude.default().to_mapping() == {
        "id": "only",
        "model": "opus",
        "complexity": "critical",
        "cost_per_1m_input": 15.0,
    }
    assert catalogs[Provider.GEMINI] == default_catalogs()[Provider.GEMINI]
    assert claude.find("opus") is claude.default()


def test_choice_label_includes_effort() -> None:
    assert ModelChoice(Provider.CODEX, "gpt-5.2-codex", "high").label == "gpt-5.2-codex (high)"
    assert ModelChoice(Provider.CLAUDE, "sonnet").label == "sonnet"
