"""
changeflow — complexity-driven model selection

File: src/changeflow/orchestration/model_selector.py

Purpose
- Bucket change statistics into a complexity level and pick the cheapest configured model
  of a provider that can handle it.

Functional requirements
- ``select`` is pure and deterministic for a given catalog.
- Among models rated at or above the requested complexity, the lowest-rated wins; when none
  qualifies the highest-rated model is used.
- Cost is estimated from token counts when the agent does not report one.

Non-functional requirements
- Catalog entries are validated on construction so a bad config fails at load time.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final


class Complexity(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: str | Complexity) -> Complexity:
        if isinstance(value, Complexity):
            return value
        try:
            return cls[value.strip().upper()]
        except KeyError:
            allowed = ", ".join(member.name.lower() for member in cls)
            raise ValueError(f"unknown complexity {value!r} (expected one of {allowed})") from None

    @property
    def label(self) -> str:
        return self.name.lower()


class Provider(enum.StrEnum):
    GEMINI = "gemini"
    CODEX = "codex"
    CLAUDE = "claude"


_LOW_MAX: Final[int] = 4
_MEDIUM_MAX: Final[int] = 10
_HIGH_MAX: Final[int] = 20
_FILES_PER_POINT: Final[int] = 10
_TOKENS_PER_UNIT: Final[int] = 1_000_000


@dataclass(frozen=True, slots=True)
class ChangeStats:
    spec_count: int = 0
    task_count: int = 0
    file_count: int = 0

    @property
    def score(self) -> int:
        return self.spec_count + self.task_count + self.file_count // _FILES_PER_POINT


def assess_complexity(stats: ChangeStats) -> Complexity:
    score = stats.score
    if score <= _LOW_MAX:
        return Complexity.LOW
    if score <= _MEDIUM_MAX:
        return Complexity.MEDIUM
    if score <= _HIGH_MAX:
        return Complexity.HIGH
    return Complexity.CRITICAL


@dataclass(frozen=True, slots=True)
class ModelSpec:
    """One configured model of a provider."""

    id: str
    model: str
    complexity: Complexity
    reasoning: str | None = None
    cost_per_1m_input: float | None = None
    cost_per_1m_output: float | None = None

    def __post_init__(self) -> None:
        for name in ("id", "model"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"ModelSpec.{name} cannot be empty")
        object.__setattr__(self, "complexity", Complexity.parse(self.complexity))
        for name in ("cost_per_1m_input", "cost_per_1m_output"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"ModelSpec.{name} must be a non-negative number")
            object.__setattr__(self, name, float(value))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ModelSpec:
        return cls(
            id=raw["id"],
            model=raw["model"],
            complexity=Complexity.parse(raw["complexity"]),
            reasoning=raw.get("reasoning"),
            cost_per_1m_input=raw.get("cost_per_1m_input"),
            cost_per_1m_output=raw.get("cost_per_1m_output"),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "model": self.model, "complexity": self.complexity.label}
        if self.reasoning is not None:
            out["reasoning"] = self.reasoning
        if self.cost_per_1m_input is not None:
            out["cost_per_1m_input"] = self.cost_per_1m_input
        if self.cost_per_1m_output is not None:
            out["cost_per_1m_output"] = self.cost_per_1m_output
        return out

    def estimate_cost(self, tokens_in: int, tokens_out: int) -> float | None:
        if self.cost_per_1m_input is None or self.cost_per_1m_output is None:
            return None
        return (
            tokens_in * self.cost_per_1m_input + tokens_out * self.cost_per_1m_output
        ) / _TOKENS_PER_UNIT


@dataclass(frozen=True, slots=True)
class ModelChoice:
    provider: Provider
    model: str
    effort: str | None = None
    spec: ModelSpec | None = None

    @property
    def label(self) -> str:
        return f"{self.model} ({self.effort})" if self.effort else self.model


def select_model(models: Sequence[ModelSpec], complexity: Complexity) -> ModelSpec:
    """Lowest-rated model that handles ``complexity``, else the highest-rated one."""
    if not models:
        raise ValueError("no models configured")
    capable = [model for model in models if model.complexity >= complexity]
    if capable:
        return min(capable, key=lambda model: model.complexity)
    return max(models, key=lambda model: model.complexity)


@dataclass(frozen=True, slots=True)
class ProviderCatalog:
    provider: Provider
    command: str
    models: tuple[ModelSpec, ...]
    default_model: str

    def __post_init__(self) -> None:
        if not self.models:
            raise ValueError(f"{self.provider.value}: at least one model is required")
        ids = [model.id for model in self.models]
        if len(set(ids)) != len(ids):
            raise ValueError(f"{self.provider.value}: duplicate model ids")
        if self.default_model not in ids:
            raise ValueError(
                f"{self.provider.value}: default_model {self.default_model!r} is not a configured model id"
            )

    def default(self) -> ModelSpec:
        return next(model for model in self.models if model.id == self.default_model)

    def select(self, stats: ChangeStats | None = None, *, complexity: Complexity | None = None) -> ModelChoice:
        """Choose a model for ``stats`` (or an explicit ``complexity``); the default model otherwise."""
        if complexity is None and stats is not None:
            complexity = assess_complexity(stats)
        spec = self.default() if complexity is None else select_model(self.models, complexity)
        return ModelChoice(provider=self.provider, model=spec.model, effort=spec.reasoning, spec=spec)

    def find(self, model: str) -> ModelSpec | None:
        return next((spec for spec in self.models if model in (spec.id, spec.model)), None)


def default_catalogs() -> dict[Provider, ProviderCatalog]:
    return {
        Provider.GEMINI: ProviderCatalog(
            provider=Provider.GEMINI,
            command="gemini",
            models=(
                ModelSpec("flash", "gemini-3-flash-preview", Complexity.MEDIUM, None, 0.10, 0.40),
                ModelSpec("pro", "gemini-3-pro-preview", Complexity.CRITICAL, None, 1.25, 10.00),
            ),
            default_model="flash",
        ),
        Provider.CODEX: ProviderCatalog(
            provider=Provider.CODEX,
            command="codex",
            models=(
                ModelSpec("fast", "gpt-5.2-codex", Complexity.LOW, "low", 2.00, 8.00),
                ModelSpec("balanced", "gpt-5.2-codex", Complexity.MEDIUM, "medium", 2.00, 8.00),
                ModelSpec("deep", "gpt-5.2-codex", Complexity.HIGH, "high", 2.00, 8.00),
                ModelSpec("max", "gpt-5.2-codex", Complexity.CRITICAL, "extra high", 2.00, 8.00),
            ),
            default_model="balanced",
        ),
        Provider.CLAUDE: ProviderCatalog(
            provider=Provider.CLAUDE,
            command="claude",
            models=(
                ModelSpec("fast", "haiku", Complexity.LOW, None, 0.80, 4.00),
                ModelSpec("balanced", "sonnet", Complexity.MEDIUM, None, 3.00, 15.00),
                ModelSpec("deep", "opus", Complexity.CRITICAL, None, 15.00, 75.00),
            ),
            default_model="balanced",
        ),
    }


def catalogs_from_config(agents: Mapping[str, Mapping[str, Any]]) -> dict[Provider, ProviderCatalog]:
    """Build provider catalogs from the validated ``agents`` config section."""
    catalogs = default_catalogs()
    for name, section in agents.items():
        provider = Provider(name)
        base = catalogs[provider]
        raw_models: Iterable[Mapping[str, Any]] | None = section.get("models")
        models = tuple(ModelSpec.from_mapping(item) for item in raw_models) if raw_models else base.models
        catalogs[provider] = ProviderCatalog(
            provider=provider,
            command=section.get("command", base.command),
            models=models,
            default_model=section.get("default_model", base.default_model),
        )
    return catalogs


__all__ = [
    "ChangeStats",
    "Complexity",
    "ModelChoice",
    "ModelSpec",
    "Provider",
    "ProviderCatalog",
    "assess_complexity",
    "catalogs_from_config",
    "default_catalogs",
    "select_model",
]
