"""
Static model catalog shared by the router and the orchestrator.

Every upstream model is a `ModelDescriptor`. Router-only entries carry the neutral cost
profile (speed `medium`, cost 0.5); orchestrated entries carry the tier, speed, cost weight and
strength tags used for selection. Cooldowns are mutable per orchestrator, never on the
shared catalog itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SEARCH = "search"


class Speed(str, Enum):
    VERY_FAST = "very-fast"
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"
    VERY_SLOW = "very-slow"

    @property
    def rank(self) -> int:
        return SPEED_RANK[self]


SPEED_RANK = {
    Speed.VERY_FAST: 0,
    Speed.FAST: 1,
    Speed.MEDIUM: 2,
    Speed.SLOW: 3,
    Speed.VERY_SLOW: 4,
}

DEFAULT_COST_WEIGHT = 0.5


@dataclass(frozen=True)
class Cooldown:
    """Temporary exclusion window for a model after a reported failure.

    Immutable: `extend` returns the next window. While a window is still active the next one
    doubles the remaining time (capped); an expired window restarts at `base`.
    """

    until: float
    duration: float
    base: float = 30.0
    cap: float = 600.0

    @classmethod
    def start(cls, now: float, base: float = 30.0, cap: float = 600.0) -> "Cooldown":
        return cls(until=now + base, duration=base, base=base, cap=cap)

    def is_active(self, now: float) -> bool:
        return now < self.until

    def remaining(self, now: float) -> float:
        return max(0.0, self.until - now)

    def extend(self, now: float) -> "Cooldown":
        if self.is_active(now):
            duration = min(self.remaining(now) * 2, self.cap)
        else:
            duration = self.base
        return Cooldown(until=now + duration, duration=duration, base=self.base, cap=self.cap)


class ModelDescriptor(BaseModel):
    model_config = ConfigDict(frozen=False, validate_assignment=True)

    id: str
    display_name: str
    modality: Modality = Modality.TEXT
    tier: Optional[int] = None
    speed: Speed = Speed.MEDIUM
    cost_weight: float = Field(default=DEFAULT_COST_WEIGHT, ge=0.0)
    strengths: list[str] = Field(default_factory=list)
    cooldown: Optional[Cooldown] = None

    def is_available(self, now: float) -> bool:
        return self.cooldown is None or not self.cooldown.is_active(now)


def _m(model_id: str, name: str, modality: Modality = Modality.TEXT, tier: Optional[int] = None,
       speed: Speed = Speed.MEDIUM, cost: float = DEFAULT_COST_WEIGHT, strengths: tuple[str, ...] = ()) -> ModelDescriptor:
    return ModelDescriptor(id=model_id, display_name=name, modality=modality, tier=tier, speed=speed,
                           cost_weight=cost, strengths=list(strengths))


_T, _I, _S = Modality.TEXT, Modality.IMAGE, Modality.SEARCH

_ENTRIES = [
    # Text
    _m("gemini-3-pro", "Gemini 3 Pro", _T, 3, Speed.FAST, 0.4, ("fast-reasoning", "code-review", "explanations", "general")),
    _m("gemini-3-flash", "Gemini 3 Flash", _T, 3, Speed.VERY_FAST, 0.2, ("quick-tasks", "simple-edits", "formatting")),
    _m("gpt-5.2-high", "GPT 5.2 High", _T, 2, Speed.MEDIUM, 0.8, ("coding", "api-integration", "web-development", "general")),
    _m("gpt-5.2", "GPT 5.2", _T, 2, Speed.FAST, 0.6, ("coding", "general", "refactoring")),
    _m("gpt-5.1-high", "GPT 5.1 High"),
    _m("gpt-5.1", "GPT 5.1"),
    _m("o3-2025-04-16", "o3"),
    _m("claude-opus-4-5-20251101-thinking-32k", "Claude Opus 4.5 Thinking", _T, 1, Speed.VERY_SLOW, 1.5,
       ("deep-analysis", "multi-step-reasoning")),
    _m("claude-opus-4-5-20251101", "Claude Opus 4.5", _T, 1, Speed.SLOW, 1.0,
       ("planning", "architecture", "complex-reasoning", "debugging")),
    _m("claude-sonnet-4-5-20250929-thinking-32k", "Claude Sonnet 4.5 Thinking"),
    _m("claude-sonnet-4-5-20250929", "Claude Sonnet 4.5", _T, 2, Speed.FAST, 0.7, ("coding", "debugging", "refactoring", "tests")),
    _m("deepseek-v3.2-thinking", "DeepSeek V3.2 Thinking"),
    _m("deepseek-v3.2", "DeepSeek V3.2", _T, 3, Speed.FAST, 0.3, ("algorithms", "optimization", "math", "data-structures")),
    _m("grok-4.1-thinking", "Grok 4.1 Thinking"),
    _m("grok-4.1", "Grok 4.1"),
    # Image
    _m("gpt-image-1.5", "GPT Image 1.5", _I, 5, Speed.SLOW, 0.8, ("image-generation", "logos", "assets", "ui-mockups")),
    _m("gpt-image-1", "GPT Image 1", _I),
    _m("gemini-3-pro-image-preview-2k (nano-banana-pro)", "Gemini 3 Pro Image", _I, 5, Speed.MEDIUM, 0.5,
       ("image-generation", "quick-assets")),
    _m("gemini-2.5-flash-image-preview (nano-banana)", "Gemini 2.5 Flash Image", _I),
    _m("dall-e-3", "DALL-E 3", _I),
    _m("flux-2-max", "FLUX 2 Max", _I),
    _m("flux-2-pro", "FLUX 2 Pro", _I),
    _m("recraft-v3", "Recraft V3", _I),
    # Search
    _m("gemini-3-pro-grounding", "Gemini 3 Pro (Grounding)", _S, 4, Speed.FAST, 0.4, ("research", "fact-checking", "current-info")),
    _m("gemini-2.5-pro-grounding", "Gemini 2.5 Pro (Grounding)", _S),
    _m("gpt-5.2-search", "GPT 5.2 Search", _S, 4, Speed.MEDIUM, 0.5, ("research", "documentation", "api-discovery", "current-info")),
    _m("gpt-5.1-search", "GPT 5.1 Search", _S),
    _m("gpt-5.1-search-sp", "GPT 5.1 Search SP", _S),
    _m("gpt-5-search", "GPT 5 Search", _S),
    _m("o3-search", "o3 Search", _S),
    _m("grok-4-1-fast-search", "Grok 4.1 Fast Search", _S),
    _m("grok-4-fast-search", "Grok 4 Fast Search", _S),
    _m("grok-4-search", "Grok 4 Search", _S),
    _m("claude-opus-4-1-search", "Claude Opus 4.1 Search", _S),
    _m("claude-opus-4-search", "Claude Opus 4 Search", _S),
    _m("ppl-sonar-reasoning-pro-high", "Perplexity Sonar Reasoning Pro", _S, 4, Speed.SLOW, 0.7,
       ("deep-research", "synthesis", "multi-source")),
    _m("ppl-sonar-pro-high", "Perplexity Sonar Pro", _S),
    _m("diffbot-small-xl", "Diffbot Small XL", _S),
]

MODEL_CATALOG: dict[str, ModelDescriptor] = {entry.id: entry for entry in _ENTRIES}

# Short names used in prompts and plans
MODEL_ALIASES = {
    "claude-opus-4-5": "claude-opus-4-5-20251101",
    "claude-sonnet-4-5": "claude-sonnet-4-5-20250929",
    "o3": "o3-2025-04-16",
    "nano-banana-pro": "gemini-3-pro-image-preview-2k (nano-banana-pro)",
    "nano-banana": "gemini-2.5-flash-image-preview (nano-banana)",
}


def canonical_model_id(model_id: Optional[str]) -> Optional[str]:
    """Resolve an alias to its catalog id; unknown ids are returned unchanged."""
    if not model_id:
        return model_id
    model_id = model_id.strip()
    return MODEL_ALIASES.get(model_id, model_id)


def get_descriptor(model_id: Optional[str]) -> Optional[ModelDescriptor]:
    return MODEL_CATALOG.get(canonical_model_id(model_id) or "")


def copy_catalog() -> dict[str, ModelDescriptor]:
    """Independent descriptors for a component that mutates cooldowns."""
    return {key: value.model_copy(deep=True) for key, value in MODEL_CATALOG.items()}
