"""
Model orchestrator: picks the cheapest available upstream model for a task type.

Selection never raises. Failures only push a model onto a cooldown, successes clear it. The
orchestrator owns its own copy of the catalog, so cooldowns never leak between instances.
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any, Iterable, Mapping, Optional, Sequence

from arena_pilot.catalog import (
    DEFAULT_COST_WEIGHT,
    Cooldown,
    ModelDescriptor,
    Speed,
    canonical_model_id,
    copy_catalog,
)
from arena_pilot.timing import Clock

logger = logging.getLogger(__name__)

COOLDOWN_BASE_SECONDS = 30.0
COOLDOWN_CAP_SECONDS = 600.0

DEFAULT_PAIR = ("gemini-3-pro", "gpt-5.2")
FALLBACK_TASK_TYPE = "coding"

_OPUS = "claude-opus-4-5-20251101"
_SONNET = "claude-sonnet-4-5-20250929"
_NANO_BANANA_PRO = "gemini-3-pro-image-preview-2k (nano-banana-pro)"

TASK_MODEL_MAP: dict[str, tuple[str, ...]] = {
    # Planning
    "planning": (_OPUS, "gpt-5.2-high", "gemini-3-pro"),
    "architecture": (_OPUS, "gpt-5.2-high"),
    # Coding
    "coding": ("gpt-5.2", _SONNET, "gemini-3-pro"),
    "debugging": (_OPUS, _SONNET, "gpt-5.2"),
    "refactoring": (_SONNET, "gpt-5.2", "gemini-3-pro"),
    "testing": (_SONNET, "gpt-5.2"),
    # Quick tasks
    "simple-edit": ("gemini-3-flash", "gemini-3-pro"),
    "formatting": ("gemini-3-flash",),
    "rename": ("gemini-3-flash",),
    # Research
    "research": ("gpt-5.2-search", "gemini-3-pro-grounding", "ppl-sonar-reasoning-pro-high"),
    "api-lookup": ("gpt-5.2-search", "gemini-3-pro-grounding"),
    "documentation": ("gpt-5.2-search", "gemini-3-pro-grounding"),
    # Specialized
    "algorithms": ("deepseek-v3.2", _OPUS),
    "math": ("deepseek-v3.2", _OPUS),
    "optimization": ("deepseek-v3.2", "gpt-5.2"),
    # Assets
    "image-generation": ("gpt-image-1.5", _NANO_BANANA_PRO),
    "logo": ("gpt-image-1.5",),
    "asset": ("gpt-image-1.5", _NANO_BANANA_PRO),
}

# Checked in order; the first matching category wins, "coding" otherwise.
TASK_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("research", ("research", "find", "look up", "search", "documentation")),
    ("planning", ("plan", "architect", "design", "structure")),
    ("testing", ("test", "spec", "verify")),
    ("debugging", ("debug", "fix", "error", "bug")),
    ("refactoring", ("refactor", "clean", "improve", "optimize")),
    ("simple-edit", ("rename", "move", "delete")),
    ("image-generation", ("logo", "image", "icon", "asset", "generate image")),
    ("algorithms", ("algorithm", "sort", "graph", "tree")),
)


class ModelOrchestrator:
    def __init__(
        self,
        catalog: Optional[Mapping[str, ModelDescriptor]] = None,
        task_map: Optional[Mapping[str, Sequence[str]]] = None,
        clock: Clock = time.monotonic,
        cooldown_base: float = COOLDOWN_BASE_SECONDS,
        cooldown_cap: float = COOLDOWN_CAP_SECONDS,
        default_pair: Sequence[str] = DEFAULT_PAIR,
    ):
        self.catalog: dict[str, ModelDescriptor] = (
            {k: v.model_copy(deep=True) for k, v in catalog.items()} if catalog is not None else copy_catalog()
        )
        self.task_map: dict[str, tuple[str, ...]] = {k: tuple(v) for k, v in (task_map or TASK_MODEL_MAP).items()}
        self.clock = clock
        self.cooldown_base = cooldown_base
        self.cooldown_cap = cooldown_cap
        self.default_pair = tuple(default_pair)
        self.preferred_model: Optional[str] = None
        self.usage: Counter[str] = Counter()

    def _known(self, model_id: Optional[str]) -> Optional[str]:
        model_id = canonical_model_id(model_id)
        return model_id if model_id and model_id in self.catalog else None

    def _speed(self, model_id: str) -> int:
        descriptor = self.catalog.get(model_id)
        return (descriptor.speed if descriptor else Speed.MEDIUM).rank

    def _cost(self, model_id: str) -> float:
        descriptor = self.catalog.get(model_id)
        return descriptor.cost_weight if descriptor else DEFAULT_COST_WEIGHT

    def is_available(self, model_id: str, now: Optional[float] = None) -> bool:
        descriptor = self.catalog.get(canonical_model_id(model_id) or "")
        if descriptor is None:
            return True
        return descriptor.is_available(self.clock() if now is None else now)

    def select(
        self,
        task_type: str,
        forced_model: Optional[str] = None,
        prefer_speed: bool = False,
        avoid: Iterable[str] = (),
    ) -> str:
        """Cheapest available candidate for `task_type`; never raises."""
        if self.preferred_model:
            return self.preferred_model
        forced = self._known(forced_model)
        if forced:
            return forced
        if forced_model:
            logger.warning(f"⚠️ Ignoring unknown forced model {forced_model!r}")

        now = self.clock()
        avoided = {canonical_model_id(m) for m in avoid}
        candidates = self.task_map.get(task_type) or self.task_map.get(FALLBACK_TASK_TYPE) or ()
        remaining = [m for m in candidates if m not in avoided and self.is_available(m, now)]
        if not remaining:
            logger.debug(f"No available candidate for {task_type!r}, using default pair")
            remaining = list(self.default_pair)

        # Both sorts are stable: cost is the final key, speed and map order break ties.
        if prefer_speed:
            remaining.sort(key=self._speed)
        remaining.sort(key=self._cost)
        choice = remaining[0]
        self.usage[choice] += 1
        return choice

    def infer_task_type(self, description: str) -> str:
        lowered = description.lower()
        for task_type, keywords in TASK_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return task_type
        return FALLBACK_TASK_TYPE

    def report_failure(self, model_id: str) -> Optional[Cooldown]:
        model_id = canonical_model_id(model_id) or ""
        descriptor = self.catalog.get(model_id)
        if descriptor is None:
            logger.debug(f"Failure reported for unknown model {model_id!r}, ignored")
            return None
        now = self.clock()
        if descriptor.cooldown is None:
            cooldown = Cooldown.start(now, base=self.cooldown_base, cap=self.cooldown_cap)
        else:
            cooldown = descriptor.cooldown.extend(now)
        descriptor.cooldown = cooldown
        logger.info(f"🧊 Model {model_id} on cooldown for {cooldown.duration:.0f}s")
        return cooldown

    def report_success(self, model_id: str) -> None:
        descriptor = self.catalog.get(canonical_model_id(model_id) or "")
        if descriptor is not None and descriptor.cooldown is not None:
            descriptor.cooldown = None
            logger.debug(f"Cooldown cleared for {descriptor.id}")

    def set_preferred_model(self, model_id: Optional[str]) -> bool:
        """Lock selection to one model; None returns to automatic selection."""
        if model_id is None:
            self.preferred_model = None
            logger.info("🎯 Preferred model: auto")
            return True
        known = self._known(model_id)
        if known is None:
            logger.warning(f"⚠️ Unknown preferred model {model_id!r}, keeping {self.preferred_model or 'auto'}")
            return False
        self.preferred_model = known
        logger.info(f"🎯 Preferred model: {known}")
        return True

    def get_model_info(self, model_id: str) -> Optional[dict[str, Any]]:
        descriptor = self.catalog.get(canonical_model_id(model_id) or "")
        if descriptor is None:
            return None
        now = self.clock()
        return {
            "id": descriptor.id,
            "name": descriptor.display_name,
            "modality": descriptor.modality.value,
            "tier": descriptor.tier,
            "speed": descriptor.speed.value,
            "cost_weight": descriptor.cost_weight,
            "strengths": list(descriptor.strengths),
            "available": descriptor.is_available(now),
            "cooldown_remaining": descriptor.cooldown.remaining(now) if descriptor.cooldown else 0.0,
            "uses": self.usage.get(descriptor.id, 0),
        }

    def get_available_models(self) -> list[dict[str, Any]]:
        """Models that take part in orchestrated selection (those with a tier)."""
        return [self.get_model_info(m) for m, d in self.catalog.items() if d.tier is not None]

    def get_status(self) -> dict[str, Any]:
        now = self.clock()
        return {
            "preferred_model": self.preferred_model,
            "cooldowns": {
                m: round(d.cooldown.remaining(now), 1)
                for m, d in self.catalog.items()
                if d.cooldown is not None and d.cooldown.is_active(now)
            },
            "usage": dict(self.usage),
        }
