import pytest

from arena_pilot.agent.orchestrator import DEFAULT_PAIR, ModelOrchestrator
from arena_pilot.catalog import MODEL_CATALOG, ModelDescriptor, Speed
from arena_pilot.timing import ManualClock


def _catalog():
    return {
        "model-a": ModelDescriptor(id="model-a", display_name="A", tier=2, speed=Speed.SLOW, cost_weight=0.2),
        "model-b": ModelDescriptor(id="model-b", display_name="B", tier=2, speed=Speed.VERY_FAST, cost_weight=0.8),
        "model-c": ModelDescriptor(id="model-c", display_name="C", tier=3, speed=Speed.FAST, cost_weight=0.2),
    }


def test_cheapest_candidate_wins():
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-b", "model-a"]})
    assert orch.select("coding") == "model-a"
    assert orch.usage["model-a"] == 1


def test_cost_ties_keep_map_order_then_speed():
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-a", "model-c"]})
    assert orch.select("coding") == "model-a"
    # prefer_speed reorders by speed first; the cost sort is stable so speed breaks the tie
    assert orch.select("coding", prefer_speed=True) == "model-c"


def test_unknown_task_type_falls_back_to_coding():
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-b"]})
    assert orch.select("does-not-exist") == "model-b"


def test_three_failures_extend_cooldown_then_expire():
    clock = ManualClock(100.0)
    orch = ModelOrchestrator(
        catalog=_catalog(),
        task_map={"coding": ["model-a", "model-b"]},
        clock=clock,
        cooldown_base=30.0,
        cooldown_cap=600.0,
    )

    first = orch.report_failure("model-a")
    assert first.duration == 30.0
    second = orch.report_failure("model-a")
    assert second.duration == 60.0
    third = orch.report_failure("model-a")
    assert third.duration == 120.0

    assert orch.select("coding") == "model-b"
    assert "model-a" in orch.get_status()["cooldowns"]

    clock.advance(121.0)
    assert orch.is_available("model-a")
    assert orch.select("coding") == "model-a"


def test_expired_cooldown_restarts_at_base():
    clock = ManualClock()
    orch = ModelOrchestrator(catalog=_catalog(), clock=clock, cooldown_base=10.0)
    orch.report_failure("model-a")
    clock.advance(50.0)
    assert orch.report_failure("model-a").duration == 10.0


def test_cooldown_is_capped():
    clock = ManualClock()
    orch = ModelOrchestrator(catalog=_catalog(), clock=clock, cooldown_base=100.0, cooldown_cap=150.0)
    orch.report_failure("model-a")
    assert orch.report_failure("model-a").duration == 150.0


def test_success_clears_cooldown():
    clock = ManualClock()
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-a", "model-b"]}, clock=clock)
    orch.report_failure("model-a")
    orch.report_success("model-a")
    assert orch.select("coding") == "model-a"


def test_avoided_models_are_skipped():
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-a", "model-b", "model-c"]})
    assert orch.select("coding", avoid=["model-a"]) == "model-c"
    assert orch.select("coding", avoid=["model-a", "model-c"]) == "model-b"
    assert orch.select("coding", avoid=["model-a", "model-b", "model-c"]) in DEFAULT_PAIR


def test_all_candidates_cooling_uses_default_pair():
    clock = ManualClock()
    orch = ModelOrchestrator(task_map={"coding": ["gpt-5.2"]}, clock=clock)
    orch.report_failure("gpt-5.2")
    assert orch.select("coding") in DEFAULT_PAIR


def test_cooldowns_do_not_leak_between_instances():
    first = ModelOrchestrator()
    second = ModelOrchestrator()
    first.report_failure("gpt-5.2")
    assert not first.is_available("gpt-5.2")
    assert second.is_available("gpt-5.2")
    assert MODEL_CATALOG["gpt-5.2"].cooldown is None


def test_preferred_and_forced_models():
    orch = ModelOrchestrator(catalog=_catalog(), task_map={"coding": ["model-a"]})
    assert orch.select("coding", forced_model="model-b") == "model-b"
    assert orch.select("coding", forced_model="nope") == "model-a"

    assert orch.set_preferred_model("model-c") is True
    assert orch.select("coding", forced_model="model-b") == "model-c"
    assert orch.set_preferred_model("nope") is False
    assert orch.preferred_model == "model-c"
    assert orch.set_preferred_model(None) is True
    assert orch.select("coding") == "model-a"


def test_aliases_resolve_for_forced_model():
    orch = ModelOrchestrator()
    assert orch.select("coding", forced_model="claude-opus-4-5") == "claude-opus-4-5-20251101"


@pytest.mark.parametrize(
    "description,expected",
    [
        ("Research the latest API", "research"),
        ("Design the module structure", "planning"),
        ("Write unit tests for the parser", "testing"),
        ("Fix the crash on startup", "debugging"),
        ("Refactor the session class", "refactoring"),
        ("Rename the helper", "simple-edit"),
        ("Create a logo for the app", "image-generation"),
        ("Implement a graph walk", "algorithms"),
        ("Add a login form", "coding"),
    ],
)
def test_infer_task_type(description, expected):
    assert ModelOrchestrator().infer_task_type(description) == expected


def test_model_info_and_available_models():
    clock = ManualClock()
    orch = ModelOrchestrator(catalog=_catalog(), clock=clock)
    orch.report_failure("model-a")
    info = orch.get_model_info("model-a")
    assert info["available"] is False
    assert info["cooldown_remaining"] == pytest.approx(30.0)
    assert orch.get_model_info("missing") is None
    assert {m["id"] for m in orch.get_available_models()} == {"model-a", "model-b", "model-c"}
