from arena_pilot.browser.router import ModelRouter, build_location, resolve_modality
from arena_pilot.catalog import (
    MODEL_CATALOG,
    Cooldown,
    Modality,
    canonical_model_id,
    copy_catalog,
    get_descriptor,
)


def test_catalog_ids_are_unique_and_consistent():
    for key, descriptor in MODEL_CATALOG.items():
        assert key == descriptor.id
        assert descriptor.cost_weight >= 0


def test_router_only_entries_use_neutral_profile():
    descriptor = MODEL_CATALOG["grok-4.1"]
    assert descriptor.tier is None
    assert descriptor.speed.value == "medium"
    assert descriptor.cost_weight == 0.5


def test_aliases():
    assert canonical_model_id("o3") == "o3-2025-04-16"
    assert canonical_model_id("gpt-5.2") == "gpt-5.2"
    assert canonical_model_id(None) is None
    assert get_descriptor("nano-banana").modality is Modality.IMAGE


def test_copy_catalog_is_independent():
    copied = copy_catalog()
    copied["gpt-5.2"].cooldown = Cooldown.start(0.0)
    assert MODEL_CATALOG["gpt-5.2"].cooldown is None


def test_cooldown_window():
    cooldown = Cooldown.start(10.0, base=5.0, cap=20.0)
    assert cooldown.is_active(14.9)
    assert not cooldown.is_active(15.0)
    assert cooldown.remaining(12.0) == 3.0
    assert cooldown.extend(12.0).duration == 6.0
    assert cooldown.extend(100.0).duration == 5.0


def test_resolve_modality():
    assert resolve_modality("gpt-image-1.5") is Modality.IMAGE
    assert resolve_modality("gpt-5.2-search") is Modality.SEARCH
    assert resolve_modality("gpt-5.2") is Modality.TEXT
    # not in the catalog: keyword heuristics, then the hint
    assert resolve_modality("some-flux-variant") is Modality.IMAGE
    assert resolve_modality("some-sonar-variant") is Modality.SEARCH
    assert resolve_modality("mystery", "search") is Modality.SEARCH
    assert resolve_modality(None, Modality.IMAGE) is Modality.IMAGE


def test_build_location_quotes_model_id():
    target = build_location("nano-banana-pro", base_url="https://arena.test/")
    assert target.model_id == "gemini-3-pro-image-preview-2k (nano-banana-pro)"
    assert target.modality is Modality.IMAGE
    assert target.url == (
        "https://arena.test/?mode=direct"
        "&model=gemini-3-pro-image-preview-2k%20%28nano-banana-pro%29"
        "&chat-modality=image"
    )


def test_build_location_without_model():
    target = build_location(None, base_url="https://arena.test")
    assert target.url == "https://arena.test/?mode=direct&chat-modality=text"


class DummyPage:
    def __init__(self):
        self.visited = []
        self.url = "about:blank"

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        self.url = url

    async def evaluate(self, script, *args):
        if "agreed" in script:
            return "none"
        return 0

    def is_closed(self):
        return False


class DummySession:
    def __init__(self):
        self.page = DummyPage()
        self.last_location = None

    async def get_page(self):
        return self.page


async def test_router_navigates_and_tracks_current(monkeypatch):
    monkeypatch.setattr("arena_pilot.browser.router.human_delay", _no_delay)
    session = DummySession()
    router = ModelRouter(session, base_url="https://arena.test", thin_dom=False)

    target = await router.navigate("gpt-5.2-search")
    assert router.current_model == "gpt-5.2-search"
    assert router.current_modality is Modality.SEARCH
    assert session.page.visited == [target.url]
    assert session.last_location == target.url

    chat_url = await router.navigate_to_chat("abc123")
    assert chat_url == "https://arena.test/c/abc123"


async def _no_delay(*_args, **_kwargs):
    return None
