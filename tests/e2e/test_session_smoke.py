"""
Session smoke test: launch a real browser on a throwaway profile and drive a local chat page.

Proves the launch path, init scripts, readiness inspection and message entry work together
without touching the upstream service.
"""

from pathlib import Path
from urllib.parse import quote

import pytest

from arena_pilot.browser.challenge import ChallengeStatus, PageReadiness, inspect_page
from arena_pilot.browser.composer import MessageComposer
from arena_pilot.browser.profile import SessionProfile
from arena_pilot.browser.session import SessionController
from arena_pilot.stream.sources import NetworkStreamSource

pytestmark = pytest.mark.e2e

CHAT_HTML = """
<html><head><title>Local chat</title></head>
<body>
  <form onsubmit="event.preventDefault(); window.__submitted = document.querySelector('textarea').value;">
    <textarea placeholder="Ask anything"></textarea>
    <button type="submit" aria-label="Send">Send</button>
  </form>
</body></html>
"""

WALL_HTML = "<html><head><title>Just a moment...</title></head><body>Checking your browser</body></html>"


def _data_url(html: str) -> str:
    return "data:text/html," + quote(html)


@pytest.fixture
async def session(temp_profile_dir, chrome_exec):
    profile = SessionProfile(
        user_data_dir=Path(temp_profile_dir),
        template_dir=None,
        headless=True,
        stealth=False,
        executable_path=chrome_exec,
        block_resources=False,
    )
    controller = SessionController(profile=profile, presence_enabled=False)
    await NetworkStreamSource().install(controller)
    await controller.launch()
    try:
        yield controller
    finally:
        await controller.close()


async def test_launch_installs_scripts_and_reads_page(session):
    assert session.initialized
    assert session.generation == 1

    page = await session.get_page()
    await page.goto(_data_url(CHAT_HTML))

    assert await page.evaluate("() => navigator.webdriver") in (False, None)
    assert await page.evaluate("() => window.__arenaInterceptor === true")

    readiness, _reason = await inspect_page(page)
    assert readiness is PageReadiness.READY
    assert await session.detect_challenge() is ChallengeStatus.CLEAR


async def test_interstitial_counts_as_blocked(session):
    page = await session.get_page()
    await page.goto(_data_url(WALL_HTML))
    assert await session.detect_challenge() is ChallengeStatus.BLOCKED
    assert await session.wait_for_clearance(timeout=1.0, interval=0.2) is PageReadiness.BLOCKED


async def test_composer_enters_and_submits(session):
    page = await session.get_page()
    await page.goto(_data_url(CHAT_HTML))

    await MessageComposer(settle_seconds=0).send(page, "hello from the smoke test")

    assert await page.evaluate("() => window.__submitted") == "hello from the smoke test"
