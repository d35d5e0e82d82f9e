"""Anti-bot challenge detection and best-effort resolution.

Detection runs a single page-side script; resolution clicks at most one checkbox-style
element per call and never attempts image puzzles.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from arena_pilot.browser.types import Frame, Page
from arena_pilot.exceptions import ManualInterventionRequired

logger = logging.getLogger(__name__)


class ChallengeStatus(str, Enum):
	CLEAR = 'clear'
	BLOCKED = 'blocked'


class PageReadiness(str, Enum):
	READY = 'ready'
	BLOCKED = 'blocked'
	LOADING = 'loading'


# Full-page inspection: interstitials, verification iframes and rate-limit walls.
# Returns {state: 'ready'|'blocked'|'loading', reason: str}.
READINESS_JS = """
() => {
	const title = (document.title || '').toLowerCase();
	const body = ((document.body && document.body.innerText) || '').toLowerCase();
	const hasInput = !!document.querySelector('textarea');

	if (title.includes('just a moment')) return { state: 'blocked', reason: 'interstitial title' };
	if (document.querySelector('#challenge-running')) return { state: 'blocked', reason: 'challenge-running' };
	if (document.querySelector('[data-ray]')) return { state: 'blocked', reason: 'cloudflare ray' };
	if (document.querySelector('iframe[title*="reCAPTCHA"]')) {
		const dialog = document.querySelector('div[role="dialog"]');
		if (!hasInput || (dialog && dialog.querySelector('iframe[title*="reCAPTCHA"]'))) {
			return { state: 'blocked', reason: 'recaptcha iframe' };
		}
	}
	const dialog = document.querySelector('div[role="dialog"]');
	if (dialog && (dialog.innerText || '').toLowerCase().includes('security verification')) {
		return { state: 'blocked', reason: 'verification dialog' };
	}
	if (!hasInput && body.includes('security verification')) return { state: 'blocked', reason: 'verification text' };
	if (!hasInput && (body.includes('you are being rate limited') || body.includes('too many requests'))) {
		return { state: 'blocked', reason: 'rate limit wall' };
	}
	if (hasInput) return { state: 'ready', reason: '' };
	return { state: 'loading', reason: '' };
}
"""

RECAPTCHA_FRAME_MARKERS = ('google.com/recaptcha', 'recaptcha/enterprise')
TURNSTILE_FRAME_MARKERS = ('challenges.cloudflare.com', 'turnstile')
RECAPTCHA_CHECKBOX_SELECTORS = (
	'#recaptcha-anchor > div.recaptcha-checkbox-border',
	'.recaptcha-checkbox-border',
	'#recaptcha-anchor',
)
TURNSTILE_CHECKBOX_SELECTORS = ('input[type="checkbox"]', '[role="checkbox"]')
PUZZLE_FRAME_SELECTOR = 'iframe[title*="challenge"], iframe[src*="bframe"]'


async def inspect_page(page: Page) -> tuple[PageReadiness, str]:
	result = await page.evaluate(READINESS_JS)
	return PageReadiness(result['state']), result.get('reason', '')


async def detect_challenge(page: Page) -> ChallengeStatus:
	readiness, reason = await inspect_page(page)
	if readiness is PageReadiness.BLOCKED:
		logger.debug(f'🧩 Challenge signature found: {reason}')
		return ChallengeStatus.BLOCKED
	return ChallengeStatus.CLEAR


async def _is_anchor_checked(frame: Frame) -> bool:
	anchor = await frame.query_selector('#recaptcha-anchor')
	if not anchor:
		return False
	return (await anchor.get_attribute('aria-checked')) == 'true'


async def _click_first(frame: Frame, selectors: tuple[str, ...]) -> bool:
	for selector in selectors:
		element = await frame.query_selector(selector)
		if element:
			await element.click()
			return True
	return False


async def attempt_resolution(page: Page, verify_delay: float = 1.0) -> bool:
	"""Click a checkbox-style challenge once.

	Returns True when a challenge element was clicked (or was already satisfied), False when
	nothing resolvable was found. Raises `ManualInterventionRequired` if the checkbox did not
	verify and an image puzzle is on screen.
	"""
	for frame in page.frames:
		url = frame.url or ''

		if any(marker in url for marker in RECAPTCHA_FRAME_MARKERS):
			if await _is_anchor_checked(frame):
				logger.info('🧩 reCAPTCHA already verified')
				return True
			if not await _click_first(frame, RECAPTCHA_CHECKBOX_SELECTORS):
				continue
			logger.info('🧩 Clicked reCAPTCHA checkbox')
			await asyncio.sleep(verify_delay)
			if await _is_anchor_checked(frame):
				logger.info('✅ reCAPTCHA verified')
				return True
			if await page.query_selector(PUZZLE_FRAME_SELECTOR):
				logger.warning('🧩 Image puzzle detected, manual solving required')
				raise ManualInterventionRequired('Image challenge requires manual intervention')
			return True

		if any(marker in url for marker in TURNSTILE_FRAME_MARKERS):
			if await _click_first(frame, TURNSTILE_CHECKBOX_SELECTORS):
				logger.info('🧩 Clicked Cloudflare checkbox')
				return True

	return False
