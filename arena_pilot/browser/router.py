"""Navigation & model routing.

The upstream page encodes the selected model in its URL, so switching models is always a
full navigation. Location building is a pure function of (model id, modality hint).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from pydantic import BaseModel

from arena_pilot.catalog import MODEL_CATALOG, Modality, canonical_model_id
from arena_pilot.config import CONFIG
from arena_pilot.exceptions import classify_browser_error
from arena_pilot.utils import _log_pretty_url, human_delay

if TYPE_CHECKING:
	from arena_pilot.browser.session import SessionController
	from arena_pilot.browser.types import Page

logger = logging.getLogger(__name__)

IMAGE_KEYWORDS = ('image', 'flux', 'imagen', 'dall-e', 'reve', 'photon', 'recraft', 'ideogram')
SEARCH_KEYWORDS = ('search', 'grounding', 'sonar', 'diffbot')

THIN_DOM_JS = """
() => {
	if (!document.getElementById('arena-thin-style')) {
		const style = document.createElement('style');
		style.id = 'arena-thin-style';
		style.textContent = `
			*, *::before, *::after { animation-duration: 0s !important; transition-duration: 0s !important; }
			aside, [data-side="left"], .sidebar, header, nav, footer,
			[class*="banner"], [class*="announcement"] { display: none !important; }
			textarea { display: block !important; visibility: visible !important; }
		`;
		(document.head || document.documentElement).appendChild(style);
	}
	const selectors = [
		'aside', 'header', 'nav', 'footer', '.sidebar', '[data-side]',
		'[class*="banner"]', '[class*="announcement"]', 'video', 'canvas',
	];
	let removed = 0;
	for (const sel of selectors) {
		let nodes;
		try { nodes = document.querySelectorAll(sel); } catch (e) { continue; }
		nodes.forEach(el => {
			if (el.querySelector('textarea, form') || el.closest('form')) return;
			el.remove();
			removed += 1;
		});
	}
	return removed;
}
"""

ACCEPT_TERMS_JS = """
() => {
	const agreeTexts = ['i agree', 'agree', 'accept', 'i accept'];
	let clickedCheckbox = false;
	for (const dialog of document.querySelectorAll('[role="dialog"], .modal')) {
		dialog.querySelectorAll('input[type="checkbox"]').forEach(cb => {
			if (!cb.checked) { cb.click(); clickedCheckbox = true; }
		});
		for (const btn of dialog.querySelectorAll('button')) {
			if (agreeTexts.includes((btn.textContent || '').toLowerCase().trim())) { btn.click(); return 'agreed'; }
		}
	}
	for (const btn of document.querySelectorAll('button')) {
		const text = (btn.textContent || '').toLowerCase().trim();
		if (text === 'i agree' || text === 'agree' || text === 'i accept') { btn.click(); return 'agreed'; }
	}
	return clickedCheckbox ? 'checkboxes' : 'none';
}
"""

MODEL_ICON_JS = """
() => {
	const header = document.querySelector('#chat-area div.flex.min-w-0.items-center.justify-start.gap-2');
	if (!header) return null;
	const buttons = header.querySelectorAll('button');
	if (buttons.length < 2) return null;
	const svg = buttons[1].querySelector('svg');
	if (!svg) return null;
	let source = new XMLSerializer().serializeToString(svg);
	if (!/^<svg[^>]+xmlns="http:\\/\\/www\\.w3\\.org\\/2000\\/svg"/.test(source)) {
		source = source.replace(/^<svg/, '<svg xmlns="http://www.w3.org/2000/svg"');
	}
	return 'data:image/svg+xml;charset=utf-8,' + encodeURIComponent(source);
}
"""


class NavigationTarget(BaseModel):
	model_id: str | None
	url: str
	modality: Modality


def resolve_modality(model_id: str | None, hint: Modality | str = Modality.TEXT) -> Modality:
	"""Catalog lookup first, then keyword heuristics on the id, then the hint."""
	hint = Modality(hint)
	if not model_id:
		return hint
	descriptor = MODEL_CATALOG.get(canonical_model_id(model_id) or '')
	if descriptor is not None:
		return descriptor.modality
	lowered = model_id.lower()
	if any(keyword in lowered for keyword in IMAGE_KEYWORDS):
		return Modality.IMAGE
	if any(keyword in lowered for keyword in SEARCH_KEYWORDS):
		return Modality.SEARCH
	return hint


def build_location(model_id: str | None, hint: Modality | str = Modality.TEXT, base_url: str | None = None) -> NavigationTarget:
	base = (base_url or CONFIG.ARENA_BASE_URL).rstrip('/')
	model_id = canonical_model_id(model_id)
	modality = resolve_modality(model_id, hint)
	url = f'{base}/?mode=direct'
	if model_id:
		url += f'&model={quote(model_id, safe="")}'
	url += f'&chat-modality={modality.value}'
	return NavigationTarget(model_id=model_id, url=url, modality=modality)


class ModelRouter:
	"""Performs model switches on the shared session and tracks the active model."""

	def __init__(self, session: SessionController, base_url: str | None = None, thin_dom: bool | None = None):
		self.session = session
		self.base_url = (base_url or CONFIG.ARENA_BASE_URL).rstrip('/')
		self.thin_dom_enabled = CONFIG.ARENA_THIN_DOM if thin_dom is None else thin_dom
		self.current: NavigationTarget | None = None

	@property
	def current_model(self) -> str | None:
		return self.current.model_id if self.current else None

	@property
	def current_modality(self) -> Modality:
		return self.current.modality if self.current else Modality.TEXT

	def build_location(self, model_id: str | None, hint: Modality | str = Modality.TEXT) -> NavigationTarget:
		return build_location(model_id, hint, base_url=self.base_url)

	async def navigate(self, model_id: str | None, hint: Modality | str = Modality.TEXT) -> NavigationTarget:
		"""Full navigation to the model's location; the page handle is re-fetched afterwards."""
		target = self.build_location(model_id, hint)
		logger.info(f'🧭 Switching to model {target.model_id or "<default>"} ({target.modality.value})')
		page = await self.session.get_page()
		await self._safe_goto(page, target.url)
		await self._after_navigation()
		self.current = target
		return target

	async def navigate_to_chat(self, chat_id: str | None) -> str:
		if chat_id:
			url = f'{self.base_url}/c/{chat_id}'
		else:
			url = self.build_location(self.current_model, self.current_modality).url
		page = await self.session.get_page()
		await self._safe_goto(page, url)
		await self._after_navigation()
		return url

	async def _after_navigation(self) -> None:
		await self.accept_terms()
		if self.thin_dom_enabled:
			await self.thin_dom()

	async def _safe_goto(self, page: Page, url: str) -> None:
		logger.debug(f'🔗 Navigating to {_log_pretty_url(url, max_len=80)}')
		try:
			await page.goto(url, wait_until='domcontentloaded', timeout=60_000)
		except Exception as e:
			if 'net::ERR_ABORTED' in str(e):
				logger.warning(f'⚠️ Navigation to {_log_pretty_url(url)} aborted, continuing')
				await human_delay(0.5, 1.0)
				self.session.last_location = url
				return
			raise classify_browser_error(e) from e
		self.session.last_location = url
		await human_delay(0.2, 0.5)

	async def accept_terms(self) -> str:
		"""Click through a terms-of-service dialog if one is shown."""
		result = 'none'
		for _ in range(2):
			page = await self.session.get_page()
			try:
				result = await page.evaluate(ACCEPT_TERMS_JS)
			except Exception as e:
				logger.debug(f'Terms check failed: {type(e).__name__}: {e}')
				return 'error'
			if result == 'agreed':
				logger.info('📜 Accepted terms of service')
				await human_delay(0.8, 1.2)
				break
			if result != 'checkboxes':
				break
			await human_delay(0.4, 0.6)
		return result

	async def thin_dom(self) -> int:
		"""Strip heavy page chrome; the message input and page scripts are left untouched."""
		page = await self.session.get_page()
		try:
			removed = await page.evaluate(THIN_DOM_JS)
		except Exception as e:
			logger.debug(f'DOM thinning skipped: {type(e).__name__}: {e}')
			return 0
		logger.debug(f'🧹 Thinned DOM, removed {removed} elements')
		return removed

	async def extract_model_icon(self) -> str | None:
		page = await self.session.get_page()
		try:
			return await page.evaluate(MODEL_ICON_JS)
		except Exception as e:
			logger.debug(f'Could not extract model icon: {type(e).__name__}: {e}')
			return None
