"""Message entry on the chat page: typing, image paste/upload and submission."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from arena_pilot.exceptions import ArenaError, classify_browser_error
from arena_pilot.utils import _log_preview

if TYPE_CHECKING:
	from arena_pilot.browser.types import Page

logger = logging.getLogger(__name__)

IMAGE_EDIT_PATTERN = re.compile(r'EDIT IMAGE \((.*?)\):\s*(.*)', re.DOTALL)

# React tracks the textarea value through the native setter, plain assignment is ignored.
SET_VALUE_JS = """
(msg) => {
	const textarea = document.querySelector('textarea');
	if (!textarea) return false;
	textarea.focus();
	const setter = Object.getOwnPropertyDescriptor(window.HTMLTextAreaElement.prototype, 'value').set;
	setter.call(textarea, msg);
	textarea.dispatchEvent(new Event('input', { bubbles: true }));
	textarea.dispatchEvent(new Event('change', { bubbles: true }));
	return true;
}
"""

PASTE_IMAGE_JS = """
async ([url, prompt]) => {
	const textarea = document.querySelector('textarea');
	if (!textarea) return false;
	textarea.focus();
	const blob = await (await fetch(url)).blob();
	const ext = blob.type.split('/')[1] || 'png';
	const dt = new DataTransfer();
	dt.items.add(new File([blob], 'image.' + ext, { type: blob.type }));
	textarea.dispatchEvent(new ClipboardEvent('paste', { clipboardData: dt, bubbles: true, cancelable: true }));
	const setter = Object.getOwnPropertyDescriptor(window.HTMLTextAreaElement.prototype, 'value').set;
	setter.call(textarea, prompt);
	textarea.dispatchEvent(new Event('input', { bubbles: true }));
	return true;
}
"""

CLICK_SEND_JS = """
() => {
	const button = document.querySelector('button[aria-label="Send message"]')
		|| document.querySelector('button[data-testid="send-button"]')
		|| Array.from(document.querySelectorAll('button')).find(b => (b.innerText || '').trim() === 'Send');
	if (!button) return false;
	button.click();
	return true;
}
"""

RESEND_SELECTOR = 'button[type="submit"], button.send-button, button[aria-label*="send" i]'

UPLOAD_IMAGE_JS = """
(data) => {
	if (!data.startsWith('data:image')) data = 'data:image/png;base64,' + data;
	const [header, payload] = data.split(',');
	const mime = header.match(/:(.*?);/)[1];
	const bytes = atob(payload);
	const u8 = new Uint8Array(bytes.length);
	for (let i = 0; i < bytes.length; i++) u8[i] = bytes.charCodeAt(i);
	const input = document.querySelector('input[type="file"][accept*="image"]');
	if (!input) return false;
	const dt = new DataTransfer();
	dt.items.add(new File([new Blob([u8], { type: mime })], 'upload.png', { type: mime }));
	input.files = dt.files;
	input.dispatchEvent(new Event('change', { bubbles: true }));
	return true;
}
"""


class InputNotFound(ArenaError):
	"""The chat page has no message input."""


class MessageComposer:
	"""Stateless helpers that drive the chat input of a given page."""

	def __init__(self, settle_seconds: float = 0.3, input_timeout_ms: int = 5_000):
		self.settle_seconds = settle_seconds
		self.input_timeout_ms = input_timeout_ms

	async def wait_for_input(self, page: Page) -> None:
		try:
			await page.wait_for_selector('textarea', timeout=self.input_timeout_ms)
		except Exception as e:
			err = classify_browser_error(e)
			if err is not e:
				raise err from e
			raise InputNotFound('Could not find the message input on the page') from e

	async def enter(self, page: Page, text: str) -> str:
		"""Put `text` into the input; returns the prompt text that will actually be sent."""
		await self.wait_for_input(page)
		match = IMAGE_EDIT_PATTERN.match(text)
		try:
			if match:
				image_url, prompt = match.group(1), match.group(2)
				logger.info(f'🖼️ Pasting image {image_url[:60]} for edit')
				await page.evaluate(PASTE_IMAGE_JS, [image_url, prompt])
				await asyncio.sleep(1.0)
				return prompt
			if not await page.evaluate(SET_VALUE_JS, text):
				raise InputNotFound('Message input disappeared before typing')
		except ArenaError:
			raise
		except Exception as e:
			raise classify_browser_error(e) from e
		return text

	async def submit(self, page: Page) -> None:
		await asyncio.sleep(self.settle_seconds)
		try:
			clicked = await page.evaluate(CLICK_SEND_JS)
			if not clicked:
				logger.debug('Send button not found, pressing Enter')
				await page.keyboard.press('Enter')
		except Exception as e:
			raise classify_browser_error(e) from e

	async def send(self, page: Page, text: str) -> str:
		sent = await self.enter(page, text)
		await self.submit(page)
		logger.debug(f'📤 Submitted: {_log_preview(sent, 50)}')
		return sent

	async def resend(self, page: Page) -> None:
		"""Click send again for a message still sitting in the input; never retypes it."""
		try:
			button = await page.query_selector(RESEND_SELECTOR)
			if button is not None:
				await button.click()
				return
			textarea = await page.query_selector('textarea')
			if textarea is not None:
				await textarea.click()
				await page.keyboard.press('Enter')
		except Exception as e:
			logger.warning(f'⚠️ Resend click failed: {type(e).__name__}: {e}')

	async def upload_image(self, page: Page, base64_data: str) -> bool:
		try:
			uploaded = await page.evaluate(UPLOAD_IMAGE_JS, base64_data)
		except Exception as e:
			raise classify_browser_error(e) from e
		if not uploaded:
			logger.warning('⚠️ Image file input not found, upload skipped')
			return False
		logger.info('🖼️ Image uploaded')
		await asyncio.sleep(1.0)
		return True
