from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Self

import psutil
from bubus.helpers import retry
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from uuid_extensions import uuid7str

from arena_pilot.agent.concurrency import SendLease
from arena_pilot.browser import challenge as challenge_mod
from arena_pilot.browser.challenge import ChallengeStatus, PageReadiness
from arena_pilot.browser.identity import find_profile_holders, release_profile, seed_identity
from arena_pilot.browser.profile import SessionProfile
from arena_pilot.browser.stealth import ANTI_FINGERPRINT_SCRIPT, HumanPresence
from arena_pilot.browser.types import (
	BrowserContext,
	Page,
	Patchright,
	PlaywrightOrPatchright,
	Route,
	async_patchright,
	async_playwright,
)
from arena_pilot.config import CONFIG
from arena_pilot.exceptions import SessionCrashed
from arena_pilot.utils import _log_pretty_path, _log_pretty_url

BLOCKED_RESOURCE_TYPES = ('image', 'media', 'font', 'stylesheet')
BLOCKED_URL_MARKERS = ('analytics', 'google-analytics', 'gtag', 'tracking', 'sentry', 'hotjar')


class SessionController(BaseModel):
	"""
	Owns the single controlled browser: its process, persistent identity profile, page handle,
	anti-detection setup, idle presence loop and challenge handling.

	Page handles are only valid for one launch generation. Callers must re-fetch the page with
	`get_page()` after anything that may have relaunched the browser, never keep it across calls.
	"""

	model_config = ConfigDict(
		extra='forbid',
		validate_assignment=False,
		frozen=False,
		arbitrary_types_allowed=True,
	)

	id: str = Field(default_factory=uuid7str)
	profile: SessionProfile = Field(default_factory=SessionProfile)

	playwright: PlaywrightOrPatchright | None = Field(default=None, exclude=True)
	browser_context: BrowserContext | None = Field(default=None, exclude=True)
	browser_pid: int | None = Field(default=None, description='pid of the launched chromium process')

	initialized: bool = False
	last_location: str | None = Field(default=None, description='Last URL navigated to by the router; a relaunch returns here')
	presence_enabled: bool = True
	presence_start_delay: float = Field(default=3.0, description='Seconds after launch before the first presence move is scheduled')

	_page: Page | None = PrivateAttr(default=None)
	_launch_task: asyncio.Task | None = PrivateAttr(default=None)
	_generation: int = PrivateAttr(default=0)
	_init_scripts: list[str] = PrivateAttr(default_factory=list)
	_presence: HumanPresence | None = PrivateAttr(default=None)
	_send_semaphore: asyncio.Semaphore | None = PrivateAttr(default=None)

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'arena_pilot.SessionController🆂 {self.id[-4:]}')

	def __repr__(self) -> str:
		return f'SessionController🆂 {self.id[-4:]} gen={self._generation} pid={self.browser_pid}'

	def __str__(self) -> str:
		return repr(self)

	@property
	def generation(self) -> int:
		"""Incremented on every successful launch; a changed value means old page handles are dead."""
		return self._generation

	@property
	def current_page(self) -> Page | None:
		"""The page handle of the current generation, without health checks or relaunch."""
		if self._page is not None and not self._page.is_closed():
			return self._page
		return None

	@property
	def _driver_name(self) -> str:
		return 'patchright' if self.profile.stealth else 'playwright'

	# --- lifecycle ---------------------------------------------------------------------

	async def launch(self) -> Self:
		"""
		Start the browser if it is not running. Concurrent callers await the same in-flight
		launch instead of starting a second browser on the same profile.
		"""
		if self.initialized and await self.is_connected():
			return self

		if self.initialized:
			self.logger.warning(f'💔 Browser {self._driver_name} pid={self.browser_pid} has gone away, relaunching...')
			await self._teardown(_hint='(lost connection)')

		if self._launch_task is None or self._launch_task.done():
			self._launch_task = asyncio.create_task(self._launch(), name=f'launch-{self.id[-4:]}')

		task = self._launch_task
		try:
			await asyncio.shield(task)
		finally:
			if task.done() and self._launch_task is task:
				self._launch_task = None
		return self

	async def _launch(self) -> None:
		profile = self.profile
		start = time.monotonic()
		try:
			await asyncio.to_thread(seed_identity, profile.user_data_dir, profile.template_dir)

			if self._check_for_singleton_lock_conflict():
				self.logger.warning(
					f'⚠️ Profile {_log_pretty_path(profile.user_data_dir)} is held by another browser, terminating it'
				)
				await asyncio.to_thread(release_profile, profile.user_data_dir)

			if self.playwright is None:
				self.playwright = await (async_patchright() if profile.stealth else async_playwright()).start()

			self.logger.info(
				f'🚀 Launching {self._driver_name} headless={profile.headless} '
				f'user_data_dir= {_log_pretty_path(profile.user_data_dir)}'
			)
			self.browser_context = await self.playwright.chromium.launch_persistent_context(
				**profile.kwargs_for_launch_persistent_context()
			)
			self.browser_context.set_default_timeout(profile.default_timeout_ms)

			setup_results = await asyncio.gather(
				self._setup_init_scripts(),
				self._setup_request_blocking(),
				return_exceptions=True,
			)
			for name, result in zip(('_setup_init_scripts', '_setup_request_blocking'), setup_results):
				if isinstance(result, Exception):
					raise SessionCrashed(f'Browser setup failed in {name}: {result}') from result

			pages = self.browser_context.pages
			self._page = pages[0] if pages else await self.browser_context.new_page()
			self.browser_pid = self._detect_browser_pid()
			self._generation += 1
			self.initialized = True

			if self.last_location:
				await self._restore_location(self._page, self.last_location)

			if self.presence_enabled:
				self._presence = HumanPresence(
					lambda: self.current_page,
					min_interval=CONFIG.ARENA_PRESENCE_MIN_SECONDS,
					max_interval=CONFIG.ARENA_PRESENCE_MAX_SECONDS,
				)
				self._presence.start(initial_delay=self.presence_start_delay)

			self.logger.info(
				f'✅ Browser ready in {time.monotonic() - start:.1f}s (generation={self._generation}, pid={self.browser_pid})'
			)
		except BaseException:
			self.initialized = False
			await self._teardown(_hint='(launch failed)')
			raise

	async def _restore_location(self, page: Page, url: str) -> None:
		"""Return a freshly launched page to where the router last left the session."""
		self.logger.info(f'🔁 Returning to {_log_pretty_url(url)} after relaunch')
		try:
			await page.goto(url, wait_until='domcontentloaded', timeout=self.profile.default_timeout_ms)
		except Exception as e:
			if 'net::ERR_ABORTED' in str(e):
				self.logger.warning(f'⚠️ Navigation to {_log_pretty_url(url)} aborted, continuing')
				return
			raise SessionCrashed(f'Relaunched browser could not return to {url}: {type(e).__name__}: {e}') from e

	async def _setup_init_scripts(self) -> None:
		assert self.browser_context is not None
		await self.browser_context.add_init_script(ANTI_FINGERPRINT_SCRIPT)
		for script in self._init_scripts:
			await self.browser_context.add_init_script(script)
		if self.profile.stealth and not isinstance(self.playwright, Patchright):
			self.logger.warning('⚠️ Stealth requested but a plain playwright driver is in use')

	async def _setup_request_blocking(self) -> None:
		if not self.profile.block_resources:
			return
		assert self.browser_context is not None

		async def _filter(route: Route) -> None:
			request = route.request
			url = request.url
			if request.resource_type in BLOCKED_RESOURCE_TYPES or any(marker in url for marker in BLOCKED_URL_MARKERS):
				await route.abort()
			else:
				await route.continue_()

		await self.browser_context.route('**/*', _filter)

	async def add_init_script(self, script: str) -> None:
		"""Register a script that runs before page scripts in every document, across relaunches."""
		if script in self._init_scripts:
			return
		self._init_scripts.append(script)
		if self.browser_context is not None:
			await self.browser_context.add_init_script(script)

	def _detect_browser_pid(self) -> int | None:
		holders = find_profile_holders(self.profile.user_data_dir)
		pids = {proc.pid for proc in holders}
		for proc in holders:
			try:
				if proc.ppid() not in pids:
					return proc.pid
			except psutil.NoSuchProcess:
				continue
		return None

	def _check_for_singleton_lock_conflict(self) -> bool:
		"""True if some other running process was launched with this profile's user data dir."""
		return bool(find_profile_holders(self.profile.user_data_dir, exclude_pid=self.browser_pid))

	async def is_connected(self) -> bool:
		"""
		Check that the browser context exists and can still run script.

		Returns False if there is no context, the context has no pages, or a trivial evaluate
		fails on the first page.
		"""
		if not self.browser_context:
			return False
		try:
			pages = self.browser_context.pages
			if not pages:
				return False
			return (await pages[0].evaluate('() => true')) is True
		except Exception:
			return False

	async def _is_page_responsive(self, page: Page, timeout: float = 5.0) -> bool:
		"""Check if a page is responsive by trying to evaluate simple JavaScript."""
		if page.is_closed():
			return False
		eval_task = asyncio.create_task(page.evaluate('1'))
		try:
			done, _ = await asyncio.wait([eval_task], timeout=timeout)
			if eval_task in done:
				return eval_task.exception() is None
			return False
		finally:
			if not eval_task.done():
				eval_task.cancel()
				try:
					await eval_task
				except (asyncio.CancelledError, Exception):
					pass

	async def get_page(self) -> Page:
		"""Return a live page handle, relaunching the browser if the current one is unresponsive."""
		if not self.initialized or self._page is None:
			await self.launch()
		assert self._page is not None

		if not await self._is_page_responsive(self._page):
			self.logger.warning(f'💔 Page at {_log_pretty_url(self._safe_url(self._page))} is unresponsive, restarting browser')
			await self.restart()
		if self._page is None:
			raise SessionCrashed('Browser relaunch did not produce a page')
		return self._page

	@staticmethod
	def _safe_url(page: Page) -> str:
		try:
			return page.url
		except Exception:
			return '<unknown>'

	# --- challenges --------------------------------------------------------------------

	async def detect_challenge(self) -> ChallengeStatus:
		page = await self.get_page()
		return await challenge_mod.detect_challenge(page)

	async def attempt_challenge_resolution(self) -> bool:
		"""One best-effort checkbox click; raises ManualInterventionRequired for image puzzles."""
		page = await self.get_page()
		return await challenge_mod.attempt_resolution(page)

	async def wait_for_clearance(self, timeout: float = 30.0, interval: float = 1.0) -> PageReadiness:
		"""Poll until the message input is available or a block persists past `timeout`."""
		deadline = time.monotonic() + timeout
		readiness = PageReadiness.LOADING
		while time.monotonic() < deadline:
			page = await self.get_page()
			try:
				readiness, reason = await challenge_mod.inspect_page(page)
			except Exception as e:
				self.logger.debug(f'⏳ Page not inspectable yet: {type(e).__name__}: {e}')
				readiness = PageReadiness.LOADING
			if readiness is PageReadiness.READY:
				return readiness
			await asyncio.sleep(interval)
		self.logger.warning(f'⏳ Page not ready after {timeout:.0f}s (last state: {readiness.value})')
		return readiness

	# --- concurrency -------------------------------------------------------------------

	def send_lease(self, timeout: float | None = None) -> SendLease:
		if self._send_semaphore is None:
			self._send_semaphore = asyncio.Semaphore(1)
		return SendLease(self._send_semaphore, timeout=timeout, holder=self.id)

	# --- teardown ----------------------------------------------------------------------

	async def close(self) -> None:
		"""Shut the browser down; references are cleared even if closing fails midway."""
		if self._launch_task is not None and not self._launch_task.done():
			self._launch_task.cancel()
			try:
				await self._launch_task
			except (asyncio.CancelledError, Exception):
				pass
		await self._teardown(_hint='(close() called)')
		if self.playwright is not None:
			try:
				await self.playwright.stop()
			except Exception as e:
				self.logger.debug(f'⚠️ Error stopping {self._driver_name}: {type(e).__name__}: {e}')
			finally:
				self.playwright = None

	async def restart(self) -> Self:
		await self.close()
		return await self.launch()

	async def _teardown(self, _hint: str = '') -> None:
		if self._presence is not None:
			await self._presence.stop()
			self._presence = None

		if self.browser_context is not None:
			self.logger.info(f'🛑 Closing browser context {_hint}')
			try:
				await self._close_browser_context()
			except Exception as e:
				if 'has been closed' not in str(e):
					self.logger.warning(f'❌ Error closing browser context: {type(e).__name__}: {e}')
			finally:
				self.browser_context = None

		if self.browser_pid:
			try:
				await self._terminate_browser_process(_hint=_hint)
			except psutil.NoSuchProcess:
				pass
			except (TimeoutError, psutil.TimeoutExpired):
				try:
					self.logger.warning(f'⏱️ Process did not terminate gracefully, force killing browser_pid={self.browser_pid}')
					psutil.Process(pid=self.browser_pid).kill()
				except psutil.NoSuchProcess:
					pass
			finally:
				self.browser_pid = None

		self._reset_connection_state()

	def _reset_connection_state(self) -> None:
		was_connected = self.initialized or self._page is not None
		self.initialized = False
		self._page = None
		self.browser_context = None
		if was_connected:
			self.logger.debug(f'⚰️ Browser generation={self._generation} disconnected')

	@retry(wait=1, retries=2, timeout=45, semaphore_limit=1, semaphore_scope='self', semaphore_lax=False)
	async def _close_browser_context(self) -> None:
		"""Close browser context with retry logic."""
		if self.browser_context:
			await self.browser_context.close()

	@retry(
		wait=0.5,
		retries=3,
		timeout=5,
		semaphore_limit=1,
		semaphore_scope='self',
		semaphore_lax=True,
		retry_on=(TimeoutError, psutil.TimeoutExpired),  # Only retry on timeouts, not NoSuchProcess
	)
	async def _terminate_browser_process(self, _hint: str = '') -> None:
		"""Terminate the chromium process and its helpers."""
		if not self.browser_pid:
			return
		proc = psutil.Process(pid=self.browser_pid)
		self.logger.info(f' ↳ Killing browser_pid={self.browser_pid} {_hint}')
		children = proc.children(recursive=True)
		proc.terminate()
		await asyncio.to_thread(proc.wait, timeout=4)
		for child in children:
			try:
				child.kill()
			except psutil.NoSuchProcess:
				pass

	async def __aenter__(self) -> SessionController:
		await self.launch()
		return self

	async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
		await self.close()
