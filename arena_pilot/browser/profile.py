from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from arena_pilot.config import CONFIG

CHROME_DEFAULT_ARGS = [
	'--no-first-run',
	'--no-default-browser-check',
	'--disable-background-networking',
	'--disable-sync',
	'--metrics-recording-only',
	'--password-store=basic',
	'--use-mock-keychain',
	'--disable-dev-shm-usage',
	'--disable-features=Translate,AcceptCHFrame,MediaRouter,OptimizationHints',
]

# Defaults that only a harness would pass; a regular desktop Chrome never carries them.
STEALTH_FORBIDDEN_ARGS = {
	'--disable-background-networking',
	'--metrics-recording-only',
	'--password-store=basic',
	'--use-mock-keychain',
	'--disable-sync',
}
STEALTH_FORBIDDEN_PREFIXES = ('--disable-features=',)

# Flags that trigger Chrome's "unsupported command-line flag" banner.
UNSUPPORTED_ARGS = {'--extensions-on-chrome-urls', '--no-sandbox'}

IGNORED_DEFAULT_ARGS = ['--enable-automation']

DEFAULT_USER_AGENT = (
	'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class SessionProfile(BaseModel):
	"""Launch configuration for the controlled browser and its persisted identity."""

	model_config = ConfigDict(extra='forbid', validate_assignment=True)

	user_data_dir: Path = Field(default_factory=lambda: CONFIG.profile_dir)
	template_dir: Path | None = Field(
		default_factory=lambda: CONFIG.template_profile_dir,
		description='Existing browser profile to seed cookies/storage from on first run',
	)
	headless: bool = Field(default_factory=lambda: CONFIG.ARENA_HEADLESS)
	stealth: bool = Field(
		default_factory=lambda: CONFIG.ARENA_STEALTH,
		description='Use patchright and strip automation-revealing launch flags',
	)
	executable_path: str | None = Field(default_factory=lambda: CONFIG.ARENA_EXECUTABLE_PATH)
	window_width: int = 1400
	window_height: int = 900
	user_agent: str | None = DEFAULT_USER_AGENT
	locale: str = 'en-US'
	args: list[str] = Field(default_factory=list)
	block_resources: bool = Field(default_factory=lambda: CONFIG.ARENA_BLOCK_RESOURCES)
	default_timeout_ms: int = 60_000

	def get_args(self) -> list[str]:
		"""Chromium command-line flags for this profile, deduplicated and filtered."""
		args = list(CHROME_DEFAULT_ARGS)
		args.append(f'--window-size={self.window_width},{self.window_height}')
		args += self.args

		if self.stealth:
			args = [
				a
				for a in args
				if a not in STEALTH_FORBIDDEN_ARGS and not a.startswith(STEALTH_FORBIDDEN_PREFIXES)
			]
			if not any(a.startswith('--disable-blink-features=') for a in args):
				args.append('--disable-blink-features=AutomationControlled')

		args = [a for a in args if a not in UNSUPPORTED_ARGS]

		deduped: list[str] = []
		seen: set[str] = set()
		for arg in args:
			key = arg.split('=', 1)[0]
			if key in seen:
				continue
			seen.add(key)
			deduped.append(arg)
		return deduped

	def kwargs_for_launch_persistent_context(self) -> dict:
		kwargs = {
			'user_data_dir': str(self.user_data_dir),
			'headless': self.headless,
			'args': self.get_args(),
			'ignore_default_args': IGNORED_DEFAULT_ARGS,
			'viewport': None,
			'locale': self.locale,
		}
		if self.user_agent:
			kwargs['user_agent'] = self.user_agent
		if self.executable_path:
			kwargs['executable_path'] = self.executable_path
		return kwargs
