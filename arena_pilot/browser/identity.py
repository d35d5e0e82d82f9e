"""Seeding of the persistent automation identity from an existing browser profile.

A fresh profile directory gets the template's cookies, storage and preferences copied in,
so the first launch starts logged-in instead of anonymous.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import psutil

from arena_pilot.utils import _log_pretty_path

logger = logging.getLogger(__name__)

PROFILE_FILES = [
	'Cookies',
	'Cookies-journal',
	'Login Data',
	'Login Data-journal',
	'Web Data',
	'Web Data-journal',
	'Preferences',
	'Secure Preferences',
]
PROFILE_DIRS = [
	'Local Storage',
	'Session Storage',
	'IndexedDB',
	'Network',
]
ROOT_FILES = ['Local State']


def is_seeded(user_data_dir: Path) -> bool:
	"""A profile counts as seeded once it carries a cookie store in either location."""
	default = Path(user_data_dir) / 'Default'
	return (default / 'Cookies').exists() or (default / 'Network' / 'Cookies').exists()


def find_profile_holders(user_data_dir: Path, exclude_pid: int | None = None) -> list[psutil.Process]:
	"""Return running processes launched with `--user-data-dir` pointing at this profile."""
	target_dir = str(Path(user_data_dir).expanduser().resolve())
	holders: list[psutil.Process] = []

	for proc in psutil.process_iter(['pid', 'cmdline']):
		if exclude_pid and proc.info['pid'] == exclude_pid:
			continue
		cmdline = proc.info['cmdline'] or []
		for i, arg in enumerate(cmdline):
			if arg.startswith('--user-data-dir='):
				candidate = arg.split('=', 1)[1]
			elif arg == '--user-data-dir' and i + 1 < len(cmdline):
				candidate = cmdline[i + 1]
			else:
				continue
			try:
				candidate = str(Path(candidate).expanduser().resolve())
			except OSError:
				pass
			if candidate == target_dir:
				holders.append(proc)
				break
	return holders


def release_profile(user_data_dir: Path, timeout: float = 5.0) -> int:
	"""Terminate browsers still holding the profile lock; returns how many were stopped."""
	holders = find_profile_holders(user_data_dir)
	for proc in holders:
		logger.info(f'🔪 Terminating pid={proc.pid} holding profile {_log_pretty_path(user_data_dir)}')
		try:
			proc.terminate()
		except psutil.NoSuchProcess:
			continue
	_, alive = psutil.wait_procs(holders, timeout=timeout)
	for proc in alive:
		try:
			proc.kill()
		except psutil.NoSuchProcess:
			pass
	return len(holders)


def seed_identity(user_data_dir: Path, template_dir: Path | None) -> bool:
	"""Copy the identity-bearing parts of `template_dir` into `user_data_dir`.

	Returns True when a copy happened. Already-seeded profiles and missing templates are
	left alone; individual files that cannot be copied (locked, permission denied) are logged
	and skipped.
	"""
	user_data_dir = Path(user_data_dir)
	user_data_dir.mkdir(parents=True, exist_ok=True)

	if is_seeded(user_data_dir):
		logger.debug(f'👤 Profile {_log_pretty_path(user_data_dir)} already carries an identity')
		return False

	if not template_dir:
		logger.info('👤 No template profile configured, starting with a cold identity')
		return False

	template_dir = Path(template_dir)
	template_default = template_dir / 'Default'
	if not template_default.is_dir():
		logger.warning(f'⚠️ Template profile {_log_pretty_path(template_dir)} has no Default/ directory, skipping seed')
		return False

	release_profile(user_data_dir)

	target_default = user_data_dir / 'Default'
	target_default.mkdir(parents=True, exist_ok=True)
	copied = 0

	for name in PROFILE_FILES:
		src = template_default / name
		if src.is_file():
			copied += _copy(src, target_default / name)

	for name in PROFILE_DIRS:
		src = template_default / name
		if src.is_dir():
			try:
				shutil.copytree(src, target_default / name, dirs_exist_ok=True)
				copied += 1
			except (OSError, shutil.Error) as e:
				logger.warning(f'⚠️ Could not copy {name}/ from template: {type(e).__name__}: {e}')

	for name in ROOT_FILES:
		src = template_dir / name
		if src.is_file():
			copied += _copy(src, user_data_dir / name)

	logger.info(f'🌱 Seeded {copied} identity items from {_log_pretty_path(template_dir)} into {_log_pretty_path(user_data_dir)}')
	return copied > 0


def _copy(src: Path, dst: Path) -> int:
	try:
		shutil.copy2(src, dst)
		return 1
	except OSError as e:
		logger.warning(f'⚠️ Could not copy {src.name} from template: {type(e).__name__}: {e}')
		return 0
