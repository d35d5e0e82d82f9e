from __future__ import annotations

import asyncio
import random
from pathlib import Path


def _log_pretty_path(path: str | Path | None) -> str:
	"""Pretty-print a path, shorten home dir to ~ and wrap paths containing spaces in quotes"""
	if not path or not str(path).strip():
		return ''

	if not isinstance(path, (str, Path)):
		return f'<{type(path).__name__}>'

	pretty_path = str(path).replace(str(Path.home()), '~').replace(str(Path.cwd().resolve()), '.')
	return f'"{pretty_path}"' if ' ' in pretty_path else pretty_path


def _log_pretty_url(s: str, max_len: int | None = 22) -> str:
	"""Truncate/pretty-print a URL with a maximum length, removing the protocol and www. prefix"""
	s = s.replace('https://', '').replace('http://', '').replace('www.', '')
	if max_len is not None and len(s) > max_len:
		return s[:max_len] + '…'
	return s


def _log_preview(text: str, max_len: int = 30) -> str:
	text = text.replace('\n', ' ')
	return text if len(text) <= max_len else text[:max_len] + '…'


async def human_delay(min_seconds: float, max_seconds: float) -> None:
	"""Sleep for a uniformly random duration in [min_seconds, max_seconds]."""
	await asyncio.sleep(random.uniform(min_seconds, max_seconds))
