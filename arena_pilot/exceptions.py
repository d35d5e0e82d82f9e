from __future__ import annotations

# Substrings playwright/patchright put in errors raised when a page, frame or
# connection disappears underneath an in-flight call.
TRANSIENT_ERROR_MARKERS = (
	'Execution context was destroyed',
	'detached Frame',
	'Frame was detached',
	'Target closed',
	'Target page, context or browser has been closed',
	'Connection closed',
	'Navigation failed because page crashed',
)


class ArenaError(Exception):
	"""Base class for every error raised by arena_pilot."""


class TransientIOError(ArenaError):
	"""Lost connection or detached execution context mid-operation."""


class AntiBotChallenge(ArenaError):
	"""The upstream service interposed a verification step."""


class ManualInterventionRequired(AntiBotChallenge):
	"""A challenge that cannot be resolved automatically (image puzzle)."""


class ResponseTimeout(ArenaError):
	"""No completion signal arrived within the wait ceiling."""

	def __init__(self, message: str = 'Response timeout', partial_text: str = ''):
		super().__init__(message)
		self.partial_text = partial_text


class SessionCrashed(ArenaError):
	"""The browser process is unusable and must be relaunched."""


class UnparseableToolOutput(ArenaError):
	"""A tool-call marker in a model answer could not be parsed."""

	def __init__(self, message: str, raw: str = ''):
		super().__init__(message)
		self.raw = raw


class PlanParseError(ArenaError):
	"""A planning answer did not contain a well-formed step list."""


class PlanStateError(ArenaError):
	"""A plan operation was requested in a state that does not allow it."""


class UnknownModelError(ArenaError):
	"""The requested model id is not recognized."""


class LockTimeoutError(ArenaError):
	"""The single outbound-message lease could not be acquired in time."""


class SendFailedError(ArenaError):
	"""Every send attempt failed; carries whatever text was captured last."""

	def __init__(self, message: str, partial_text: str = '', attempts: int = 0, last_error: BaseException | None = None):
		super().__init__(message)
		self.partial_text = partial_text
		self.attempts = attempts
		self.last_error = last_error


def is_transient_browser_error(exc: BaseException) -> bool:
	if isinstance(exc, TransientIOError):
		return True
	message = str(exc)
	return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def classify_browser_error(exc: BaseException) -> BaseException:
	"""Map a raw driver error onto the arena_pilot hierarchy.

	Errors caused by a vanished page or frame become `TransientIOError`; anything else is
	returned unchanged so the caller can re-raise it as-is.
	"""
	if isinstance(exc, ArenaError):
		return exc
	if is_transient_browser_error(exc):
		err = TransientIOError(f'{type(exc).__name__}: {exc}')
		err.__cause__ = exc
		return err
	return exc
