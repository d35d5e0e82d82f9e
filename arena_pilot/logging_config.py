import locale
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from arena_pilot.config import CONFIG
from arena_pilot.timing import now_utc_iso, process_start_utc_iso, uptime_seconds


def addLoggingLevel(levelName, levelNum, methodName=None):
	"""
	Adds a new logging level to the `logging` module and the currently configured logging class.

	`levelName` becomes an attribute of the `logging` module with the value `levelNum`.
	`methodName` (default `levelName.lower()`) becomes a convenience method on both `logging`
	and the logger class. Raises `AttributeError` if the level or method already exists.

	Example
	-------
	>>> addLoggingLevel('RESULT', 35)
	>>> logging.getLogger(__name__).result('final answer received')
	"""
	if not methodName:
		methodName = levelName.lower()

	if hasattr(logging, levelName):
		raise AttributeError(f'{levelName} already defined in logging module')
	if hasattr(logging, methodName):
		raise AttributeError(f'{methodName} already defined in logging module')
	if hasattr(logging.getLoggerClass(), methodName):
		raise AttributeError(f'{methodName} already defined in logger class')

	def logForLevel(self, message, *args, **kwargs):
		if self.isEnabledFor(levelNum):
			self._log(levelNum, message, args, **kwargs)

	def logToRoot(message, *args, **kwargs):
		logging.log(levelNum, message, *args, **kwargs)

	logging.addLevelName(levelNum, levelName)
	setattr(logging, levelName, levelNum)
	setattr(logging.getLoggerClass(), methodName, logForLevel)
	setattr(logging, methodName, logToRoot)


class SafeStreamHandler(logging.StreamHandler):
	"""A stream handler that survives consoles that can't encode emojis.

	Writes are retried with 'replace' on UnicodeEncodeError so a cp1252 console never
	takes down a long-running session.
	"""

	def emit(self, record):  # type: ignore[override]
		try:
			msg = self.format(record)
			stream = self.stream
			try:
				stream.write(msg + self.terminator)
			except UnicodeEncodeError:
				enc = getattr(stream, 'encoding', None) or locale.getpreferredencoding(False) or 'utf-8'
				sanitized = msg.encode(enc, errors='replace').decode(enc, errors='replace')
				stream.write(sanitized + self.terminator)
			self.flush()
		except Exception:
			self.handleError(record)


class ArenaFormatter(logging.Formatter):
	def format(self, record):
		record.utc = now_utc_iso()
		record.uptime = f'{uptime_seconds():.3f}s'
		return super().format(record)


THIRD_PARTY_LOGGERS = [
	'playwright',
	'patchright',
	'asyncio',
	'bubus',
	'urllib3',
	'httpx',
	'httpcore',
	'charset_normalizer',
]


def setup_logging(stream=None, log_level=None, force_setup=False):
	"""Setup logging configuration for arena_pilot.

	Args:
		stream: Output stream for logs (default: sys.stdout)
		log_level: Override log level (default: uses CONFIG.ARENA_LOGGING_LEVEL)
		force_setup: Force reconfiguration even if handlers already exist
	"""
	try:
		addLoggingLevel('RESULT', 35)
	except AttributeError:
		pass  # Level already exists, which is fine

	log_type = (log_level or CONFIG.ARENA_LOGGING_LEVEL).lower()

	if logging.getLogger().hasHandlers() and not force_setup:
		return logging.getLogger('arena_pilot')

	root = logging.getLogger()
	root.handlers = []

	console = SafeStreamHandler(stream or sys.stdout)
	if log_type == 'result':
		console.setLevel('RESULT')
		console.setFormatter(ArenaFormatter('%(message)s'))
	else:
		console.setFormatter(ArenaFormatter('%(levelname)-8s [%(name)s] %(utc)s (+%(uptime)s) %(message)s'))

	root.addHandler(console)

	if log_type == 'result':
		root.setLevel('RESULT')
	elif log_type == 'debug':
		root.setLevel(logging.DEBUG)
	else:
		root.setLevel(logging.INFO)

	arena_logger = logging.getLogger('arena_pilot')
	arena_logger.propagate = False
	arena_logger.handlers = [console]
	arena_logger.setLevel(root.level)

	arena_logger.debug(f'Logging initialized at {now_utc_iso()} (process_start={process_start_utc_iso()})')

	for logger_name in THIRD_PARTY_LOGGERS:
		third_party = logging.getLogger(logger_name)
		third_party.setLevel(logging.ERROR)
		third_party.propagate = False

	return arena_logger
