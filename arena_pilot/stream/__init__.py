from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from arena_pilot.stream.channel import CancellationToken, PollScheduler, TokenChannel
	from arena_pilot.stream.engine import ResponseAcquisitionEngine
	from arena_pilot.stream.sources import ContentObservationSource, NetworkStreamSource, ResponseSource
	from arena_pilot.stream.views import AcquisitionResult, AcquisitionSettings, StreamState, TokenEvent

# Lazy imports mapping for the stream package
_LAZY_IMPORTS = {
	'CancellationToken': ('arena_pilot.stream.channel', 'CancellationToken'),
	'PollScheduler': ('arena_pilot.stream.channel', 'PollScheduler'),
	'TokenChannel': ('arena_pilot.stream.channel', 'TokenChannel'),
	'ResponseAcquisitionEngine': ('arena_pilot.stream.engine', 'ResponseAcquisitionEngine'),
	'ContentObservationSource': ('arena_pilot.stream.sources', 'ContentObservationSource'),
	'NetworkStreamSource': ('arena_pilot.stream.sources', 'NetworkStreamSource'),
	'ResponseSource': ('arena_pilot.stream.sources', 'ResponseSource'),
	'AcquisitionResult': ('arena_pilot.stream.views', 'AcquisitionResult'),
	'AcquisitionSettings': ('arena_pilot.stream.views', 'AcquisitionSettings'),
	'StreamState': ('arena_pilot.stream.views', 'StreamState'),
	'TokenEvent': ('arena_pilot.stream.views', 'TokenEvent'),
}


def __getattr__(name: str):
	"""Lazy import mechanism for stream components."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		try:
			from importlib import import_module

			module = import_module(module_path)
			attr = getattr(module, attr_name)
			globals()[name] = attr
			return attr
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = list(_LAZY_IMPORTS)
