import os

from arena_pilot.logging_config import setup_logging

if os.environ.get('ARENA_SETUP_LOGGING', 'true').lower() != 'false':
	logger = setup_logging()
else:
	import logging

	logger = logging.getLogger('arena_pilot')

# --- Lightweight, lazy re-exports ---
# Importing the package must not start playwright/patchright; heavy modules load on first access.

_LAZY_EXPORTS = {
	# Wiring
	'SessionContext': ('arena_pilot.context', 'SessionContext'),
	# Session & routing
	'SessionController': ('arena_pilot.browser.session', 'SessionController'),
	'SessionProfile': ('arena_pilot.browser.profile', 'SessionProfile'),
	'ModelRouter': ('arena_pilot.browser.router', 'ModelRouter'),
	# Acquisition
	'ResponseAcquisitionEngine': ('arena_pilot.stream.engine', 'ResponseAcquisitionEngine'),
	'TokenChannel': ('arena_pilot.stream.channel', 'TokenChannel'),
	'CancellationToken': ('arena_pilot.stream.channel', 'CancellationToken'),
	# Agent core
	'ArenaClient': ('arena_pilot.agent.service', 'ArenaClient'),
	'RetrySupervisor': ('arena_pilot.agent.supervisor', 'RetrySupervisor'),
	'ModelOrchestrator': ('arena_pilot.agent.orchestrator', 'ModelOrchestrator'),
	'AutonomyStepExecutor': ('arena_pilot.agent.executor', 'AutonomyStepExecutor'),
	'Plan': ('arena_pilot.agent.views', 'Plan'),
	'Step': ('arena_pilot.agent.views', 'Step'),
	# Catalog
	'MODEL_CATALOG': ('arena_pilot.catalog', 'MODEL_CATALOG'),
	'Modality': ('arena_pilot.catalog', 'Modality'),
}


def __getattr__(name: str):
	entry = _LAZY_EXPORTS.get(name)
	if not entry:
		raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
	module_path, attr_name = entry
	try:
		from importlib import import_module

		module = import_module(module_path)
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr
	except Exception as e:
		raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e


__all__ = list(_LAZY_EXPORTS.keys())
