"""Observability bootstrap: JSON logging installed once per process.

Metrics need no setup; their collectors register on import of ``obs.metrics``.
"""

from __future__ import annotations

from pinchat.obs import logging as obs_logging
from pinchat.settings import settings

_initialised = False


def init() -> None:
	global _initialised
	if _initialised:
		return
	if not settings.obs_enabled:
		return
	obs_logging.configure_logging()
	_initialised = True


__all__ = ["init"]
