"""Registry of log-entry enhancers for the Cloud Logging appender.

Enhancers add labels (or any other entry field) to every entry written
through the API.  They are looked up by name in an explicit registry that
the hosting application fills at start-up; names listed in
``LOG_ENHANCERS`` that were never registered are skipped with a warning.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class LoggingEnhancer(Protocol):
    def enhance(self, entry: dict[str, Any]) -> None:
        """Mutate *entry* (the keyword arguments of one API write) in place."""


EnhancerFactory = Callable[[], LoggingEnhancer]

_registry: dict[str, EnhancerFactory] = {}


def register_enhancer(name: str, factory: EnhancerFactory) -> None:
    """Make *factory* available under *name*; re-registering replaces it."""
    _registry[name] = factory


def unregister_enhancer(name: str) -> None:
    _registry.pop(name, None)


def registered_enhancers() -> list[str]:
    return sorted(_registry)


def create_enhancers(names: Iterable[str]) -> list[LoggingEnhancer]:
    """Instantiate the enhancers registered under *names*, in order."""
    enhancers: list[LoggingEnhancer] = []
    for name in names:
        factory = _registry.get(name.strip())
        if factory is None:
            logger.warning("Unknown logging enhancer %r, skipping", name)
            continue
        try:
            enhancers.append(factory())
        except Exception as e:
            logger.warning("Logging enhancer %r failed to initialise: %s", name, e)
    return enhancers


class CloudRunEnhancer:
    """Labels entries with the Cloud Run service, revision and configuration."""

    _ENV_LABELS = (
        ("K_SERVICE", "service_name"),
        ("K_REVISION", "revision_name"),
        ("K_CONFIGURATION", "configuration_name"),
    )

    def __init__(self) -> None:
        self._labels = {
            label: os.environ[var] for var, label in self._ENV_LABELS if os.environ.get(var)
        }

    def enhance(self, entry: dict[str, Any]) -> None:
        if self._labels:
            entry.setdefault("labels", {}).update(self._labels)


register_enhancer("cloud_run", CloudRunEnhancer)
