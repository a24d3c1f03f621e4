"""
In-memory environment store for tests and embedding.

Same semantics as the file store; records are deep-copied on the way in and
out so callers never share mutable state with the store.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, Dict, List

from provisionctl.errors import AlreadyExists, NotFound
from provisionctl.models.environment import Environment, ProviderKind, utc_now
from provisionctl.storage.base import (
    EnvironmentStore,
    StoreType,
    check_deletable,
    check_name,
    new_environment,
    register_store,
)
from provisionctl.storage.locking import NamedLocks

logger = logging.getLogger(__name__)


@register_store(StoreType.MEMORY)
class InMemoryEnvironmentStore(EnvironmentStore):

    def __init__(self):
        self._records: Dict[str, Environment] = {}
        self._guard = threading.Lock()
        self._locks = NamedLocks()

    def lock(self, name: str) -> contextlib.AbstractContextManager:
        check_name(name)
        return self._locks.hold(name)

    def exists(self, name: str) -> bool:
        with self._guard:
            return name in self._records

    def create(self, name: str, provider_kind: ProviderKind, config: Dict[str, Any]) -> Environment:
        with self.lock(name):
            environment = new_environment(name, provider_kind, config)
            with self._guard:
                if name in self._records:
                    raise AlreadyExists(name)
                self._records[name] = environment.copy()
        return environment

    def load(self, name: str) -> Environment:
        with self._guard:
            if name not in self._records:
                raise NotFound(name)
            return self._records[name].copy()

    def save(self, environment: Environment) -> None:
        with self.lock(environment.name):
            environment.updated_at = utc_now()
            with self._guard:
                self._records[environment.name] = environment.copy()

    def list(self) -> List[Environment]:
        with self._guard:
            return [self._records[name].copy() for name in sorted(self._records)]

    def delete(self, name: str, force: bool = False) -> None:
        with self.lock(name):
            environment = self.load(name)
            check_deletable(environment, force)
            with self._guard:
                del self._records[name]
        logger.info(f"Deleted environment {name}")
