"""
Base environment store protocol and factory.

Defines the interface that all store backends must implement.
"""

from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Type

from provisionctl.errors import ConfigError, NotDestroyed
from provisionctl.models.environment import (
    Environment,
    Phase,
    ProviderKind,
    utc_now,
    validate_environment_name,
)

logger = logging.getLogger(__name__)

__all__ = [
    "StoreType",
    "EnvironmentStore",
    "register_store",
    "get_store",
    "check_deletable",
    "check_name",
    "new_environment",
]


class StoreType(str, Enum):
    """Available store backend types."""
    FILE = "file"
    MEMORY = "memory"


class EnvironmentStore(ABC):
    """
    Durable keyed storage of Environment records.

    Records are returned as independent copies: mutating a loaded
    Environment never affects the store until it is saved.
    """

    @abstractmethod
    def create(self, name: str, provider_kind: ProviderKind, config: Dict[str, Any]) -> Environment:
        """
        Create and persist a new environment in phase `created`.

        Raises:
            AlreadyExists: If a record with this name exists
        """

    @abstractmethod
    def load(self, name: str) -> Environment:
        """
        Load an environment.

        Raises:
            NotFound: If no record exists
            StoreError: If the record cannot be decoded
        """

    @abstractmethod
    def save(self, environment: Environment) -> None:
        """Atomically replace the stored record."""

    @abstractmethod
    def list(self) -> List[Environment]:
        """All environments, sorted by name."""

    @abstractmethod
    def delete(self, name: str, force: bool = False) -> None:
        """
        Delete a record and everything stored alongside it.

        Raises:
            NotFound: If no record exists
            NotDestroyed: Unless phase is destroyed (or failed, with force)
        """

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Whether a record with this name exists."""

    @abstractmethod
    def lock(self, name: str) -> contextlib.AbstractContextManager:
        """Exclusive, re-entrant per-name lock."""


def check_name(name: str) -> str:
    """
    Validate a name used as a store key.

    Raises:
        ConfigError: If the name is not a valid environment name
    """
    try:
        return validate_environment_name(name)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def new_environment(name: str, provider_kind: ProviderKind, config: Dict[str, Any]) -> Environment:
    now = utc_now()
    return Environment(
        name=name,
        provider_kind=ProviderKind(provider_kind),
        config=config,
        phase=Phase.CREATED,
        created_at=now,
        updated_at=now,
    )


def check_deletable(environment: Environment, force: bool) -> None:
    """Raise NotDestroyed unless the record may be deleted."""
    if environment.phase == Phase.DESTROYED:
        return
    if force and environment.phase == Phase.FAILED:
        logger.warning(
            f"Force-deleting environment {environment.name} in phase "
            f"{environment.display_phase}; external resources are not checked"
        )
        return
    raise NotDestroyed(environment.name, environment.display_phase)


# Backend registry
_BACKENDS: Dict[StoreType, Type[EnvironmentStore]] = {}


def register_store(store_type: StoreType):
    """Decorator to register a store backend."""
    def decorator(cls: Type[EnvironmentStore]) -> Type[EnvironmentStore]:
        _BACKENDS[store_type] = cls
        return cls
    return decorator


def get_store(store_type: StoreType = StoreType.FILE, **kwargs: Any) -> EnvironmentStore:
    """
    Get a store backend instance.

    Args:
        store_type: Backend to use
        **kwargs: Backend-specific options (e.g. data_dir for FILE)

    Returns:
        EnvironmentStore instance
    """
    # Import backends to register them
    from provisionctl.storage import file, memory  # noqa: F401

    store_type = StoreType(store_type)
    if store_type not in _BACKENDS:
        raise ValueError(f"Unknown store type: {store_type}")

    return _BACKENDS[store_type](**kwargs)
