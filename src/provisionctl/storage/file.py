"""
File-based environment store.

Data layout:
    <data_dir>/
    ├── <name>/
    │   ├── environment.json        the record
    │   ├── environment.json.lock   OS advisory lock
    │   └── tofu/                   OpenTofu state (owned by the provisioner)

Every save goes through a temporary file in the same directory followed by
os.replace, so a crash mid-write leaves either the previous or the new
record on disk, never a partial one.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

from provisionctl.errors import AlreadyExists, NotFound, StoreError
from provisionctl.models.environment import SCHEMA_VERSION, Environment, ProviderKind, utc_now
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

RECORD_FILENAME = "environment.json"


@register_store(StoreType.FILE)
class FileEnvironmentStore(EnvironmentStore):
    """Stores one JSON record per environment under `data_dir`."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"cannot create data directory {self.data_dir}: {e}") from e
        # Lookups of unknown names leave no directory behind
        self._locks = NamedLocks(
            path_for=self.record_path,
            discard_when=lambda name: not self.exists(name),
        )
        logger.debug(f"FileEnvironmentStore initialized at {self.data_dir}")

    def environment_dir(self, name: str) -> Path:
        check_name(name)
        return self.data_dir / name

    def record_path(self, name: str) -> Path:
        return self.environment_dir(name) / RECORD_FILENAME

    def lock(self, name: str) -> contextlib.AbstractContextManager:
        check_name(name)
        return self._locks.hold(name)

    def exists(self, name: str) -> bool:
        return self.record_path(name).exists()

    def create(self, name: str, provider_kind: ProviderKind, config: Dict[str, Any]) -> Environment:
        with self.lock(name):
            if self.exists(name):
                raise AlreadyExists(name)
            environment = new_environment(name, provider_kind, config)
            self._write(environment)
        logger.info(f"Created environment {name} ({environment.provider_kind.value})")
        return environment.copy()

    def load(self, name: str) -> Environment:
        path = self.record_path(name)
        if not path.exists():
            raise NotFound(name)

        data = self._read(path, name)
        try:
            environment = Environment.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(
                f"environment record {path} is invalid: {e}", environment=name
            ) from e

        if data.get("schema_version", 1) < SCHEMA_VERSION:
            with self.lock(name):
                self._write(environment)
            logger.info(f"Migrated environment record {path} to schema v{SCHEMA_VERSION}")
        return environment

    def save(self, environment: Environment) -> None:
        with self.lock(environment.name):
            environment.updated_at = utc_now()
            self._write(environment)

    def list(self) -> List[Environment]:
        try:
            children = sorted(self.data_dir.iterdir())
        except OSError as e:
            raise StoreError(f"cannot list {self.data_dir}: {e}") from e
        environments = []
        for child in children:
            if child.is_dir() and (child / RECORD_FILENAME).exists():
                environments.append(self.load(child.name))
        return environments

    def delete(self, name: str, force: bool = False) -> None:
        with self.lock(name):
            environment = self.load(name)
            check_deletable(environment, force)
            try:
                shutil.rmtree(self.environment_dir(name))
            except OSError as e:
                raise StoreError(
                    f"cannot remove {self.environment_dir(name)}: {e}", environment=name
                ) from e
        logger.info(f"Deleted environment {name}")

    def _read(self, path: Path, name: str) -> Dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(
                f"environment record {path} is corrupt: {e}", environment=name
            ) from e
        except OSError as e:
            raise StoreError(
                f"cannot read environment record {path}: {e}", environment=name
            ) from e
        if not isinstance(data, dict):
            raise StoreError(f"environment record {path} is not a JSON object", environment=name)
        return data

    def _write(self, environment: Environment) -> None:
        path = self.record_path(environment.name)
        try:
            self._replace(path, environment.to_dict())
        except OSError as e:
            raise StoreError(
                f"cannot write environment record {path}: {e}", environment=environment.name
            ) from e

    def _replace(self, path: Path, data: Dict[str, Any]) -> None:
        """Atomic write: temp file, fsync, chmod 600, replace."""
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".environment-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Set secure permissions (600), records hold provider credentials
            os.chmod(temp_path, 0o600)

            # Atomic rename
            os.replace(temp_path, path)
        except BaseException:
            # Clean up temp file on error
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
