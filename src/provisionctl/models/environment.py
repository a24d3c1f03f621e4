"""
Environment records and their durable representation.

An Environment is the central aggregate: the declared configuration of one
deployment target, its current lifecycle phase, the provisioned instance (once
available) and an append-only history of completed transitions.

Records are serialized as JSON with a schema version so that files written by
older releases can still be loaded:

Migration history:
    Version 1 (implicit): no schema_version field, phase stored under "state",
        failures stored as "<operation>_failed" strings
    Version 2: added schema_version, failed_at, in_flight_since; phase stored
        under "phase"
"""

from __future__ import annotations

import copy
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "SCHEMA_VERSION",
    "Phase",
    "ProviderKind",
    "Instance",
    "HistoryEntry",
    "Environment",
    "validate_environment_name",
    "utc_now",
]

# Increment when making breaking changes to the Environment record
SCHEMA_VERSION = 2

# Environment names double as directory names and OpenTofu/LXD identifiers
_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")
_NAME_MAX_LENGTH = 63


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class Phase(str, Enum):
    """Lifecycle phases of an environment."""
    CREATED = "created"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    CONFIGURING = "configuring"
    CONFIGURED = "configured"
    RELEASING = "releasing"
    RELEASED = "released"
    STARTING = "starting"
    RUNNING = "running"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"


class ProviderKind(str, Enum):
    """Backend families able to provision an environment."""
    LXD = "lxd"            # local virtual machine / container backend
    HETZNER = "hetzner"    # remote cloud virtual machine backend


def validate_environment_name(name: str) -> str:
    """
    Validate an environment name.

    Names must contain only lowercase letters, digits and single dashes,
    start with a letter and not end with a dash.

    Raises:
        ValueError: If the name does not follow the rules
    """
    if not isinstance(name, str) or not name:
        raise ValueError("environment name must be a non-empty string")
    if len(name) > _NAME_MAX_LENGTH:
        raise ValueError(
            f"environment name '{name}' is longer than {_NAME_MAX_LENGTH} characters"
        )
    if not _NAME_PATTERN.match(name):
        raise ValueError(
            f"environment name '{name}' is invalid: use lowercase letters, digits and "
            f"single dashes, starting with a letter (examples: dev, staging, e2e-full)"
        )
    return name


@dataclass(frozen=True)
class Instance:
    """Canonical, backend independent description of a provisioned machine."""
    id_or_name: str
    image_reference: str
    status: str  # backend-native, preserved verbatim
    address: str

    def __post_init__(self):
        for field_name in ("id_or_name", "image_reference", "status", "address"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Instance.{field_name} must be a non-empty string")
        ipaddress.ip_address(self.address)

    def to_dict(self) -> Dict[str, str]:
        return {
            "id_or_name": self.id_or_name,
            "image_reference": self.image_reference,
            "status": self.status,
            "address": self.address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instance":
        return cls(
            id_or_name=data["id_or_name"],
            image_reference=data["image_reference"],
            status=data["status"],
            address=data["address"],
        )


@dataclass
class HistoryEntry:
    """One completed transition attempt (settled or failed)."""
    operation: str
    from_phase: Optional[Phase]
    to_phase: Phase
    finished_at: str  # ISO format
    started_at: Optional[str] = None  # ISO format
    failed_at: Optional[Phase] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.to_phase == Phase.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "from_phase": self.from_phase.value if self.from_phase else None,
            "to_phase": self.to_phase.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "failed_at": self.failed_at.value if self.failed_at else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            operation=data["operation"],
            from_phase=Phase(data["from_phase"]) if data.get("from_phase") else None,
            to_phase=Phase(data["to_phase"]),
            started_at=data.get("started_at"),
            finished_at=data["finished_at"],
            failed_at=Phase(data["failed_at"]) if data.get("failed_at") else None,
            error=data.get("error"),
        )


@dataclass
class Environment:
    """
    Durable record of one deployment target.

    `phase` and `failed_at` together encode Failed(at_phase): failed_at is
    set exactly when phase is FAILED and names the in-flight phase that
    did not complete.
    """
    name: str
    provider_kind: ProviderKind
    config: Dict[str, Any]
    phase: Phase = Phase.CREATED
    failed_at: Optional[Phase] = None
    instance: Optional[Instance] = None
    history: List[HistoryEntry] = field(default_factory=list)
    in_flight_since: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self):
        validate_environment_name(self.name)
        self.provider_kind = ProviderKind(self.provider_kind)
        self.phase = Phase(self.phase)
        if self.failed_at is not None:
            self.failed_at = Phase(self.failed_at)

    @property
    def display_phase(self) -> str:
        """Phase as shown to operators, e.g. 'failed(provisioning)'."""
        if self.phase == Phase.FAILED and self.failed_at:
            return f"failed({self.failed_at.value})"
        return self.phase.value

    @property
    def provisioning_attempted(self) -> bool:
        """True once any provision attempt started (external resources may exist)."""
        if self.instance is not None:
            return True
        if self.phase == Phase.PROVISIONING or self.failed_at == Phase.PROVISIONING:
            return True
        return any(entry.operation == "provision" for entry in self.history)

    def copy(self) -> "Environment":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a dictionary, always at the current schema version."""
        return {
            "schema_version": SCHEMA_VERSION,
            "name": self.name,
            "provider_kind": self.provider_kind.value,
            "phase": self.phase.value,
            "failed_at": self.failed_at.value if self.failed_at else None,
            "config": self.config,
            "instance": self.instance.to_dict() if self.instance else None,
            "history": [entry.to_dict() for entry in self.history],
            "in_flight_since": self.in_flight_since,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Environment":
        """
        Deserialize from a dictionary, migrating if needed.

        Unknown fields written by newer releases are ignored.
        """
        version = data.get("schema_version", 1)
        if version < SCHEMA_VERSION:
            data = cls._migrate(dict(data), version)

        instance = data.get("instance")
        return cls(
            name=data["name"],
            provider_kind=ProviderKind(data["provider_kind"]),
            config=data.get("config") or {},
            phase=Phase(data["phase"]),
            failed_at=Phase(data["failed_at"]) if data.get("failed_at") else None,
            instance=Instance.from_dict(instance) if instance else None,
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
            in_flight_since=data.get("in_flight_since"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )

    @classmethod
    def _migrate(cls, data: Dict[str, Any], from_version: int) -> Dict[str, Any]:
        """Migrate record data from an older schema version to current."""
        if from_version < 2:
            data = cls._migrate_v1_to_v2(data)

        data["schema_version"] = SCHEMA_VERSION
        return data

    @classmethod
    def _migrate_v1_to_v2(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Migrate from schema v1 to v2.

        - "state" renamed to "phase"
        - "<operation>_failed" split into phase=failed plus failed_at
        - "provider" renamed to "provider_kind"
        """
        failed_states = {
            "provision_failed": Phase.PROVISIONING.value,
            "configure_failed": Phase.CONFIGURING.value,
            "release_failed": Phase.RELEASING.value,
            "run_failed": Phase.STARTING.value,
            "destroy_failed": Phase.DESTROYING.value,
        }
        state = data.pop("state", data.get("phase", Phase.CREATED.value))
        if state in failed_states:
            data["phase"] = Phase.FAILED.value
            data["failed_at"] = failed_states[state]
        else:
            data["phase"] = state
            data["failed_at"] = None

        if "provider_kind" not in data:
            data["provider_kind"] = data.pop("provider", ProviderKind.LXD.value)
        data.setdefault("history", [])
        data.setdefault("in_flight_since", None)

        logger.debug(f"Migrated environment record {data.get('name')} from v1 to v2")
        return data
