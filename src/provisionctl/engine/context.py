"""
Explicit engine context.

Everything the engine and its adapters need (settings, store, renderer,
process runner) is bundled here and passed down; nothing is read from
module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from provisionctl.config import ProvisionctlSettings, load_settings
from provisionctl.process import ProcessRunner
from provisionctl.rendering.renderer import TemplateRenderer
from provisionctl.storage.base import EnvironmentStore, StoreType, get_store

__all__ = ["EngineContext"]


@dataclass
class EngineContext:
    settings: ProvisionctlSettings
    store: EnvironmentStore
    renderer: TemplateRenderer
    runner: ProcessRunner = field(default_factory=ProcessRunner)

    @property
    def data_dir(self) -> Path:
        return self.settings.data_path

    @property
    def build_dir(self) -> Path:
        return self.settings.build_path

    @classmethod
    def from_settings(
        cls,
        settings: Optional[ProvisionctlSettings] = None,
        store: Optional[EnvironmentStore] = None,
        runner: Optional[ProcessRunner] = None,
    ) -> "EngineContext":
        """
        Build a context from settings, using the file store by default.

        Args:
            settings: Settings to use (load_settings() when None)
            store: Store override (e.g. an in-memory store in tests)
            runner: Process runner override
        """
        settings = settings or load_settings()
        if store is None:
            store = get_store(StoreType.FILE, data_dir=settings.data_path)
        return cls(
            settings=settings,
            store=store,
            renderer=TemplateRenderer(build_dir=settings.build_path),
            runner=runner or ProcessRunner(),
        )

