"""Environment lifecycle engine."""

from provisionctl.engine.context import EngineContext
from provisionctl.engine.engine import LifecycleEngine
from provisionctl.engine.phases import (
    OPERATIONS,
    TRANSITIONS,
    Transition,
    check_transition,
    is_allowed,
    suggest_next,
)

__all__ = [
    "EngineContext",
    "LifecycleEngine",
    "OPERATIONS",
    "TRANSITIONS",
    "Transition",
    "check_transition",
    "is_allowed",
    "suggest_next",
]
