"""Template rendering for provider artifacts."""

from provisionctl.rendering.renderer import (
    DEFAULT_TEMPLATE_ROOT,
    ArtifactSet,
    TemplateRenderer,
    check_variables,
)

__all__ = [
    "DEFAULT_TEMPLATE_ROOT",
    "ArtifactSet",
    "TemplateRenderer",
    "check_variables",
]
