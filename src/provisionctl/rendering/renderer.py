"""
Template rendering for provider artifacts.

A template set is a directory under the template root (e.g. `tofu/lxd` or
`ansible/configure`). Rendering produces an artifact directory at
`<build_dir>/<environment>/<phase>/`:

- files ending in `.j2` are rendered with Jinja2 and written without the suffix
- every other file is copied verbatim

The artifact directory is wiped before each render so it always reflects
exactly one render. Variables are checked before any template is touched;
values that could escape a path or be interpreted by a shell are rejected.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from jinja2 import Environment as JinjaEnvironment
from jinja2 import StrictUndefined, TemplateError

from provisionctl.errors import RenderError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_TEMPLATE_ROOT",
    "ArtifactSet",
    "TemplateRenderer",
    "check_variables",
]

DEFAULT_TEMPLATE_ROOT = Path(__file__).parent / "templates"

TEMPLATE_SUFFIX = ".j2"

# Characters a value must never carry into a rendered command or file
_SHELL_METACHARACTERS = frozenset(";&|$`<>\\\"'\n\r")
_PATH_SEPARATORS = re.compile(r"[/\\]")


@dataclass
class ArtifactSet:
    """Rendered files for one environment and phase."""
    environment: str
    phase: str
    root: Path
    files: List[Path] = field(default_factory=list)  # relative, sorted
    steps: List[str] = field(default_factory=list)   # ordered playbooks

    def path(self, relative: Union[str, Path]) -> Path:
        return self.root / relative

    def has(self, relative: Union[str, Path]) -> bool:
        return Path(relative) in self.files


def _check_string(value: str, location: str) -> None:
    if "\0" in value:
        raise RenderError(f"variable {location} contains a NUL byte")
    if ".." in _PATH_SEPARATORS.split(value):
        raise RenderError(f"variable {location} contains a '..' path segment")
    bad = sorted(set(value) & _SHELL_METACHARACTERS)
    if bad:
        raise RenderError(
            f"variable {location} contains forbidden characters: {' '.join(repr(c) for c in bad)}"
        )


def check_variables(value: Any, location: str = "variables") -> None:
    """
    Recursively validate a variable bundle.

    Raises:
        RenderError: If any string (value or mapping key) is unsafe, or a
            value has a type templates cannot consume
    """
    if isinstance(value, str):
        _check_string(value, location)
    elif isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise RenderError(f"variable {location} has a non-string key {key!r}")
            _check_string(key, f"{location} key {key!r}")
            check_variables(item, f"{location}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            check_variables(item, f"{location}[{index}]")
    elif value is None or isinstance(value, (bool, int, float)):
        return
    else:
        raise RenderError(f"variable {location} has unsupported type {type(value).__name__}")


class TemplateRenderer:
    """
    Renders template sets into per-environment artifact directories.

    Performs no process or network calls.
    """

    def __init__(
        self,
        build_dir: Union[str, Path],
        template_root: Optional[Union[str, Path]] = None,
    ):
        self.build_dir = Path(build_dir)
        self.template_root = Path(template_root) if template_root else DEFAULT_TEMPLATE_ROOT
        self._jinja = JinjaEnvironment(
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._jinja.filters["to_json"] = _to_json

    def artifact_dir(self, environment: str, phase: str) -> Path:
        return self.build_dir / environment / phase

    def render(
        self,
        environment: str,
        phase: str,
        template_set: str,
        variables: Dict[str, Any],
        steps: Sequence[str] = (),
    ) -> ArtifactSet:
        """
        Render `template_set` for `environment` and `phase`.

        Raises:
            RenderError: On unsafe variables, a missing template set,
                undefined variables or template syntax errors
        """
        check_variables(variables)

        source = self.template_root / template_set
        if not source.is_dir():
            raise RenderError(f"template set '{template_set}' not found under {self.template_root}")

        target = self.artifact_dir(environment, phase)
        try:
            if target.exists():
                shutil.rmtree(target)
            target.mkdir(parents=True)
        except OSError as e:
            raise RenderError(f"cannot prepare artifact directory {target}: {e}") from e

        files: List[Path] = []
        for template_path in sorted(p for p in source.rglob("*") if p.is_file()):
            relative = template_path.relative_to(source)
            if relative.suffix == TEMPLATE_SUFFIX:
                relative = relative.with_suffix("")
                text = self._render_file(template_path, relative, variables)
                output = target / relative
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_text(text, encoding="utf-8")
            else:
                output = target / relative
                output.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(template_path, output)
            files.append(relative)

        logger.debug(
            f"Rendered {len(files)} files from {template_set} into {target}"
        )
        return ArtifactSet(
            environment=environment,
            phase=phase,
            root=target,
            files=sorted(files),
            steps=list(steps),
        )

    def _render_file(self, template_path: Path, relative: Path, variables: Dict[str, Any]) -> str:
        try:
            source = template_path.read_text(encoding="utf-8")
            template = self._jinja.from_string(source)
            return template.render(**variables)
        except TemplateError as e:
            raise RenderError(f"failed to render {relative}{TEMPLATE_SUFFIX}: {e}") from e
        except OSError as e:
            raise RenderError(f"cannot read template {template_path}: {e}") from e


def _to_json(value: Any) -> str:
    return json.dumps(value)
