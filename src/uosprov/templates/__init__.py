"""Jinja2 template engine with built-in templates and an override directory."""
from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

BUILTIN_DIR = Path(__file__).resolve().parent


@dataclass(slots=True)
class TemplateEngine:
    """Render templates, preferring overrides over the packaged defaults."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that consults *override_dir* before built-ins."""
        loaders: list[FileSystemLoader] = []
        if override_dir is not None and Path(override_dir).expanduser().is_dir():
            loaders.append(FileSystemLoader(str(Path(override_dir).expanduser())))
        loaders.append(FileSystemLoader(str(BUILTIN_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders unit files and shell, not HTML
        )
        environment.filters["quote"] = shlex.quote
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        template = self.environment.get_template(template_name)
        return template.render(**dict(context))


__all__ = ["TemplateEngine"]
