"""Prompt template loading.

Templates are Markdown files with optional YAML front matter, rendered with
Jinja2. They live next to this module so they ship inside the package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

PROMPTS_DIR = Path(__file__).resolve().parent


def split_front_matter(source: str) -> tuple[dict[str, Any], str]:
    """Return ``(metadata, body)`` for a template source."""
    if source.startswith("---"):
        parts = source.split("---", 2)
        if len(parts) == 3:
            return yaml.safe_load(parts[1]) or {}, parts[2].lstrip()
    return {}, source


@dataclass(frozen=True)
class PromptEntry:
    """Loaded prompt body and its front matter."""

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class FrontMatterLoader(FileSystemLoader):
    """Jinja2 loader that hides YAML front matter from the template body."""

    def get_source(self, environment: Environment, template: str):  # type: ignore[override]
        source, filename, uptodate = super().get_source(environment, template)
        _, body = split_front_matter(source)
        return body, filename, uptodate


class PromptLoader:
    """Load and render the packaged prompt templates."""

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self.prompts_dir = Path(prompts_dir) if prompts_dir else PROMPTS_DIR
        self.cache: dict[str, PromptEntry] = {}
        self._env = Environment(
            loader=FrontMatterLoader(str(self.prompts_dir)),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )

    def load(self, prompt_path: str) -> str:
        """
        Load a prompt body without rendering it.

        Args:
            prompt_path: Path relative to the prompts directory,
                e.g. ``"agents/query_agent.md"``

        Returns:
            The template body with front matter removed
        """
        return self._entry(prompt_path).content

    def render(self, prompt_path: str, **variables: Any) -> str:
        """
        Render a prompt template with Jinja2.

        Example:
            prompt = loader.render(
                "agents/query_agent.md",
                goal="Top customers by revenue",
                max_steps=25,
            )
        """
        try:
            template = self._env.get_template(prompt_path)
        except TemplateNotFound as exc:
            raise FileNotFoundError(f"Prompt not found: {prompt_path}") from exc
        return template.render(**variables).strip()

    def get_metadata(self, prompt_path: str) -> dict[str, Any]:
        """Return the front matter of a prompt."""
        return self._entry(prompt_path).metadata

    def _entry(self, prompt_path: str) -> PromptEntry:
        if prompt_path in self.cache:
            return self.cache[prompt_path]

        file_path = self.prompts_dir / prompt_path
        if not file_path.exists():
            raise FileNotFoundError(f"Prompt not found: {file_path}")

        metadata, body = split_front_matter(file_path.read_text(encoding="utf-8"))
        entry = PromptEntry(content=body, metadata=metadata)
        self.cache[prompt_path] = entry
        return entry
