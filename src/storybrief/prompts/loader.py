"""Template loading for the scene prompt builder.

Instruction text lives in YAML templates under ``templates/`` next to this
module, so wording can change without touching code. A template holds:

- ``system``: static instructions, identical for every request
- ``book``: per-setting instruction maps plus continuity guidelines
- ``user``: the user message, with a ``{{ beats }}`` placeholder
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from storybrief.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_TEMPLATES_PATH = Path(__file__).parent / "templates"


@dataclass
class InstructionSet:
    """Instructions for one book setting, keyed by setting code.

    Attributes:
        codes: Setting code -> instruction.
        unset: Instruction used when the setting is not set.
        unknown: Instruction used for codes missing from ``codes``.
    """

    codes: dict[str, str] = field(default_factory=dict)
    unset: str | None = None
    unknown: str | None = None

    def resolve(self, code: str | None) -> str | None:
        """Return the instruction for *code*, or None to emit nothing."""
        if not code:
            return self.unset
        return self.codes.get(code, self.unknown)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstructionSet:
        return cls(
            codes={str(k): str(v) for k, v in dict(data.get("codes", {})).items()},
            unset=data.get("unset"),
            unknown=data.get("unknown"),
        )


@dataclass
class PromptTemplate:
    """A loaded scene prompt template.

    ``instructions`` is keyed by book setting name (``pov_style``,
    ``tense``, ...) and preserves template order, which is the order the
    book guidelines are emitted in.
    """

    name: str
    description: str
    system: str
    user: str
    book_heading: str = "## Book Style Guidelines"
    instructions: dict[str, InstructionSet] = field(default_factory=dict)
    continuity: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str) -> PromptTemplate:
        """Create a template from dictionary data.

        Args:
            data: Dictionary containing template fields.
            name: Template name (usually from filename).

        Returns:
            PromptTemplate instance.
        """
        book = dict(data.get("book", {}))
        return cls(
            name=data.get("name", name),
            description=data.get("description", ""),
            system=str(data.get("system", "")).strip(),
            user=str(data.get("user", "")).strip(),
            book_heading=book.get("heading", "## Book Style Guidelines"),
            instructions={
                str(setting): InstructionSet.from_dict(dict(values))
                for setting, values in dict(book.get("settings", {})).items()
            },
            continuity=[str(line) for line in book.get("continuity", [])],
        )


class TemplateNotFoundError(Exception):
    """Raised when a template file cannot be found."""

    def __init__(self, template_name: str, path: Path) -> None:
        self.template_name = template_name
        self.path = path
        super().__init__(f"Template not found: {template_name} at {path}")


class TemplateParseError(Exception):
    """Raised when a template file cannot be parsed."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Load prompt templates from disk, caching parsed templates.

    Attributes:
        templates_path: Directory holding ``<name>.yaml`` templates.
    """

    def __init__(self, templates_path: Path | None = None) -> None:
        self.templates_path = templates_path or DEFAULT_TEMPLATES_PATH
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def _get_template_path(self, template_name: str) -> Path:
        return self.templates_path / f"{template_name}.yaml"

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name.

        Args:
            template_name: Name of the template (without .yaml extension).

        Returns:
            Loaded PromptTemplate.

        Raises:
            TemplateNotFoundError: If the template file doesn't exist.
            TemplateParseError: If the template cannot be parsed.
        """
        if template_name in self._cache:
            return self._cache[template_name]

        path = self._get_template_path(template_name)
        if not path.exists():
            raise TemplateNotFoundError(template_name, path)

        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)

            if data is None:
                raise TemplateParseError(template_name, "Empty file")

            template = PromptTemplate.from_dict(dict(data), template_name)
        except Exception as e:
            if isinstance(e, (TemplateNotFoundError, TemplateParseError)):
                raise
            raise TemplateParseError(template_name, str(e)) from e

        log.debug("prompt_template_loaded", template=template_name, path=str(path))
        self._cache[template_name] = template
        return template

    def list_templates(self) -> list[str]:
        """List available template names (without .yaml extension)."""
        if not self.templates_path.exists():
            return []
        return sorted(p.stem for p in self.templates_path.glob("*.yaml") if p.is_file())
