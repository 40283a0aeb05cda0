"""
StepTemplate schema - a reusable, named pipeline fragment.

Templates are YAML documents referenced from steps via ``uses``:

    name: Run a build using the go compiler
    needs:
      packages: [go, busybox]
    inputs:
      packages:
        required: true
      prefix:
        default: usr
    pipeline:
      - runs: go build -o ${{targets.destdir}}/${{inputs.prefix}}/bin ${{inputs.packages}}

The body is either a literal ``runs`` command, a nested ``pipeline``, or both.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pkgsmith.errors import ConfigError, TemplateInputError

from .step import Input, Step, mapping, steps_from_list, string_list


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepTemplate:
    """
    A loaded step-template.

    Attributes:
        ref: The reference name it was loaded under (e.g. "go/build")
        name: Human-readable name
        needs: Packages the guest must contain to run this template
        inputs: Ordered input schema
        runs: Literal command body
        pipeline: Nested step body
    """
    ref: str
    name: str = ""
    needs: tuple[str, ...] = field(default_factory=tuple)
    inputs: tuple[tuple[str, Input], ...] = field(default_factory=tuple)
    runs: str = ""
    pipeline: tuple[Step, ...] = field(default_factory=tuple)

    @property
    def body(self) -> tuple[Step, ...]:
        """The template body as a step sequence."""
        steps: tuple[Step, ...] = ()
        if self.runs:
            steps += (Step(name=self.name or self.ref, runs=self.runs),)
        return steps + self.pipeline

    def resolve_inputs(self, provided: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """
        Merge provided values with the declared input schema.

        Args:
            provided: Values from the step's ``with`` mapping

        Returns:
            Ordered mapping of every declared input (then any undeclared
            provided key) to its value

        Raises:
            TemplateInputError: If a required input has no value and no default
        """
        provided = dict(provided or {})
        resolved: dict[str, str] = {}

        for name, spec in self.inputs:
            value = provided.pop(name, None)
            if value is None or value == "":
                value = spec.default
            if value is None or (value == "" and spec.required):
                if spec.required:
                    raise TemplateInputError(self.ref, name)
                value = ""
            resolved[name] = value

        for name, value in provided.items():
            logger.warning("Template '%s': input '%s' is not declared", self.ref, name)
            resolved[name] = value

        return resolved

    @classmethod
    def from_dict(cls, ref: str, data: dict[str, Any]) -> "StepTemplate":
        if not isinstance(data, dict):
            raise ConfigError(f"Template '{ref}' must be a mapping")
        needs = mapping(data.get("needs"), f"Template '{ref}': 'needs'")
        inputs = mapping(data.get("inputs"), f"Template '{ref}': 'inputs'")
        return cls(
            ref=ref,
            name=str(data.get("name") or ""),
            needs=string_list(needs.get("packages"), f"Template '{ref}': 'needs.packages'"),
            inputs=tuple((str(k), Input.from_dict(v)) for k, v in inputs.items()),
            runs=str(data.get("runs") or ""),
            pipeline=steps_from_list(data.get("pipeline")),
        )
