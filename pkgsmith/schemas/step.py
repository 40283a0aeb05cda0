"""
Step schema - one node of a build pipeline.

A step is a tagged tree node. Which fields are populated decides how the
executor treats it:
- uses: reference to a reusable step-template, instantiated with ``with``
- runs: a literal shell command (a leaf)
- pipeline: nested child steps (a container)

Steps are immutable once loaded. Per-run state such as the number of
children actually executed lives in the executor, not on the step.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from pkgsmith.errors import ConfigError


def scalar(value: Any) -> str:
    """Render a YAML scalar the way it was written (booleans stay lowercase)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def mapping(value: Any, what: str) -> dict[str, Any]:
    """A YAML mapping field; missing or empty is ``{}``."""
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what} must be a mapping, got {type(value).__name__}")
    return value


def string_list(value: Any, what: str) -> tuple[str, ...]:
    """A YAML list of scalars; missing or empty is ``()``."""
    if not value:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{what} must be a list, got {type(value).__name__}")
    return tuple(scalar(v) for v in value)


@dataclass(frozen=True)
class Input:
    """
    A declared input of a step-template.

    Attributes:
        description: Human-readable description
        default: Value used when the caller does not provide one
        required: If true, a value or a default must exist
    """
    description: str = ""
    default: Optional[str] = None
    required: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Input":
        data = mapping(data, "Template input")
        default = data.get("default")
        return cls(
            description=str(data.get("description") or "").strip(),
            default=None if default is None else scalar(default),
            required=bool(data.get("required", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **({"description": self.description} if self.description else {}),
            **({"default": self.default} if self.default is not None else {}),
            **({"required": True} if self.required else {}),
        }


@dataclass(frozen=True)
class Step:
    """
    A pipeline step.

    Attributes:
        name: Human label shown in logs
        uses: Step-template reference (e.g. "go/build")
        with_: Ordered input values for the template (YAML key ``with``)
        runs: Literal shell command body
        pipeline: Nested child steps
        needs: Build-time packages this step requires in the guest
        label: Label used by the breakpoint/continuation protocol
        if_: Guard expression (YAML key ``if``)
        required_steps: Assertion - minimum number of children that must run
        sbom_language: Source-language hint passed to the SBOM generator
        inputs: Input schema (only meaningful on template bodies)
    """
    name: str = ""
    uses: str = ""
    with_: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    runs: str = ""
    pipeline: tuple["Step", ...] = field(default_factory=tuple)
    needs: tuple[str, ...] = field(default_factory=tuple)
    label: str = ""
    if_: str = ""
    required_steps: int = 0
    sbom_language: str = ""
    inputs: tuple[tuple[str, Input], ...] = field(default_factory=tuple)

    @property
    def with_map(self) -> dict[str, str]:
        return dict(self.with_)

    @property
    def is_template_reference(self) -> bool:
        return bool(self.uses)

    def identity(self) -> str:
        """Best human-readable identifier for logs."""
        return self.name or self.label or self.uses or "???"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        """Deserialize from a YAML mapping."""
        if not isinstance(data, dict):
            raise ConfigError(f"Pipeline step must be a mapping, got {type(data).__name__}")

        owner = f"Step '{data.get('name') or data.get('uses') or data.get('label') or ''}'"
        with_data = mapping(data.get("with"), f"{owner}: 'with'")
        needs_data = mapping(data.get("needs"), f"{owner}: 'needs'")
        assertions = mapping(data.get("assertions"), f"{owner}: 'assertions'")
        sbom = mapping(data.get("sbom"), f"{owner}: 'sbom'")
        inputs = mapping(data.get("inputs"), f"{owner}: 'inputs'")

        try:
            required_steps = int(assertions.get("required-steps", 0) or 0)
        except (TypeError, ValueError):
            raise ConfigError(
                f"{owner}: 'required-steps' must be an integer, "
                f"got {assertions.get('required-steps')!r}"
            )

        return cls(
            name=str(data.get("name") or ""),
            uses=str(data.get("uses") or ""),
            with_=tuple((str(k), scalar(v)) for k, v in with_data.items()),
            runs=str(data.get("runs") or ""),
            pipeline=steps_from_list(data.get("pipeline")),
            needs=string_list(needs_data.get("packages"), f"{owner}: 'needs.packages'"),
            label=str(data.get("label") or ""),
            if_=str(data.get("if") or ""),
            required_steps=required_steps,
            sbom_language=str(sbom.get("language") or ""),
            inputs=tuple((str(k), Input.from_dict(v)) for k, v in inputs.items()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a YAML-friendly mapping."""
        return {
            **({"name": self.name} if self.name else {}),
            **({"uses": self.uses} if self.uses else {}),
            **({"with": dict(self.with_)} if self.with_ else {}),
            **({"runs": self.runs} if self.runs else {}),
            **({"pipeline": [s.to_dict() for s in self.pipeline]} if self.pipeline else {}),
            **({"needs": {"packages": list(self.needs)}} if self.needs else {}),
            **({"label": self.label} if self.label else {}),
            **({"if": self.if_} if self.if_ else {}),
            **({"assertions": {"required-steps": self.required_steps}}
               if self.required_steps else {}),
            **({"sbom": {"language": self.sbom_language}} if self.sbom_language else {}),
            **({"inputs": {k: v.to_dict() for k, v in self.inputs}} if self.inputs else {}),
        }


def steps_from_list(data: Optional[list[Any]]) -> tuple[Step, ...]:
    """Parse a YAML list of steps."""
    if data is None:
        return ()
    if not isinstance(data, list):
        raise ConfigError(f"Pipeline must be a list of steps, got {type(data).__name__}")
    return tuple(Step.from_dict(item) for item in data)
