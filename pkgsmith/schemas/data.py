"""
DataTable schema - named key/value tables used for subpackage ranges.

In YAML a table is written as a mapping:

    data:
      - name: py-versions
        items:
          "3.11": python-3.11
          "3.12": python-3.12

Rows are always kept sorted by key so that two loads of the same table
replicate subpackages in the same order, whatever order the source used.
"""

from dataclasses import dataclass, field
from typing import Any

from pkgsmith.errors import ConfigError

from .step import scalar


@dataclass(frozen=True)
class DataItem:
    """One row of a data table."""
    key: str
    value: str


@dataclass(frozen=True)
class DataTable:
    """A named, key-sorted list of rows."""
    name: str
    items: tuple[DataItem, ...] = field(default_factory=tuple)

    def __post_init__(self):
        ordered = tuple(sorted(self.items, key=lambda item: item.key))
        if ordered != self.items:
            object.__setattr__(self, "items", ordered)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataTable":
        if not isinstance(data, dict):
            raise ConfigError("Data table must be a mapping")
        name = data.get("name")
        if not name:
            raise ConfigError("Data table is missing 'name'")
        raw_items = data.get("items") or {}
        if not isinstance(raw_items, dict):
            raise ConfigError(f"Data table '{name}': 'items' must be a mapping")
        items = tuple(
            DataItem(key=str(k), value=scalar(v))
            for k, v in raw_items.items()
        )
        return cls(name=str(name), items=items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "items": {item.key: item.value for item in self.items},
        }
