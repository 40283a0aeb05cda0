"""
pkgsmith.schemas - Schema definitions for recipes and step-templates.

Recipe -> (range expansion) -> Recipe -> (needs) -> Recipe -> executor

- Recipe: the whole build document (package, environment, pipeline,
  subpackages, data tables)
- Step: one node of a pipeline tree (template reference, command or container)
- StepTemplate: a reusable pipeline fragment with an input schema
- DataTable: key-sorted rows used to replicate subpackages
"""

from .data import DataItem, DataTable
from .recipe import (
    Copyright,
    Dependencies,
    Package,
    PackageOptions,
    Recipe,
    Scriptlets,
    Subpackage,
    Trigger,
)
from .step import Input, Step, steps_from_list
from .template import StepTemplate

__all__ = [
    # Data tables
    "DataItem",
    "DataTable",
    # Recipe
    "Copyright",
    "Dependencies",
    "Package",
    "PackageOptions",
    "Recipe",
    "Scriptlets",
    "Subpackage",
    "Trigger",
    # Steps
    "Input",
    "Step",
    "steps_from_list",
    # Templates
    "StepTemplate",
]
