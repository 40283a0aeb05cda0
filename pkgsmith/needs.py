"""
Needs resolution - which packages must be in the guest before a build.

Walks step trees depth-first and collects:
- packages a step declares itself under ``needs.packages``
- packages declared by every template a step ``uses``, including templates
  used from inside other templates

This runs before the guest is built. A missing template, a missing
required input, or a template that uses itself fails here, so no sandbox
is ever constructed for a build that cannot succeed.
"""

import copy
import dataclasses
import logging
from typing import Iterable, Optional

from pkgsmith.errors import ConfigError
from pkgsmith.registry import TemplateRegistry
from pkgsmith.schemas import Recipe, Step


logger = logging.getLogger(__name__)


def resolve_needs(
    steps: Iterable[Step],
    registry: TemplateRegistry,
    _active: Optional[tuple[str, ...]] = None,
) -> set[str]:
    """
    Collect the build-time package requirements of a step tree.

    Args:
        steps: Step sequence to walk
        registry: Registry used to load ``uses`` references

    Returns:
        Set of required package names

    Raises:
        TemplateNotFoundError: If a referenced template does not exist
        TemplateInputError: If a required template input is not provided
        ConfigError: If templates reference each other in a cycle
    """
    active = _active or ()
    packages: set[str] = set()

    for step in steps:
        packages.update(step.needs)

        if step.is_template_reference:
            if step.uses in active:
                chain = " -> ".join(active + (step.uses,))
                raise ConfigError(f"Step template cycle detected: {chain}")

            template = registry.load(step.uses)
            template.resolve_inputs(step.with_map)
            packages.update(template.needs)
            packages.update(resolve_needs(template.body, registry, active + (step.uses,)))

        if step.pipeline:
            packages.update(resolve_needs(step.pipeline, registry, active))

    return packages


def recipe_needs(recipe: Recipe, registry: TemplateRegistry) -> set[str]:
    """Needs of the root pipeline and every subpackage pipeline."""
    packages = resolve_needs(recipe.pipeline, registry)
    for subpackage in recipe.subpackages:
        packages.update(resolve_needs(subpackage.pipeline, registry))
    return packages


def apply_needs(recipe: Recipe, registry: TemplateRegistry) -> Recipe:
    """
    Add resolved needs to the guest environment's package list.

    Args:
        recipe: A range-expanded recipe
        registry: Template registry

    Returns:
        A new Recipe whose ``environment.contents.packages`` includes every need
    """
    needed = recipe_needs(recipe, registry)

    environment = copy.deepcopy(recipe.environment)
    contents = environment.setdefault("contents", {}) or {}
    environment["contents"] = contents
    existing = [str(p) for p in contents.get("packages") or []]
    contents["packages"] = sorted(set(existing) | needed)

    added = sorted(needed - set(existing))
    if added:
        logger.info("Adding build requirements to guest: %s", ", ".join(added))

    return dataclasses.replace(recipe, environment=environment)
