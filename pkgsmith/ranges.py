"""
Range expansion - replicate subpackages once per data table row.

A subpackage with ``range: <table>`` becomes one subpackage per row of that
table. In each replica ``${{range.key}}`` and ``${{range.value}}`` are
substituted into:
- the subpackage name and description
- every step's ``runs`` body, including nested pipelines

Template references, ``with`` values, labels, needs and guards are copied
verbatim; they are resolved later, at execution time. Expansion is one-shot:
the returned recipe has no data tables and no subpackage keeps a ``range``.
"""

import dataclasses
import logging

from pkgsmith.errors import RangeError
from pkgsmith.schemas import DataItem, Recipe, Step, Subpackage
from pkgsmith.substitution import Replacer


logger = logging.getLogger(__name__)


def range_replacer(item: DataItem) -> Replacer:
    """Replacer for one data table row."""
    return Replacer.from_variables({"range.key": item.key, "range.value": item.value})


def _expand_step(step: Step, replacer: Replacer) -> Step:
    return dataclasses.replace(
        step,
        runs=replacer.replace(step.runs),
        pipeline=tuple(_expand_step(child, replacer) for child in step.pipeline),
    )


def expand_subpackage(subpackage: Subpackage, items: tuple[DataItem, ...]) -> list[Subpackage]:
    """
    Produce one replica of ``subpackage`` per row.

    Args:
        subpackage: The ranged subpackage
        items: Table rows, already key-sorted

    Returns:
        Replicas in row order
    """
    replicas = []
    for item in items:
        replacer = range_replacer(item)
        replicas.append(dataclasses.replace(
            subpackage,
            name=replacer.replace(subpackage.name),
            description=replacer.replace(subpackage.description),
            range="",
            pipeline=tuple(_expand_step(step, replacer) for step in subpackage.pipeline),
        ))
    return replicas


def expand_ranges(recipe: Recipe) -> Recipe:
    """
    Expand every ranged subpackage in a recipe.

    Args:
        recipe: The recipe as loaded from YAML

    Returns:
        A new Recipe with replicated subpackages and no data tables

    Raises:
        RangeError: If a subpackage names a table that is not declared
    """
    subpackages: list[Subpackage] = []

    for subpackage in recipe.subpackages:
        if not subpackage.range:
            subpackages.append(subpackage)
            continue

        table = recipe.get_table(subpackage.range)
        if table is None:
            raise RangeError(
                f"Subpackage '{subpackage.name}' specified undefined range: {subpackage.range!r}"
            )

        replicas = expand_subpackage(subpackage, table.items)
        logger.debug(
            "Expanded subpackage %s over %s into %d replicas",
            subpackage.name, table.name, len(replicas),
        )
        subpackages.extend(replicas)

    return dataclasses.replace(recipe, subpackages=tuple(subpackages), data=())
