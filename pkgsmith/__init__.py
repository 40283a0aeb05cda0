"""
pkgsmith - Declarative package builder

Builds packages from YAML recipes: pipelines of shell steps and reusable
step-templates run inside an isolated guest, one artifact per package.
"""

__version__ = "0.1.0"


__all__ = [
    "BuildResult",
    "BuildSession",
    "SessionOptions",
    "load_recipe",
    "find_recipe",
]

from .config import find_recipe, load_recipe
from .session import BuildResult, BuildSession, SessionOptions
