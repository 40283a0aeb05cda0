"""
Recipe loading.

Loading a recipe:
1. Locate the recipe file (explicit path or auto-detected in the source dir)
2. Parse YAML into a Recipe
3. Expand ranged subpackages
4. Add the ``build`` user and group to the guest accounts
5. Merge the env file beneath the recipe's own environment variables
6. Set HOME and GOPATH for the build user

Build timestamps come from the ``--build-date`` option, overridden by
SOURCE_DATE_EPOCH when it is set.
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from pkgsmith.errors import ConfigError
from pkgsmith.ranges import expand_ranges
from pkgsmith.schemas import Recipe
from pkgsmith.schemas.step import mapping, scalar


RECIPE_FILENAMES = (".pkgsmith.yaml", ".pkgsmith.yml", "pkgsmith.yaml", "pkgsmith.yml")

BUILD_USER = "build"
BUILD_UID = 1000
BUILD_HOME = "/home/build"

_EPOCH_RE = re.compile(r"[+-]?[0-9]+")


def find_recipe(search_dir: Path | str = ".") -> Path:
    """
    Auto-detect the recipe file in a directory.

    Raises:
        ConfigError: If none of the known recipe names exist
    """
    search_dir = Path(search_dir)
    for name in RECIPE_FILENAMES:
        candidate = search_dir / name
        if candidate.is_file():
            return candidate
    raise ConfigError(f"pkgsmith.yaml is missing in {search_dir.resolve()}")


def _add_build_account(environment: dict[str, Any]) -> None:
    accounts = mapping(environment.get("accounts"), "'environment.accounts'")
    environment["accounts"] = accounts
    accounts["groups"] = [{"groupname": BUILD_USER, "gid": BUILD_UID, "members": [BUILD_USER]}]
    accounts["users"] = [{"username": BUILD_USER, "uid": BUILD_UID, "gid": BUILD_UID}]


def _merge_env_file(variables: Mapping[str, Any], env_file: Path) -> dict[str, str]:
    if not env_file.is_file():
        raise ConfigError(f"Environment file not found: {env_file}")
    merged = {k: v or "" for k, v in dotenv_values(env_file).items()}
    merged.update({k: str(v) for k, v in variables.items()})
    return merged


def load_recipe(path: Path | str, env_file: Optional[Path | str] = None) -> Recipe:
    """
    Load a recipe file and prepare it for building.

    Args:
        path: Recipe YAML file
        env_file: Optional dotenv file; recipe variables take precedence

    Returns:
        Recipe with ranges expanded and the build environment prepared

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Recipe not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Unable to read recipe {path}: {e}")

    recipe = expand_ranges(Recipe.from_dict(data))

    environment = recipe.environment
    _add_build_account(environment)

    declared = mapping(environment.get("environment"), "'environment.environment'")
    variables = {str(k): scalar(v) for k, v in declared.items()}
    if env_file:
        variables = _merge_env_file(variables, Path(env_file))
    variables["HOME"] = BUILD_HOME
    variables["GOPATH"] = f"{BUILD_HOME}/.cache/go"
    environment["environment"] = variables

    return recipe


def parse_build_date(value: str) -> datetime:
    """
    Parse an RFC 3339 build date; empty means the UNIX epoch.

    Raises:
        ConfigError: If the value is not a valid timestamp
    """
    if not value:
        return datetime.fromtimestamp(0, timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ConfigError(f"Invalid build date (expected RFC 3339): {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def source_date_epoch(default: datetime) -> datetime:
    """
    Apply SOURCE_DATE_EPOCH, which overrides any configured build date.

    Raises:
        ConfigError: If the variable is set but not a base-10 integer
    """
    value = os.environ.get("SOURCE_DATE_EPOCH")
    if value is None:
        return default
    if not _EPOCH_RE.fullmatch(value):
        raise ConfigError(f"Failed to parse SOURCE_DATE_EPOCH: {value!r}")
    try:
        return datetime.fromtimestamp(int(value), timezone.utc)
    except (OverflowError, ValueError, OSError) as e:
        raise ConfigError(f"SOURCE_DATE_EPOCH out of range: {value!r} ({e})")
