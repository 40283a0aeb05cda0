"""
TemplateRegistry - Load step-templates referenced by ``uses``.

The registry provides:
- Lookup of ``uses: group/name`` as ``group/name.yaml`` (or ``.yml``)
- A search path: the user pipeline directory first, then built-in templates
- Caching loaded templates
- Listing every template reachable through the search path
"""

from pathlib import Path
from typing import Optional

import yaml

from pkgsmith.errors import ConfigError, TemplateNotFoundError
from pkgsmith.schemas import StepTemplate


# Templates shipped with pkgsmith
BUILTIN_PIPELINE_DIR = Path(__file__).parent / "pipelines"


class TemplateRegistry:
    """
    Registry for loading and caching step-templates.

    Example directory structure:
        pipelines/
            fetch.yaml
            go/
                build.yaml
            autoconf/
                configure.yaml
                make.yaml
    """

    def __init__(
        self,
        pipeline_dir: Optional[Path | str] = None,
        builtin_dir: Optional[Path | str] = BUILTIN_PIPELINE_DIR,
    ):
        """
        Initialize the registry.

        Args:
            pipeline_dir: User directory searched before the built-in one
            builtin_dir: Built-in template directory (None disables it)
        """
        dirs: list[Path] = []
        if pipeline_dir:
            dirs.append(Path(pipeline_dir))
        if builtin_dir:
            dirs.append(Path(builtin_dir))
        self._search_path = tuple(dirs)
        self._cache: dict[str, StepTemplate] = {}

    @property
    def search_path(self) -> tuple[Path, ...]:
        return self._search_path

    def load(self, ref: str) -> StepTemplate:
        """
        Load a template by reference.

        Args:
            ref: Reference name, e.g. "fetch" or "go/build"

        Returns:
            The loaded StepTemplate

        Raises:
            TemplateNotFoundError: If no directory in the search path has it
            ConfigError: If the file exists but is not a valid template
        """
        if ref in self._cache:
            return self._cache[ref]

        path = self._find(ref)
        if path is None:
            searched = ", ".join(str(d) for d in self._search_path) or "<empty search path>"
            raise TemplateNotFoundError(f"Step template not found: {ref} (searched {searched})")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load template {path}: {e}")

        template = StepTemplate.from_dict(ref, data)
        self._cache[ref] = template
        return template

    def list_templates(self) -> list[str]:
        """Sorted reference names of every template in the search path."""
        refs = set()
        for base in self._search_path:
            if not base.exists():
                continue
            for ext in ("*.yaml", "*.yml"):
                for f in base.glob(f"**/{ext}"):
                    refs.add(f.relative_to(base).with_suffix("").as_posix())
        return sorted(refs)

    def _find(self, ref: str) -> Optional[Path]:
        if not ref or ref.startswith("/") or ".." in Path(ref).parts:
            return None
        for base in self._search_path:
            for ext in (".yaml", ".yml"):
                candidate = base / f"{ref}{ext}"
                if candidate.is_file():
                    return candidate
        return None
