"""
SBOM generation - one software bill of materials per built package.

The SBOM is written into the guest filesystem; the session generates one
for the main package and one for each subpackage, before emission.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pkgsmith.errors import DelegatedError


SBOM_DIR = Path("var/lib/db/sbom")


@dataclass(frozen=True)
class SBOMSpec:
    """
    Inputs for one package's SBOM.

    Attributes:
        path: Guest root the SBOM is written under
        package_name: Package (or subpackage) name
        package_version: Full version, e.g. ``1.2-r0``
        languages: Source languages declared by the package's steps
        license: SPDX license expression
        copyright: Copyright text, one attestation per line
        build_date: Reproducible build timestamp
    """
    path: Path
    package_name: str
    package_version: str
    languages: tuple[str, ...] = field(default_factory=tuple)
    license: str = ""
    copyright: str = ""
    build_date: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, timezone.utc))


class SBOMGenerator(ABC):
    """Abstract base class for SBOM generators."""

    @abstractmethod
    def generate(self, spec: SBOMSpec) -> Path:
        """
        Write the SBOM for one package.

        Returns:
            Path of the written document

        Raises:
            DelegatedError: If the SBOM cannot be written
        """
        pass


class SpdxJsonGenerator(SBOMGenerator):
    """Writes a minimal SPDX 2.3 JSON document per package."""

    def __init__(self, logger: Optional[logging.Logger | logging.LoggerAdapter] = None):
        self.logger = logger or logging.getLogger(__name__)

    def document(self, spec: SBOMSpec) -> dict[str, Any]:
        created = spec.build_date.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        name = f"{spec.package_name}-{spec.package_version}"
        # Deterministic namespace so identical inputs produce identical SBOMs
        namespace = uuid.uuid5(uuid.NAMESPACE_URL, f"pkgsmith:{name}:{created}")
        package = {
            "SPDXID": "SPDXRef-Package-" + spec.package_name,
            "name": spec.package_name,
            "versionInfo": spec.package_version,
            "downloadLocation": "NOASSERTION",
            "filesAnalyzed": False,
            "licenseConcluded": "NOASSERTION",
            "licenseDeclared": spec.license or "NOASSERTION",
            "copyrightText": spec.copyright or "NOASSERTION",
        }
        if spec.languages:
            package["comment"] = "languages: " + ", ".join(spec.languages)

        return {
            "spdxVersion": "SPDX-2.3",
            "dataLicense": "CC0-1.0",
            "SPDXID": "SPDXRef-DOCUMENT",
            "name": name,
            "documentNamespace": f"https://spdx.org/spdxdocs/pkgsmith/{namespace}",
            "creationInfo": {
                "created": created,
                "creators": ["Tool: pkgsmith"],
            },
            "packages": [package],
            "relationships": [
                {
                    "spdxElementId": "SPDXRef-DOCUMENT",
                    "relationshipType": "DESCRIBES",
                    "relatedSpdxElement": package["SPDXID"],
                }
            ],
        }

    def generate(self, spec: SBOMSpec) -> Path:
        target = Path(spec.path) / SBOM_DIR / f"{spec.package_name}-{spec.package_version}.spdx.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w") as f:
                json.dump(self.document(spec), f, indent=2, sort_keys=True)
        except OSError as e:
            raise DelegatedError("unable to generate SBOM", e)

        self.logger.debug("wrote SBOM %s", target, extra={"event": "sbom_generated"})
        return target
