"""Tests for pkgsmith.sbom."""

import json
from datetime import datetime, timezone

from pkgsmith.sbom import SBOM_DIR, SBOMSpec, SpdxJsonGenerator


def _spec(tmp_path, **overrides):
    values = dict(
        path=tmp_path,
        package_name="hello",
        package_version="1.0-r0",
        languages=("go", "c"),
        license="MIT OR Apache-2.0",
        copyright="(c) A\n",
        build_date=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return SBOMSpec(**values)


class TestSpdxJsonGenerator:
    def test_document_written(self, tmp_path):
        path = SpdxJsonGenerator().generate(_spec(tmp_path))
        assert path == tmp_path / SBOM_DIR / "hello-1.0-r0.spdx.json"

        document = json.loads(path.read_text())
        assert document["spdxVersion"] == "SPDX-2.3"
        assert document["creationInfo"]["created"] == "2023-01-01T00:00:00Z"
        package = document["packages"][0]
        assert package["name"] == "hello"
        assert package["versionInfo"] == "1.0-r0"
        assert package["licenseDeclared"] == "MIT OR Apache-2.0"
        assert package["comment"] == "languages: go, c"

    def test_deterministic(self, tmp_path):
        first = SpdxJsonGenerator().document(_spec(tmp_path))
        second = SpdxJsonGenerator().document(_spec(tmp_path))
        assert first == second

    def test_defaults_to_noassertion(self, tmp_path):
        document = SpdxJsonGenerator().document(_spec(tmp_path, license="", copyright="", languages=()))
        package = document["packages"][0]
        assert package["licenseDeclared"] == "NOASSERTION"
        assert package["copyrightText"] == "NOASSERTION"
        assert "comment" not in package
