from __future__ import annotations

from bundle_registry.models import (
    Bundle,
    BundleDependency,
    ValidationResult,
    utc_now_iso,
)


def _bundle(**overrides) -> Bundle:
    values = {
        "id": "acme-review",
        "name": "Review",
        "version": "1.0.0",
        "description": "d",
        "author": "acme",
        "source_id": "src",
        "environments": (),
        "tags": ("apm",),
        "last_updated": "2026-01-01T00:00:00Z",
        "size": "1 dependency",
        "dependencies": (BundleDependency("acme/base"),),
        "license": "MIT",
        "manifest_url": "https://example.com/apm.yml",
        "download_url": "https://example.com/apm.yml",
    }
    values.update(overrides)
    return Bundle(**values)


def test_empty_environments_default_to_general() -> None:
    assert _bundle().environments == ("general",)


def test_to_dict_uses_camel_case_keys() -> None:
    payload = _bundle(repository="https://github.com/acme/review").to_dict()

    assert payload["sourceId"] == "src"
    assert payload["lastUpdated"] == "2026-01-01T00:00:00Z"
    assert payload["dependencies"] == [
        {"bundleId": "acme/base", "versionRange": "*", "optional": False}
    ]
    assert payload["repository"] == "https://github.com/acme/review"
    assert "repository" not in _bundle().to_dict()


def test_validation_result_failure() -> None:
    result = ValidationResult.failure("one", "two", warnings=("careful",))

    assert result.valid is False
    assert result.errors == ("one", "two")
    assert result.warnings == ("careful",)
    assert result.bundles_found == 0


def test_utc_now_iso_has_z_suffix() -> None:
    assert utc_now_iso().endswith("Z")
