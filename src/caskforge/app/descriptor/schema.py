"""Schema helpers for package descriptor manifests."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Iterator, Mapping, Tuple

from jsonschema import Draft202012Validator

from caskforge.domain import DescriptorError, PackageDescriptor

_SCHEMA_RESOURCE = "descriptor.schema.json"
_SCHEMA_PACKAGE = "caskforge.resources"


@lru_cache(maxsize=1)
def _load_schema() -> dict[str, Any]:
    resource = resources.files(_SCHEMA_PACKAGE) / _SCHEMA_RESOURCE
    with resource.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(_load_schema())


def iter_schema_errors(manifest: Mapping[str, Any]) -> Iterator[Tuple[str, str]]:
    """Yield (path, message) pairs for schema issues in the manifest."""
    validator = _validator()
    for error in sorted(validator.iter_errors(manifest), key=lambda err: list(map(str, err.absolute_path))):
        path = ".".join(str(item) for item in error.absolute_path)
        yield path, error.message


def load_descriptor(manifest: Mapping[str, Any], *, source: str | None = None) -> PackageDescriptor:
    """Validate a manifest mapping and build the descriptor it describes."""

    errors = [f"{path or '<root>'}: {message}" for path, message in iter_schema_errors(manifest)]
    if errors:
        where = f"{source}: " if source else ""
        raise DescriptorError(f"{where}schema violation: " + "; ".join(errors))
    return PackageDescriptor.from_dict(manifest)


__all__ = ["iter_schema_errors", "load_descriptor"]
