"""Descriptor parsing, rendering and schema validation."""

from .cask_dsl import parse_cask, render_cask
from .schema import iter_schema_errors, load_descriptor

__all__ = ["iter_schema_errors", "load_descriptor", "parse_cask", "render_cask"]
