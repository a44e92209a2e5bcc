"""Filesystem repository for package descriptors."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import yaml

from caskforge.app.descriptor import load_descriptor, parse_cask, render_cask
from caskforge.domain import DescriptorError, PackageDescriptor

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
DSL_SUFFIX = ".rb"


class DescriptorRepository:
    """Reads descriptors from a ``Casks/`` directory of YAML, JSON or DSL files."""

    def __init__(self, casks_dir: Path) -> None:
        self._root = casks_dir

    @property
    def base_dir(self) -> Path:
        return self._root

    def paths(self) -> List[Path]:
        if not self._root.exists():
            return []
        suffixes = (*MANIFEST_SUFFIXES, DSL_SUFFIX)
        return sorted(path for path in self._root.iterdir() if path.is_file() and path.suffix in suffixes)

    def load_path(self, path: Path) -> PackageDescriptor:
        raw = path.read_text(encoding="utf-8")
        if path.suffix == DSL_SUFFIX:
            descriptor = parse_cask(raw)
        else:
            try:
                data = json.loads(raw) if path.suffix == ".json" else yaml.safe_load(raw)
            except (json.JSONDecodeError, yaml.YAMLError) as exc:
                raise DescriptorError(f"{path.name}: cannot parse manifest: {exc}") from exc
            if not isinstance(data, dict):
                raise DescriptorError(f"{path.name}: manifest root must be a mapping")
            descriptor = load_descriptor(data, source=path.name)
        if descriptor.identifier != path.stem:
            raise DescriptorError(
                f"identifier mismatch: file={path.name} identifier={descriptor.identifier}"
            )
        return descriptor

    def list(self) -> List[PackageDescriptor]:
        """Every descriptor, one per identifier; YAML/JSON wins over DSL on conflict."""

        found: Dict[str, PackageDescriptor] = {}
        for path in self.paths():
            descriptor = self.load_path(path)
            if descriptor.identifier in found and path.suffix == DSL_SUFFIX:
                continue
            found[descriptor.identifier] = descriptor
        return [found[key] for key in sorted(found)]

    def sources(self, identifier: str) -> List[Path]:
        """Files holding ``identifier``, in lookup order (manifests before DSL)."""

        candidates = [self._root / f"{identifier}{suffix}" for suffix in (*MANIFEST_SUFFIXES, DSL_SUFFIX)]
        return [path for path in candidates if path.is_file()]

    def get(self, identifier: str) -> PackageDescriptor:
        sources = self.sources(identifier)
        if not sources:
            raise DescriptorError(f"no descriptor named '{identifier}' in {self._root}")
        return self.load_path(sources[0])

    def save(self, descriptor: PackageDescriptor, *, overwrite: bool = False, fmt: str = "yaml") -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        suffix = ".yaml" if fmt == "yaml" else DSL_SUFFIX
        target = self._root / f"{descriptor.identifier}{suffix}"
        if target.exists() and not overwrite:
            raise DescriptorError(f"descriptor '{descriptor.identifier}' already exists at {target}")
        self._write(target, descriptor)
        return target

    def update(self, descriptor: PackageDescriptor) -> List[Path]:
        """Rewrite every file holding the descriptor so no stale revision shadows it."""

        targets = self.sources(descriptor.identifier)
        if not targets:
            raise DescriptorError(f"no descriptor named '{descriptor.identifier}' in {self._root}")
        for target in targets:
            self._write(target, descriptor)
        return targets

    def _write(self, target: Path, descriptor: PackageDescriptor) -> None:
        if target.suffix == DSL_SUFFIX:
            text = render_cask(descriptor)
        elif target.suffix == ".json":
            text = json.dumps(descriptor.to_dict(), ensure_ascii=False, indent=2) + "\n"
        else:
            text = yaml.safe_dump(descriptor.to_dict(), sort_keys=False, allow_unicode=True)
        target.write_text(text, encoding="utf-8")
