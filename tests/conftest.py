from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = ROOT / "tests"
SANDBOX_HOME = ROOT / ".test_place" / "caskforge-home"
os.environ.setdefault("CASKFORGE_HOME", str(SANDBOX_HOME))
SANDBOX_HOME.mkdir(parents=True, exist_ok=True)
for entry in (SRC, TESTS):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

CASKS_DIR = ROOT / "Casks"

from caskforge.adapters import DescriptorRepository  # noqa: E402
from caskforge.domain import PackageDescriptor  # noqa: E402


@pytest.fixture()
def plezy_rb_text() -> str:
    return (CASKS_DIR / "plezy.rb").read_text(encoding="utf-8")


@pytest.fixture()
def plezy() -> PackageDescriptor:
    return DescriptorRepository(CASKS_DIR).get("plezy")
