from __future__ import annotations

from dataclasses import replace
from hashlib import sha256
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from caskforge.adapters import DescriptorRepository
from caskforge.app.resolver import plan_uninstall, resolve_download_url, verify_artifact
from caskforge.domain import IntegrityError, StepAction

_version = st.from_regex(r"[A-Za-z0-9][A-Za-z0-9._,+:-]{0,15}", fullmatch=True)
_segment = st.text(alphabet=st.characters(min_codepoint=97, max_codepoint=122), min_size=1, max_size=8)
_residual = st.builds(lambda parts: "~/" + "/".join(parts), st.lists(_segment, min_size=1, max_size=3))

PLEZY = DescriptorRepository(Path(__file__).resolve().parents[2] / "Casks").get("plezy")


@settings(max_examples=50)
@given(version=_version)
def test_resolved_url_never_keeps_a_placeholder(version: str) -> None:
    descriptor = replace(PLEZY, version=version, download_url_template="https://host/#{version}/app-${version}.dmg")

    url = resolve_download_url(descriptor)

    assert url == f"https://host/{version}/app-{version}.dmg"
    assert "#{" not in url and "${" not in url


@settings(max_examples=50)
@given(data=st.data(), payload=st.binary(min_size=1, max_size=256))
def test_single_bit_mutation_fails_verification(data: st.DataObject, payload: bytes) -> None:
    descriptor = replace(PLEZY, checksum=sha256(payload).hexdigest())
    verify_artifact(payload, descriptor)

    index = data.draw(st.integers(min_value=0, max_value=len(payload) - 1))
    bit = data.draw(st.integers(min_value=0, max_value=7))
    mutated = bytearray(payload)
    mutated[index] ^= 1 << bit

    with pytest.raises(IntegrityError):
        verify_artifact(bytes(mutated), descriptor)


@settings(max_examples=50)
@given(paths=st.lists(_residual, min_size=0, max_size=8), zap=st.booleans())
def test_uninstall_plan_trashes_each_residual_path_once(paths: list[str], zap: bool) -> None:
    descriptor = replace(PLEZY, residual_paths=tuple(paths))

    plan = plan_uninstall(descriptor, zap, home="/Users/me")
    trashed = plan.targets(StepAction.TRASH)

    expected = list(dict.fromkeys("/Users/me/" + path[2:] for path in paths))
    assert list(trashed) == (expected if zap else [])
    assert plan == plan_uninstall(descriptor, zap, home="/Users/me")
