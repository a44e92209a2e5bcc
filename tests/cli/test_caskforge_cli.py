from __future__ import annotations

import json
import shutil
from hashlib import sha256
from pathlib import Path

import pytest
import yaml

from caskforge.app.livecheck import LivecheckService
from caskforge.cli import main as cli_main
from caskforge.settings import RuntimeSettings
from fakes import DummyResponse, DummySession

ROOT = Path(__file__).resolve().parents[2]
PAYLOAD = b"tiny archive"


@pytest.fixture()
def runtime_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RuntimeSettings:
    base = tmp_path / "runtime"
    state_dir = base / "state"
    log_dir = base / "logs"
    for directory in (base, state_dir, log_dir):
        directory.mkdir(parents=True, exist_ok=True)
    casks_dir = tmp_path / "Casks"
    shutil.copytree(ROOT / "Casks", casks_dir)
    settings = RuntimeSettings(
        home_dir=base,
        state_dir=state_dir,
        log_dir=log_dir,
        casks_dir=casks_dir,
        appdir=Path("/Applications"),
        user_home=Path("/Users/me"),
    )
    monkeypatch.setattr(cli_main, "SETTINGS", settings, raising=False)
    return settings


@pytest.fixture()
def tiny_cask(runtime_settings: RuntimeSettings) -> str:
    manifest = {
        "identifier": "tiny",
        "version": "2.0",
        "sha256": sha256(PAYLOAD).hexdigest(),
        "url": "https://example.com/tiny-#{version}.zip",
        "name": "Tiny",
        "desc": "Small tool",
        "homepage": "https://example.com",
        "app": "Tiny.app",
    }
    path = runtime_settings.casks_dir / "tiny.yaml"
    path.write_text(yaml.safe_dump(manifest), encoding="utf-8")
    return "tiny"


def _events(settings: RuntimeSettings, event: str) -> list[dict[str, object]]:
    log_file = settings.log_dir / "telemetry.jsonl"
    if not log_file.exists():
        return []
    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines() if line.strip()]
    return [record for record in records if record.get("event") == event]


def test_list_and_show(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["list", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"casks": [{"identifier": "plezy", "version": "1.14.0", "name": "Plezy"}]}

    assert cli_main.main(["show", "plezy"]) == 0
    out = capsys.readouterr().out
    assert "plezy: Plezy 1.14.0" in out
    assert "url: https://github.com/edde746/plezy/releases/download/1.14.0/plezy-macos.dmg" in out

    statuses = [event["status"] for event in _events(runtime_settings, "cli.show")]
    assert statuses == ["start", "success"]


def test_url_and_render(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["url", "plezy"]) == 0
    assert capsys.readouterr().out.strip().endswith("/1.14.0/plezy-macos.dmg")

    assert cli_main.main(["render", "plezy"]) == 0
    assert capsys.readouterr().out == (ROOT / "Casks" / "plezy.rb").read_text(encoding="utf-8")


def test_verify_file(runtime_settings: RuntimeSettings, tiny_cask: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    artifact = tmp_path / "tiny-2.0.zip"
    artifact.write_bytes(PAYLOAD)

    assert cli_main.main(["verify", tiny_cask, "--file", str(artifact), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "ok"

    artifact.write_bytes(PAYLOAD + b"tampered")
    assert cli_main.main(["verify", tiny_cask, "--file", str(artifact)]) == 1
    captured = capsys.readouterr()
    assert "sha256 mismatch" in captured.err
    failure = _events(runtime_settings, "cli.verify")[-1]
    assert failure["status"] == "integrity"
    assert failure["level"] == "error"


def test_verify_url_download_failure(
    runtime_settings: RuntimeSettings, tiny_cask: str, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    from caskforge.domain import DownloadError

    def failing_fetch(url: str, **_: object) -> bytes:
        raise DownloadError(f"failed to download {url}: HTTP 503")

    monkeypatch.setattr(cli_main, "fetch_artifact", failing_fetch)

    assert cli_main.main(["verify", tiny_cask, "--url"]) == 1
    assert "HTTP 503" in capsys.readouterr().err


def test_install_plan_json(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["install-plan", "plezy", "--appdir", "/opt/Apps", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)

    assert [step["action"] for step in payload["steps"]] == ["download", "verify", "extract", "place", "run"]
    assert payload["steps"][-1]["args"] == ["-cr", "/opt/Apps/Plezy.app"]


def test_uninstall_plan_zap_with_check(
    runtime_settings: RuntimeSettings, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    home = tmp_path / "home"
    (home / "Library" / "Caches" / "com.edde746.plezy").mkdir(parents=True)

    assert cli_main.main(["uninstall-plan", "plezy", "--zap", "--check", "--home", str(home), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)

    trashed = [step["target"] for step in payload["steps"] if step["action"] == "trash"]
    assert len(trashed) == 6
    assert str(home / "Library" / "Caches" / "com.edde746.plezy") in trashed
    missing = {warning["target"] for warning in payload["warnings"]}
    assert "/Applications/Plezy.app" in missing
    assert str(home / "Library" / "Caches" / "com.edde746.plezy") not in missing
    assert len(_events(runtime_settings, "uninstall.missing")) == len(payload["warnings"])


def test_uninstall_plan_defaults_to_configured_home(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["uninstall-plan", "plezy"]) == 0
    out = capsys.readouterr().out
    assert "quit com.edde746.plezy [best effort]" in out
    assert "remove /Applications/Plezy.app" in out
    assert "trash" not in out

    assert cli_main.main(["uninstall-plan", "plezy", "--zap"]) == 0
    assert "trash /Users/me/Library/Caches/com.edde746.plezy" in capsys.readouterr().out


def test_bump_writes_next_revision(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    new_sha = "1f7d22" + "0" * 56 + "d9"

    assert cli_main.main(["bump", "plezy", "--version", "1.14.1", "--sha256", new_sha]) == 0
    assert "1.14.0 -> 1.14.1" in capsys.readouterr().out
    manifest = yaml.safe_load((runtime_settings.casks_dir / "plezy.yaml").read_text(encoding="utf-8"))
    assert (manifest["version"], manifest["sha256"]) == ("1.14.1", new_sha)
    rb_text = (runtime_settings.casks_dir / "plezy.rb").read_text(encoding="utf-8")
    assert 'version "1.14.1"' in rb_text and new_sha in rb_text

    assert cli_main.main(["url", "plezy"]) == 0
    assert capsys.readouterr().out.strip().endswith("/1.14.1/plezy-macos.dmg")

    assert cli_main.main(["bump", "plezy", "--version", "1.14.2", "--sha256", new_sha]) == 1
    assert "without a checksum change" in capsys.readouterr().err


def test_lint_reports_broken_descriptors(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["lint"]) == 0
    capsys.readouterr()

    broken = yaml.safe_load((runtime_settings.casks_dir / "plezy.yaml").read_text(encoding="utf-8"))
    broken["identifier"] = "broken"
    broken["url"] = "https://example.com/latest.dmg"
    (runtime_settings.casks_dir / "broken.yaml").write_text(yaml.safe_dump(broken), encoding="utf-8")

    assert cli_main.main(["lint", "--json"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "error"
    assert payload["checked"] == ["plezy.rb", "plezy.yaml"]
    assert payload["errors"][0].startswith("broken.yaml: url template has no version placeholder")


def test_unknown_descriptor_is_reported(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main.main(["show", "missing"]) == 1
    assert "no descriptor named 'missing'" in capsys.readouterr().err


def test_livecheck_command(
    runtime_settings: RuntimeSettings, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    session = DummySession([DummyResponse(200, {"tag_name": "v1.14.1"})])
    monkeypatch.setattr(cli_main, "LivecheckService", lambda settings: LivecheckService(settings, session=session))  # type: ignore[arg-type]

    assert cli_main.main(["livecheck", "--json"]) == 0
    (result,) = json.loads(capsys.readouterr().out)["results"]
    assert result["latest"] == "1.14.1"
    assert result["outdated"] is True
    assert result["auto_updates"] is True

    assert cli_main.main(["livecheck", "plezy"]) == 0
    assert "plezy: 1.14.0 -> 1.14.1 outdated (auto_updates) [cached]" in capsys.readouterr().out


def test_telemetry_summary_and_clear(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    cli_main.main(["url", "plezy"])
    capsys.readouterr()

    assert cli_main.main(["telemetry", "--json"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["by_event"]["cli.url"] == 2

    assert cli_main.main(["telemetry", "--clear"]) == 0
    assert _events(runtime_settings, "cli.url") == []


def test_verify_missing_file_fails_cleanly(
    runtime_settings: RuntimeSettings, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "absent" / "plezy-macos.dmg"

    assert cli_main.main(["verify", "plezy", "--file", str(missing)]) == 1
    assert "cannot read artifact" in capsys.readouterr().err
    failure = _events(runtime_settings, "cli.verify")[-1]
    assert failure["status"] == "error"
    assert failure["level"] == "error"


def test_bump_keeps_dsl_only_descriptor_in_dsl(runtime_settings: RuntimeSettings, capsys: pytest.CaptureFixture[str]) -> None:
    (runtime_settings.casks_dir / "plezy.yaml").unlink()
    new_sha = "ab" * 32

    assert cli_main.main(["bump", "plezy", "--version", "1.15.0", "--sha256", new_sha, "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)

    assert [Path(path).name for path in payload["paths"]] == ["plezy.rb"]
    assert not (runtime_settings.casks_dir / "plezy.yaml").exists()
    assert cli_main.main(["show", "plezy"]) == 0
    assert "plezy: Plezy 1.15.0" in capsys.readouterr().out
