#!/usr/bin/env python3
"""Entry point for the caskforge CLI."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from textwrap import dedent
from typing import Any, Callable

from caskforge import __version__
from caskforge.adapters import DescriptorRepository
from caskforge.app.descriptor import render_cask
from caskforge.app.livecheck import LivecheckService
from caskforge.app.resolver import (
    fetch_artifact,
    inspect_uninstall,
    plan_install,
    plan_uninstall,
    resolve_download_url,
    verify_artifact,
    verify_file,
)
from caskforge.domain import CaskforgeError, IntegrityError, PackageDescriptor
from caskforge.settings import SETTINGS
from caskforge.utils.telemetry import UNINSTALL_MISSING, EventLog, cli_event

HELP_OVERVIEW = dedent(
    """
    Examples:
      caskforge list
      caskforge show plezy --json
      caskforge verify plezy --file ~/Downloads/plezy-macos.dmg
      caskforge uninstall-plan plezy --zap --check
      caskforge livecheck --force
      caskforge bump plezy --version 1.14.1 --sha256 <digest>
    """
)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _repository(args: argparse.Namespace) -> DescriptorRepository:
    casks_dir = getattr(args, "casks_dir", None)
    return DescriptorRepository(Path(casks_dir).expanduser() if casks_dir else SETTINGS.casks_dir)


def _appdir(args: argparse.Namespace) -> str:
    return getattr(args, "appdir", None) or str(SETTINGS.appdir)


def _load(args: argparse.Namespace) -> PackageDescriptor:
    return _repository(args).get(args.token)


def _list_cmd(args: argparse.Namespace) -> int:
    descriptors = _repository(args).list()
    if args.json:
        _print_json({"casks": [{"identifier": d.identifier, "version": d.version, "name": d.display_name} for d in descriptors]})
    elif not descriptors:
        print("list: no descriptors found")
    else:
        for descriptor in descriptors:
            print(f"{descriptor.identifier} {descriptor.version}  {descriptor.display_name}")
    return 0


def _show_cmd(args: argparse.Namespace) -> int:
    descriptor = _load(args)
    if args.json:
        _print_json(descriptor.to_dict())
        return 0
    print(f"{descriptor.identifier}: {descriptor.display_name} {descriptor.version}")
    print(f"  {descriptor.description}")
    print(f"  homepage: {descriptor.homepage}")
    print(f"  url: {resolve_download_url(descriptor)}")
    print(f"  app: {descriptor.install_target}")
    if descriptor.auto_updates:
        print("  auto_updates: true")
    return 0


def _lint_cmd(args: argparse.Namespace) -> int:
    repository = _repository(args)
    paths = repository.paths()
    if args.token:
        paths = [path for path in paths if path.stem == args.token]
    errors: list[str] = []
    checked: list[str] = []
    for path in paths:
        try:
            descriptor = repository.load_path(path)
            resolve_download_url(descriptor)
            plan_install(descriptor, appdir=_appdir(args))
        except CaskforgeError as exc:
            errors.append(f"{path.name}: {exc}")
            continue
        checked.append(path.name)
    if args.token and not paths:
        errors.append(f"no descriptor named '{args.token}'")
    if args.json:
        _print_json({"status": "error" if errors else "ok", "checked": checked, "errors": errors})
    else:
        for name in checked:
            print(f"lint: {name} ok")
        for error in errors:
            print(f"lint: {error}", file=sys.stderr)
    return 1 if errors else 0


def _url_cmd(args: argparse.Namespace) -> int:
    print(resolve_download_url(_load(args)))
    return 0


def _verify_cmd(args: argparse.Namespace) -> int:
    descriptor = _load(args)
    if args.file:
        source = str(Path(args.file).expanduser())
        verify_file(Path(source), descriptor)
    else:
        source = resolve_download_url(descriptor)
        verify_artifact(fetch_artifact(source), descriptor, source=source)
    if args.json:
        _print_json({"status": "ok", "identifier": descriptor.identifier, "source": source, "sha256": descriptor.checksum})
    else:
        print(f"verify: {source} matches {descriptor.identifier} {descriptor.version}")
    return 0


def _install_plan_cmd(args: argparse.Namespace) -> int:
    plan = plan_install(_load(args), appdir=_appdir(args))
    if args.json:
        _print_json(plan.to_dict())
        return 0
    print(f"install-plan: {plan.identifier} {plan.version}")
    for index, step in enumerate(plan, start=1):
        suffix = f" {' '.join(step.args)}" if step.args else ""
        sudo = " (sudo)" if step.sudo else ""
        print(f"  {index}. {step.action.value} {step.target}{suffix}{sudo}")
    return 0


def _uninstall_plan_cmd(args: argparse.Namespace) -> int:
    descriptor = _load(args)
    home = args.home or str(SETTINGS.user_home)
    plan = plan_uninstall(descriptor, args.zap, appdir=_appdir(args), home=home)
    warnings = inspect_uninstall(plan) if args.check else []
    log = EventLog(SETTINGS)
    for warning in warnings:
        log.emit(
            UNINSTALL_MISSING,
            identifier=descriptor.identifier,
            payload=warning.to_dict(),
            level="warn",
            component="uninstall",
        )
    if args.json:
        payload = plan.to_dict()
        payload["warnings"] = [warning.to_dict() for warning in warnings]
        _print_json(payload)
        return 0
    print(f"uninstall-plan: {plan.identifier}{' (zap)' if plan.zap else ''}")
    for index, step in enumerate(plan, start=1):
        note = " [best effort]" if step.best_effort else ""
        print(f"  {index}. {step.action.value} {step.target}{note}")
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


def _livecheck_cmd(args: argparse.Namespace) -> int:
    repository = _repository(args)
    descriptors = [repository.get(token) for token in args.tokens] if args.tokens else repository.list()
    results = LivecheckService(SETTINGS).run(descriptors, force=args.force)
    if args.json:
        _print_json({"results": [result.to_dict() for result in results]})
        return 0
    for result in results:
        if result.error:
            print(f"livecheck: {result.identifier}: {result.error}", file=sys.stderr)
            continue
        state = "outdated" if result.outdated else "up to date"
        note = " (auto_updates)" if result.auto_updates else ""
        cached = " [cached]" if result.cached else ""
        print(f"{result.identifier}: {result.current} -> {result.latest} {state}{note}{cached}")
    return 0


def _render_cmd(args: argparse.Namespace) -> int:
    sys.stdout.write(render_cask(_load(args)))
    return 0


def _bump_cmd(args: argparse.Namespace) -> int:
    repository = _repository(args)
    current = repository.get(args.token)
    updated = current.supersede(args.version, args.sha256)
    targets = repository.update(updated)
    if args.json:
        _print_json(
            {
                "status": "ok",
                "identifier": updated.identifier,
                "from": current.version,
                "to": updated.version,
                "paths": [str(target) for target in targets],
            }
        )
    else:
        written = ", ".join(target.name for target in targets)
        print(f"bump: {updated.identifier} {current.version} -> {updated.version} ({written})")
    return 0


def _telemetry_cmd(args: argparse.Namespace) -> int:
    log = EventLog(SETTINGS)
    if args.clear:
        log.clear()
        print("telemetry: cleared")
        return 0
    summary = log.summary()
    if args.json:
        _print_json(summary)
    else:
        print(f"telemetry: {summary['total']} event(s)")
        for name, count in sorted(summary["by_event"].items()):
            print(f"  {name}: {count}")
        for identifier, counts in summary["by_identifier"].items():
            print(f"  {identifier}: " + ", ".join(f"{event}={count}" for event, count in sorted(counts.items())))
    return 0


def _instrumented(name: str, handler: Callable[[argparse.Namespace], int]) -> Callable[[argparse.Namespace], int]:
    def run(args: argparse.Namespace) -> int:
        log = EventLog(SETTINGS)
        identifier = getattr(args, "token", None) or None
        log.emit(cli_event(name), identifier=identifier, status="start", component="cli")
        start = time.perf_counter()
        try:
            exit_code = handler(args)
        except IntegrityError as exc:
            return _fail(log, name, identifier, start, exc, "integrity")
        except CaskforgeError as exc:
            return _fail(log, name, identifier, start, exc, "error")
        duration = (time.perf_counter() - start) * 1000
        log.emit(
            cli_event(name),
            identifier=identifier,
            status="success" if exit_code == 0 else "error",
            component="cli",
            payload={"exit_code": exit_code},
            duration_ms=duration,
        )
        return exit_code

    return run


def _fail(log: EventLog, name: str, identifier: str | None, start: float, exc: CaskforgeError, status: str) -> int:
    duration = (time.perf_counter() - start) * 1000
    log.emit(
        cli_event(name),
        identifier=identifier,
        status=status,
        level="error",
        component="cli",
        payload={"error": str(exc)},
        duration_ms=duration,
    )
    print(f"caskforge {name}: {exc}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="caskforge",
        description="Validate, render and plan Homebrew-style cask descriptors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_OVERVIEW,
    )
    parser.add_argument("--version", action="version", version=f"caskforge {__version__}")
    parser.add_argument("--casks-dir", help="Directory holding descriptors (default: ./Casks or $CASKFORGE_CASKS_DIR)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add(name: str, handler: Callable[[argparse.Namespace], int], help_text: str, *, token: bool = True, json_flag: bool = True) -> argparse.ArgumentParser:
        command = sub.add_parser(name, help=help_text)
        if token:
            command.add_argument("token", help="Descriptor identifier")
        if json_flag:
            command.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
        command.set_defaults(func=_instrumented(name, handler))
        return command

    add("list", _list_cmd, "List known descriptors", token=False)
    add("show", _show_cmd, "Show one descriptor")

    lint_cmd = add("lint", _lint_cmd, "Validate descriptors against the schema and templates", token=False)
    lint_cmd.add_argument("token", nargs="?", help="Only lint this descriptor")
    lint_cmd.add_argument("--appdir", help="Installation root used to resolve postflight arguments")

    add("url", _url_cmd, "Print the resolved download URL", json_flag=False)

    verify_cmd = add("verify", _verify_cmd, "Check an artifact against the descriptor sha256")
    source = verify_cmd.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Local artifact to hash")
    source.add_argument("--url", action="store_true", help="Download the resolved URL and hash it")

    install_cmd = add("install-plan", _install_plan_cmd, "Print the install plan")
    install_cmd.add_argument("--appdir", help="Installation root (default: /Applications or $CASKFORGE_APPDIR)")

    uninstall_cmd = add("uninstall-plan", _uninstall_plan_cmd, "Print the uninstall plan")
    uninstall_cmd.add_argument("--zap", action="store_true", help="Also remove user data, caches and preferences")
    uninstall_cmd.add_argument("--appdir", help="Installation root (default: /Applications or $CASKFORGE_APPDIR)")
    uninstall_cmd.add_argument("--home", help="Home directory used to expand '~' (default: current user)")
    uninstall_cmd.add_argument("--check", action="store_true", help="Warn about targets that are already absent")

    livecheck_cmd = add("livecheck", _livecheck_cmd, "Look up the latest upstream versions", token=False)
    livecheck_cmd.add_argument("tokens", nargs="*", help="Descriptor identifiers (default: all)")
    livecheck_cmd.add_argument("--force", action="store_true", help="Ignore cached results")

    add("render", _render_cmd, "Render a descriptor as cask DSL", json_flag=False)

    bump_cmd = add("bump", _bump_cmd, "Write the next revision of a descriptor")
    bump_cmd.add_argument("--version", dest="version", required=True, help="New upstream version")
    bump_cmd.add_argument("--sha256", required=True, help="Checksum of the new version's artifact")

    telemetry_cmd = add("telemetry", _telemetry_cmd, "Summarise recorded events", token=False)
    telemetry_cmd.add_argument("--clear", action="store_true", help="Delete the event log")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
