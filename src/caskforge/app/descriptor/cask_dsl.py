"""Reader and writer for the Ruby cask DSL subset used by ``Casks/*.rb``."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, NamedTuple

from caskforge.domain import (
    CaskSyntaxError,
    LivecheckSpec,
    PackageDescriptor,
    SystemCommand,
    UninstallSpec,
)

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<STRING>"(?:[^"\\]|\\.)*")
  | (?P<REGEX>/(?:[^/\\\n]|\\.)+/[imx]*)
  | (?P<SYMBOL>:[A-Za-z_][A-Za-z0-9_?!]*)
  | (?P<LABEL>[A-Za-z_][A-Za-z0-9_]*:(?!:))
  | (?P<IDENT>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<PUNCT>[\[\](),])
  | (?P<COMMENT>\#[^\n]*)
  | (?P<NEWLINE>\n)
  | (?P<SKIP>[ \t\r]+)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\", "#": "#"}
_BLOCK_STANZAS = {"livecheck", "postflight"}
_POSTFLIGHT_INDENT = " " * len("    system_command ")


class Symbol(str):
    """A Ruby symbol literal such as ``:url``."""


class _Token(NamedTuple):
    kind: str
    value: str
    line: int


@dataclass
class _Statement:
    name: str
    line: int
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    block: bool = False
    children: List["_Statement"] = field(default_factory=list)


def _unescape(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", lambda match: _ESCAPES.get(match.group(1), match.group(1)), body)


def _escape(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _tokenize(text: str) -> Iterator[_Token]:
    line = 1
    for match in _TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup or "MISMATCH"
        value = match.group()
        if kind == "MISMATCH":
            raise CaskSyntaxError(f"unexpected character {value!r}", line=line)
        if kind not in {"SKIP", "COMMENT"}:
            yield _Token(kind, value, line)
        line += value.count("\n")


def _split_statements(tokens: Iterator[_Token]) -> Iterator[List[_Token]]:
    current: List[_Token] = []
    depth = 0
    for token in tokens:
        if token.kind == "NEWLINE":
            if current and depth == 0 and current[-1].value != ",":
                yield current
                current = []
            continue
        if token.kind == "PUNCT" and token.value in "[(":
            depth += 1
        elif token.kind == "PUNCT" and token.value in "])":
            depth -= 1
            if depth < 0:
                raise CaskSyntaxError(f"unbalanced '{token.value}'", line=token.line)
        current.append(token)
    if depth != 0:
        raise CaskSyntaxError("unterminated list or call", line=current[-1].line if current else None)
    if current:
        yield current


class _ArgParser:
    def __init__(self, tokens: List[_Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> _Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise CaskSyntaxError("unexpected end of statement", line=self._tokens[-1].line if self._tokens else None)
        self._pos += 1
        return token

    def parse(self, statement: _Statement) -> None:
        token = self._peek()
        while token is not None:
            if token.kind == "LABEL":
                self._pos += 1
                statement.kwargs[token.value[:-1]] = self._value()
            else:
                if statement.kwargs:
                    raise CaskSyntaxError("positional argument after keyword argument", line=token.line)
                statement.args.append(self._value())
            following = self._peek()
            if following is None:
                break
            if following.value != ",":
                raise CaskSyntaxError(f"expected ',' but found {following.value!r}", line=following.line)
            self._pos += 1
            token = self._peek()

    def _value(self) -> Any:
        token = self._next()
        if token.kind == "STRING":
            return _unescape(token.value)
        if token.kind == "SYMBOL":
            return Symbol(token.value[1:])
        if token.kind == "REGEX":
            return _ruby_regex(token.value)
        if token.kind == "IDENT" and token.value in {"true", "false"}:
            return token.value == "true"
        if token.kind == "PUNCT" and token.value == "(":
            value = self._value()
            closing = self._next()
            if closing.value != ")":
                raise CaskSyntaxError("expected ')'", line=closing.line)
            return value
        if token.kind == "PUNCT" and token.value == "[":
            items: List[Any] = []
            while True:
                nxt = self._peek()
                if nxt is not None and nxt.value == "]":
                    self._pos += 1
                    return items
                items.append(self._value())
                sep = self._next()
                if sep.value == "]":
                    return items
                if sep.value != ",":
                    raise CaskSyntaxError(f"expected ',' or ']' but found {sep.value!r}", line=sep.line)
        raise CaskSyntaxError(f"unsupported value {token.value!r}", line=token.line)


def _ruby_regex(literal: str) -> str:
    closing = literal.rindex("/")
    pattern = literal[1:closing].replace("\\/", "/")
    flags = literal[closing + 1 :]
    prefix = "".join(flag for flag in flags if flag in "imx")
    if prefix:
        # Ruby's /m is Python's DOTALL.
        prefix = prefix.replace("m", "s")
        return f"(?{prefix}){pattern}"
    return pattern


def _build_tree(text: str) -> List[_Statement]:
    root: List[_Statement] = []
    stack: List[_Statement] = []
    for tokens in _split_statements(_tokenize(text)):
        head = tokens[0]
        if head.kind != "IDENT":
            raise CaskSyntaxError(f"expected stanza name but found {head.value!r}", line=head.line)
        if head.value == "end":
            if len(tokens) != 1 or not stack:
                raise CaskSyntaxError("unexpected 'end'", line=head.line)
            stack.pop()
            continue
        statement = _Statement(name=head.value, line=head.line)
        body = tokens[1:]
        if body and body[-1].kind == "IDENT" and body[-1].value == "do":
            statement.block = True
            body = body[:-1]
        _ArgParser(body).parse(statement)
        (stack[-1].children if stack else root).append(statement)
        if statement.block:
            stack.append(statement)
    if stack:
        raise CaskSyntaxError(f"block '{stack[-1].name}' is missing 'end'", line=stack[-1].line)
    return root


def _single_string(statement: _Statement) -> str:
    if len(statement.args) != 1 or statement.kwargs or not isinstance(statement.args[0], str) or isinstance(statement.args[0], Symbol):
        raise CaskSyntaxError(f"'{statement.name}' expects a single string", line=statement.line)
    return statement.args[0]


def _string_list(value: Any, statement: _Statement, key: str) -> List[str]:
    items = [value] if isinstance(value, str) else value
    if not isinstance(items, list) or not all(isinstance(item, str) for item in items):
        raise CaskSyntaxError(f"'{statement.name} {key}:' expects a string or list of strings", line=statement.line)
    return list(items)


def _parse_livecheck(statement: _Statement) -> LivecheckSpec:
    values: Dict[str, str] = {}
    for child in statement.children:
        if child.name not in {"url", "strategy", "regex"} or child.block or child.kwargs or len(child.args) != 1:
            raise CaskSyntaxError(f"unsupported livecheck stanza '{child.name}'", line=child.line)
        if child.name in values:
            raise CaskSyntaxError(f"duplicate livecheck stanza '{child.name}'", line=child.line)
        value = child.args[0]
        if child.name == "strategy" and not isinstance(value, Symbol):
            raise CaskSyntaxError("livecheck strategy must be a symbol", line=child.line)
        values[child.name] = str(value)
    return LivecheckSpec(
        url=values.get("url", "url"),
        strategy=values.get("strategy", "github_latest"),
        regex=values.get("regex"),
    )


def _parse_postflight(statement: _Statement) -> List[SystemCommand]:
    commands: List[SystemCommand] = []
    for child in statement.children:
        if child.name != "system_command":
            raise CaskSyntaxError(f"unsupported postflight call '{child.name}'", line=child.line)
        unknown = set(child.kwargs) - {"args", "sudo"}
        if unknown:
            raise CaskSyntaxError(f"unsupported system_command option(s): {', '.join(sorted(unknown))}", line=child.line)
        command = _single_string(_Statement(child.name, child.line, args=child.args))
        args = _string_list(child.kwargs.get("args", []), child, "args")
        sudo = child.kwargs.get("sudo", False)
        if not isinstance(sudo, bool):
            raise CaskSyntaxError("system_command sudo must be true or false", line=child.line)
        commands.append(SystemCommand(command=command, args=tuple(args), sudo=sudo))
    return commands


def parse_cask(text: str) -> PackageDescriptor:
    """Parse cask DSL text into a descriptor."""

    tree = _build_tree(text)
    if len(tree) != 1 or tree[0].name != "cask" or not tree[0].block:
        raise CaskSyntaxError("expected a single 'cask \"<token>\" do ... end' block")
    cask = tree[0]
    token = _single_string(cask)

    fields: Dict[str, Any] = {}
    for stanza in cask.children:
        if stanza.name in fields:
            raise CaskSyntaxError(f"duplicate stanza '{stanza.name}'", line=stanza.line)
        if stanza.block and stanza.name not in _BLOCK_STANZAS:
            raise CaskSyntaxError(f"'{stanza.name}' does not take a block", line=stanza.line)
        if stanza.name in {"version", "sha256", "url", "name", "desc", "homepage", "app"}:
            fields[stanza.name] = _single_string(stanza)
        elif stanza.name == "auto_updates":
            if stanza.args != [True] and stanza.args != [False]:
                raise CaskSyntaxError("auto_updates expects true or false", line=stanza.line)
            fields[stanza.name] = stanza.args[0]
        elif stanza.name == "livecheck":
            fields[stanza.name] = _parse_livecheck(stanza)
        elif stanza.name == "postflight":
            fields[stanza.name] = _parse_postflight(stanza)
        elif stanza.name == "uninstall":
            if stanza.args or set(stanza.kwargs) != {"quit"}:
                raise CaskSyntaxError("uninstall supports only 'quit:'", line=stanza.line)
            fields[stanza.name] = UninstallSpec(quit=tuple(_string_list(stanza.kwargs["quit"], stanza, "quit")))
        elif stanza.name == "zap":
            if stanza.args or set(stanza.kwargs) != {"trash"}:
                raise CaskSyntaxError("zap supports only 'trash:'", line=stanza.line)
            fields[stanza.name] = _string_list(stanza.kwargs["trash"], stanza, "trash")
        else:
            raise CaskSyntaxError(f"unsupported stanza '{stanza.name}'", line=stanza.line)

    missing = [key for key in ("version", "sha256", "url", "name", "desc", "homepage", "app") if key not in fields]
    if missing:
        raise CaskSyntaxError(f"cask '{token}' is missing stanza(s): {', '.join(missing)}")

    return PackageDescriptor(
        identifier=token,
        version=fields["version"],
        checksum=fields["sha256"],
        download_url_template=fields["url"],
        display_name=fields["name"],
        description=fields["desc"],
        homepage=fields["homepage"],
        install_target=fields["app"],
        post_install_actions=tuple(fields.get("postflight", ())),
        uninstall_spec=fields.get("uninstall", UninstallSpec()),
        residual_paths=tuple(fields.get("zap", ())),
        livecheck=fields.get("livecheck"),
        auto_updates=fields.get("auto_updates", False),
    )


def _render_list(values: List[str], indent: str) -> str:
    if len(values) == 1:
        return _escape(values[0])
    lines = ["["] + [f"{indent}  {_escape(value)}," for value in values] + [f"{indent}]"]
    return "\n".join(lines)


def _render_regex(pattern: str) -> str:
    flags = ""
    match = re.match(r"^\(\?([imsx]+)\)", pattern)
    if match:
        flags = match.group(1).replace("s", "m")
        pattern = pattern[match.end() :]
    return "regex(/" + pattern.replace("/", "\\/") + "/" + flags + ")"


def render_cask(descriptor: PackageDescriptor) -> str:
    """Render a descriptor in the canonical cask DSL layout."""

    lines = [
        f"cask {_escape(descriptor.identifier)} do",
        f"  version {_escape(descriptor.version)}",
        f"  sha256 {_escape(descriptor.checksum)}",
        "",
        f"  url {_escape(descriptor.download_url_template)}",
        f"  name {_escape(descriptor.display_name)}",
        f"  desc {_escape(descriptor.description)}",
        f"  homepage {_escape(descriptor.homepage)}",
    ]
    if descriptor.livecheck is not None:
        livecheck = descriptor.livecheck
        url = f":{livecheck.url}" if livecheck.is_symbolic else _escape(livecheck.url)
        lines += ["", "  livecheck do", f"    url {url}", f"    strategy :{livecheck.strategy}"]
        if livecheck.regex:
            lines.append(f"    {_render_regex(livecheck.regex)}")
        lines.append("  end")
    if descriptor.auto_updates:
        lines += ["", "  auto_updates true"]
    lines += ["", f"  app {_escape(descriptor.install_target)}"]
    if descriptor.post_install_actions:
        lines += ["", "  postflight do"]
        for action in descriptor.post_install_actions:
            args = ", ".join(_escape(arg) for arg in action.args)
            lines += [
                f"    system_command {_escape(action.command)},",
                f"{_POSTFLIGHT_INDENT}args: [{args}],",
                f"{_POSTFLIGHT_INDENT}sudo: {'true' if action.sudo else 'false'}",
            ]
        lines.append("  end")
    if descriptor.uninstall_spec.quit:
        quit_ids = list(descriptor.uninstall_spec.quit)
        value = _escape(quit_ids[0]) if len(quit_ids) == 1 else "[" + ", ".join(_escape(item) for item in quit_ids) + "]"
        lines += ["", f"  uninstall quit: {value}"]
    if descriptor.residual_paths:
        lines += ["", f"  zap trash: {_render_list(list(descriptor.residual_paths), '  ')}"]
    lines.append("end")
    return "\n".join(lines) + "\n"


__all__ = ["Symbol", "parse_cask", "render_cask"]
