"""Minimal go.mod parser.

Only the parts needed to derive lifecycle metadata are modelled: the module
declaration with the comments attached to it, ``require`` lines and
``retract`` directives. Comment attachment follows go.mod conventions:

- a run of ``//`` lines directly above a declaration (no blank line in
  between) is *before* that declaration;
- a ``//`` comment at the end of the declaration's own line is its *suffix*.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import versions
from .errors import ManifestSyntaxError

_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|`[^`]*`|=>|[\[\](),]|[^\s\[\](),]+')

_SKIPPED_VERBS = {"exclude", "replace", "toolchain", "godebug", "tool", "ignore"}


@dataclass
class Comment:
    token: str
    line: int

    @property
    def text(self) -> str:
        """Comment text with the ``//`` marker and surrounding blanks removed."""
        text = self.token
        if text.startswith("//"):
            text = text[2:]
        return text.strip()


@dataclass
class Comments:
    before: List[Comment] = field(default_factory=list)
    suffix: List[Comment] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.before or self.suffix)


@dataclass
class ModuleDecl:
    path: str
    line: int
    comments: Comments = field(default_factory=Comments)


@dataclass
class Require:
    path: str
    version: str
    indirect: bool
    line: int


@dataclass
class Retract:
    """An inclusive range of retracted versions."""

    low: str
    high: str
    rationale: str
    line: int


@dataclass
class ModFile:
    module: Optional[ModuleDecl] = None
    go_version: str = ""
    requires: List[Require] = field(default_factory=list)
    retracts: List[Retract] = field(default_factory=list)


def parse_modfile(data, filename: str = "go.mod") -> ModFile:
    """Parse go.mod *data* (``bytes`` or ``str``).

    Raises:
        ManifestSyntaxError: on any structural problem, with the line number.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ManifestSyntaxError(filename, 0, f"not valid UTF-8: {exc}") from exc
    return _Parser(filename).parse(data)


class _Parser:
    def __init__(self, filename: str) -> None:
        self.filename = filename
        self.mod = ModFile()

    def error(self, line: int, message: str) -> ManifestSyntaxError:
        return ManifestSyntaxError(self.filename, line, message)

    def parse(self, text: str) -> ModFile:
        pending: List[Comment] = []
        block_verb: Optional[str] = None
        block_comments = Comments()
        block_line = 0

        for lineno, raw in enumerate(text.splitlines(), 1):
            code, suffix = _split_comment(raw)
            code = code.strip()
            suffix_comments = [Comment(suffix, lineno)] if suffix else []

            if not code:
                if suffix_comments:
                    pending.extend(suffix_comments)
                else:
                    pending = []
                continue

            tokens = _TOKEN_RE.findall(code)
            comments = Comments(before=pending, suffix=suffix_comments)
            pending = []

            if block_verb is not None:
                if tokens == [")"]:
                    block_verb = None
                    continue
                self.directive(block_verb, tokens, comments, lineno, block_comments)
                continue

            if len(tokens) == 2 and tokens[1] == "(":
                block_verb = tokens[0]
                block_comments = comments
                block_line = lineno
                self.check_verb(block_verb, lineno)
                continue

            self.directive(tokens[0], tokens[1:], comments, lineno, None)

        if block_verb is not None:
            raise self.error(block_line, f"unterminated {block_verb} block")
        return self.mod

    def check_verb(self, verb: str, lineno: int) -> None:
        if verb not in {"module", "go", "require", "retract"} | _SKIPPED_VERBS:
            raise self.error(lineno, f"unknown directive: {verb}")

    def directive(
        self,
        verb: str,
        args: List[str],
        comments: Comments,
        lineno: int,
        block_comments: Optional[Comments],
    ) -> None:
        self.check_verb(verb, lineno)
        if verb == "module":
            self.module(args, comments, lineno)
        elif verb == "go":
            if len(args) != 1:
                raise self.error(lineno, "usage: go 1.23")
            self.mod.go_version = args[0]
        elif verb == "require":
            self.require(args, comments, lineno)
        elif verb == "retract":
            self.retract(args, comments, lineno, block_comments)

    def module(self, args: List[str], comments: Comments, lineno: int) -> None:
        if self.mod.module is not None:
            raise self.error(lineno, f"repeated module statement (first on line {self.mod.module.line})")
        if len(args) != 1:
            raise self.error(lineno, "usage: module module/path")
        path = _unquote(args[0])
        if not path:
            raise self.error(lineno, "empty module path")
        self.mod.module = ModuleDecl(path=path, line=lineno, comments=comments)

    def require(self, args: List[str], comments: Comments, lineno: int) -> None:
        if len(args) != 2:
            raise self.error(lineno, "usage: require module/path v1.2.3")
        indirect = any(c.text == "indirect" for c in comments.suffix)
        self.mod.requires.append(Require(_unquote(args[0]), args[1], indirect, lineno))

    def retract(
        self,
        args: List[str],
        comments: Comments,
        lineno: int,
        block_comments: Optional[Comments],
    ) -> None:
        low, high = self.version_interval(args, lineno)
        for v in (low, high):
            if not versions.is_valid(v):
                raise self.error(lineno, f"invalid retracted version {v!r}")
        if versions.compare(low, high) > 0:
            raise self.error(lineno, f"version interval [{low}, {high}] has low > high")

        if not comments and block_comments is not None:
            comments = block_comments
        rationale = "\n".join(c.text for c in comments.before + comments.suffix)
        self.mod.retracts.append(Retract(low=low, high=high, rationale=rationale, line=lineno))

    def version_interval(self, args: List[str], lineno: int) -> Tuple[str, str]:
        if len(args) == 1 and args[0] not in {"[", "]", "(", ")", ","}:
            v = _unquote(args[0])
            return v, v
        if len(args) == 5 and args[0] == "[" and args[2] == "," and args[4] == "]":
            return _unquote(args[1]), _unquote(args[3])
        raise self.error(lineno, "usage: retract v1.2.3 or retract [v1.0.0, v1.2.3]")


def _split_comment(line: str) -> Tuple[str, str]:
    """Split *line* into code and a trailing ``//`` comment outside quotes."""
    quote = ""
    i = 0
    while i < len(line):
        ch = line[i]
        if quote:
            if ch == "\\" and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in "\"`":
            quote = ch
        elif line.startswith("//", i):
            return line[:i], line[i:].rstrip()
        i += 1
    return line, ""


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"`":
        body = token[1:-1]
        if token[0] == '"':
            body = re.sub(r"\\(.)", r"\1", body)
        return body
    return token
