"""
Translate Handlebars-flavoured template source into Jinja2 source.

Form descriptors write their conditions and value templates in the mustache
dialect used by the form authoring tools:

    {{country}}
    {{not (or (eq country "US") (eq country "CA"))}}
    {{gte addresses.length 5}}
    {{#each addresses}}{{@index}}:{{city}}{{#unless @last}},{{/unless}}{{/each}}

The translator turns that into an equivalent Jinja2 template which is then
rendered in a sandboxed environment:

    {{ hb_not(hb_or(hb_eq(country, "US"), hb_eq(country, "CA"))) }}

Paths become subscript chains (`addresses["length"]`) so lookups never hit
Python attributes of dicts or lists. Inside {{#each}} bodies, bare paths
resolve against the current item and @index/@first/@last map to Jinja2's loop
variables; `../` walks back out one scope.
"""

import json
import re
from dataclasses import dataclass, field

from .helpers import HELPER_PREFIX, HELPERS

MUSTACHE_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_TOKEN_PATTERN = re.compile(
    r"""\s*(?:
        (?P<lparen>\() |
        (?P<rparen>\)) |
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*') |
        (?P<number>-?\d+(?:\.\d+)?(?=[\s()]|$)) |
        (?P<word>[^\s()"']+)
    )""",
    re.VERBOSE,
)

# Text containing any of these must be protected from the Jinja2 lexer
_JINJA_DELIMITERS = ("{%", "%}", "{#", "#}", "{{", "}}")

CONTEXT_VAR = "_ctx"


class TemplateTranslationError(ValueError):
    """Template source is malformed and cannot be translated."""


@dataclass
class _Scope:
    """An {{#each}} iteration scope."""

    var: str
    active: bool = True  # False inside the {{else}} branch


@dataclass
class _Frame:
    """Open block helper awaiting its closing tag."""

    helper: str
    scope: _Scope | None = None


@dataclass
class _State:
    frames: list[_Frame] = field(default_factory=list)
    scopes: list[_Scope] = field(default_factory=list)
    counter: int = 0

    def active_scopes(self) -> list[_Scope]:
        return [scope for scope in self.scopes if scope.active]


def tokenize(expression: str) -> list[tuple[str, str]]:
    """Split a mustache expression into (kind, text) tokens."""
    tokens: list[tuple[str, str]] = []
    position = 0
    stripped = expression.strip()
    while position < len(stripped):
        match = _TOKEN_PATTERN.match(stripped, position)
        if match is None or match.end() == position:
            raise TemplateTranslationError(
                f"Unexpected character {stripped[position]!r} in expression {expression!r}"
            )
        kind = match.lastgroup
        assert kind is not None
        tokens.append((kind, match.group(kind)))
        position = match.end()
        # Skip trailing whitespace so the loop terminates on it
        while position < len(stripped) and stripped[position].isspace():
            position += 1
    return tokens


class _ExpressionParser:
    """Recursive-descent parser from mustache tokens to a Jinja2 expression."""

    def __init__(self, tokens: list[tuple[str, str]], state: _State, source: str):
        self.tokens = tokens
        self.position = 0
        self.state = state
        self.source = source

    def parse_mustache(self) -> str:
        """Top-level: either a helper call without parentheses or a single term."""
        if not self.tokens:
            raise TemplateTranslationError("Empty expression '{{}}'")

        kind, text = self.tokens[0]
        if kind == "word" and text in HELPERS:
            self.position = 1
            args = self._parse_args(closing=False)
            return self._call(text, args)

        result = self._parse_term()
        if self.position != len(self.tokens):
            raise TemplateTranslationError(
                f"Unknown helper {text!r} in expression {self.source!r}"
            )
        return result

    def _parse_args(self, closing: bool) -> list[str]:
        args: list[str] = []
        while self.position < len(self.tokens):
            kind, _ = self.tokens[self.position]
            if kind == "rparen":
                if closing:
                    return args
                raise TemplateTranslationError(f"Unbalanced ')' in expression {self.source!r}")
            args.append(self._parse_term())
        if closing:
            raise TemplateTranslationError(f"Missing ')' in expression {self.source!r}")
        return args

    def _parse_term(self) -> str:
        if self.position >= len(self.tokens):
            raise TemplateTranslationError(f"Unexpected end of expression {self.source!r}")

        kind, text = self.tokens[self.position]
        self.position += 1

        if kind == "lparen":
            if self.position >= len(self.tokens):
                raise TemplateTranslationError(f"Missing helper name in {self.source!r}")
            name_kind, name = self.tokens[self.position]
            if name_kind != "word" or name not in HELPERS:
                raise TemplateTranslationError(
                    f"Unknown helper {name!r} in sub-expression of {self.source!r}"
                )
            self.position += 1
            args = self._parse_args(closing=True)
            self.position += 1  # consume ')'
            return self._call(name, args)

        if kind == "rparen":
            raise TemplateTranslationError(f"Unbalanced ')' in expression {self.source!r}")
        if kind == "string":
            return json.dumps(_unquote(text))
        if kind == "number":
            return text
        return translate_path(text, self.state)

    @staticmethod
    def _call(name: str, args: list[str]) -> str:
        return f"{HELPER_PREFIX}{name}({', '.join(args)})"


def _unquote(literal: str) -> str:
    quote = literal[0]
    body = literal[1:-1]
    return body.replace(f"\\{quote}", quote).replace("\\\\", "\\")


def _subscripts(segments: list[str]) -> str:
    parts = []
    for segment in segments:
        if segment.isdigit():
            parts.append(f"[{int(segment)}]")
        else:
            parts.append(f"[{json.dumps(segment)}]")
    return "".join(parts)


def translate_path(path: str, state: _State) -> str:
    """
    Translate a path token (`a.b.0`, `this.x`, `../y`, `@index`) to Jinja2.

    Literals true/false/null/undefined are handled here as well because they
    are lexically indistinguishable from paths.
    """
    if path == "true":
        return "true"
    if path == "false":
        return "false"
    if path in ("null", "undefined"):
        return "none"
    if "=" in path:
        raise TemplateTranslationError(f"Hash arguments are not supported: {path!r}")

    scopes = state.active_scopes()
    depth = 0
    while path.startswith("../"):
        depth += 1
        path = path[3:]
    if path.startswith("./"):
        path = path[2:]
    if depth > len(scopes):
        raise TemplateTranslationError(f"Path {'../' * depth + path!r} walks above the root scope")

    scope = scopes[len(scopes) - 1 - depth] if depth < len(scopes) else None

    if path.startswith("@"):
        binding, _, rest = path.partition(".")
        if scope is not None and binding in ("@index", "@first", "@last"):
            loop_attr = {"@index": "index0", "@first": "first", "@last": "last"}[binding]
            base = f"{scope.var}_loop.{loop_attr}"
        else:
            # Outside {{#each}} loop bindings come from the evaluation context
            base = f"{CONTEXT_VAR}[{json.dumps(binding)}]"
        return base + (_subscripts(rest.split(".")) if rest else "")

    segments = [segment for segment in path.split(".") if segment]
    if not segments:
        raise TemplateTranslationError(f"Empty path {path!r}")

    if segments[0] == "this":
        segments = segments[1:]
        base = scope.var if scope is not None else CONTEXT_VAR
        return base + _subscripts(segments)

    if scope is not None:
        return scope.var + _subscripts(segments)

    # Roots always go through the context map so Jinja2 globals never leak in
    return CONTEXT_VAR + _subscripts(segments)


def _protect_text(text: str) -> str:
    if any(delimiter in text for delimiter in _JINJA_DELIMITERS):
        return "{% raw %}" + text + "{% endraw %}"
    return text


def _parse_expression(expression: str, state: _State) -> str:
    return _ExpressionParser(tokenize(expression), state, expression).parse_mustache()


def _open_block(content: str, state: _State) -> str:
    helper, _, argument = content[1:].partition(" ")
    argument = argument.strip()
    if helper in ("if", "unless"):
        if not argument:
            raise TemplateTranslationError(f"{{{{#{helper}}}}} requires an expression")
        condition = f"{HELPER_PREFIX}truthy({_parse_expression(argument, state)})"
        state.frames.append(_Frame(helper))
        if helper == "unless":
            return f"{{% if not {condition} %}}"
        return f"{{% if {condition} %}}"

    if helper == "each":
        if not argument:
            raise TemplateTranslationError("{{#each}} requires an expression")
        iterable = _parse_expression(argument, state)
        state.counter += 1
        scope = _Scope(var=f"_this{state.counter}")
        state.frames.append(_Frame(helper, scope))
        state.scopes.append(scope)
        return (
            f"{{% for {scope.var} in {HELPER_PREFIX}iter({iterable}) %}}"
            f"{{% set {scope.var}_loop = loop %}}"
        )

    raise TemplateTranslationError(f"Unknown block helper '#{helper}'")


def _close_block(content: str, state: _State) -> str:
    helper = content[1:].strip()
    if not state.frames:
        raise TemplateTranslationError(f"Unexpected closing tag {{{{/{helper}}}}}")
    frame = state.frames.pop()
    if frame.helper != helper:
        raise TemplateTranslationError(
            f"Closing tag {{{{/{helper}}}}} does not match open {{{{#{frame.helper}}}}}"
        )
    if frame.scope is not None:
        state.scopes.remove(frame.scope)
        return "{% endfor %}"
    return "{% endif %}"


def _else_branch(state: _State) -> str:
    if not state.frames:
        raise TemplateTranslationError("{{else}} outside of a block helper")
    frame = state.frames[-1]
    if frame.scope is not None:
        # The else body of {{#each}} runs in the enclosing scope
        frame.scope.active = False
    return "{% else %}"


def translate(source: str) -> str:
    """
    Translate normalised template source into Jinja2 source.

    Raises:
        TemplateTranslationError: If the source is malformed (unknown helper,
            unbalanced parentheses or block tags, unsupported syntax)
    """
    state = _State()
    output: list[str] = []
    position = 0

    for match in MUSTACHE_PATTERN.finditer(source):
        output.append(_protect_text(source[position : match.start()]))
        position = match.end()

        content = match.group(1).strip()
        if content.startswith("#"):
            output.append(_open_block(content, state))
        elif content.startswith("/"):
            output.append(_close_block(content, state))
        elif content == "else":
            output.append(_else_branch(state))
        elif content.startswith("!"):
            continue
        else:
            output.append("{{ " + _parse_expression(content, state) + " }}")

    output.append(_protect_text(source[position:]))

    if state.frames:
        raise TemplateTranslationError(f"Unclosed block helper '#{state.frames[-1].helper}'")

    return "".join(output)


def translate_expression(expression: str) -> str:
    """Translate the body of a single mustache (without braces) to a Jinja2 expression."""
    return _parse_expression(expression, _State())
