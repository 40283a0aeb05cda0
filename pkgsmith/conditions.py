"""
Guard expression evaluation for step ``if`` fields.

Guards are substituted against the step scope before evaluation, so by the
time they reach this module they contain only literals:

    x86_64 == 'x86_64'
    'go' != '' && 1 == 1
    (a == b) || true

Supported syntax:
- ``==`` and ``!=`` comparisons of literals
- ``&&`` and ``||`` with the usual precedence, and parentheses
- Bare literals, evaluated for truthiness ("", "false", "0", "no" are false)

Literals may be single- or double-quoted. Unquoted literals are compared as
their stripped text, so ``x86_64 == 'x86_64'`` is true.
"""

import re

from pkgsmith.errors import ConfigError


_TOKEN_PATTERN = re.compile(
    r"""\s*(?:
        (?P<op>&&|\|\||==|!=|\(|\))
      | (?P<quoted>'[^']*'|"[^"]*")
      | (?P<word>[^\s()'"=!&|]+(?:[!=&|][^\s()'"=!&|]+)*)
    )""",
    re.VERBOSE,
)

_FALSE_WORDS = {"", "false", "0", "no", "none", "null"}


def _tokenize(expression: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(expression):
        if expression[pos:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(expression, pos)
        if not match or match.end() == pos:
            raise ConfigError(f"Cannot parse condition at offset {pos}: {expression!r}")
        if match.group("op"):
            tokens.append(("op", match.group("op")))
        elif match.group("quoted"):
            tokens.append(("lit", match.group("quoted")[1:-1]))
        else:
            tokens.append(("lit", match.group("word")))
        pos = match.end()
    return tokens


def _truthy(value: str) -> bool:
    return value.strip().lower() not in _FALSE_WORDS


class _Parser:
    """Recursive-descent parser: or_expr := and_expr ('||' and_expr)*"""

    def __init__(self, tokens: list[tuple[str, str]], expression: str):
        self.tokens = tokens
        self.pos = 0
        self.expression = expression

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise ConfigError(f"Unexpected end of condition: {self.expression!r}")
        self.pos += 1
        return token

    def parse(self) -> bool:
        result = self._or()
        if self._peek() is not None:
            raise ConfigError(f"Unexpected token {self._peek()[1]!r} in condition: {self.expression!r}")
        return result

    def _or(self) -> bool:
        result = self._and()
        while self._peek() == ("op", "||"):
            self._take()
            rhs = self._and()
            result = result or rhs
        return result

    def _and(self) -> bool:
        result = self._comparison()
        while self._peek() == ("op", "&&"):
            self._take()
            rhs = self._comparison()
            result = result and rhs
        return result

    def _comparison(self) -> bool:
        token = self._peek()
        if token == ("op", "("):
            self._take()
            result = self._or()
            if self._take() != ("op", ")"):
                raise ConfigError(f"Unbalanced parentheses in condition: {self.expression!r}")
            return result

        # An unquoted placeholder that substituted to nothing leaves no left operand
        if token in (("op", "=="), ("op", "!=")):
            kind, left = "lit", ""
        else:
            kind, left = self._take()
        if kind != "lit":
            raise ConfigError(f"Expected a value but found {left!r} in condition: {self.expression!r}")

        op = self._peek()
        if op in (("op", "=="), ("op", "!=")):
            self._take()
            following = self._peek()
            if following is None or following in (("op", "&&"), ("op", "||"), ("op", ")")):
                kind, right = "lit", ""
            else:
                kind, right = self._take()
            if kind != "lit":
                raise ConfigError(f"Expected a value after {op[1]!r} in condition: {self.expression!r}")
            equal = left == right
            return equal if op[1] == "==" else not equal

        return _truthy(left)


def evaluate(expression: str) -> bool:
    """
    Evaluate a substituted guard expression.

    Args:
        expression: The guard, with all placeholders already substituted

    Returns:
        Boolean result of the guard

    Raises:
        ConfigError: If the expression cannot be parsed
    """
    if not expression.strip():
        return False
    return _Parser(_tokenize(expression), expression).parse()
