"""
Template substitution for ``${{ scope.key }}`` placeholders.

A Replacer rewrites literal tokens in a single left-to-right pass:
- Matches never overlap; the longest token wins at a given position
- Text produced by a replacement is never scanned again
- Tokens with no entry in the mapping are left verbatim

Two scopes use this module and are never mixed:
- range scope: range.key / range.value, applied when subpackages are replicated
- step scope: inputs.*, targets.*, package.*, context.*, build.*, host.*,
  applied when a step's command runs
"""

import re
from typing import Mapping


def placeholder_tokens(name: str) -> tuple[str, str]:
    """Return the compact and spaced token forms for a variable name."""
    return "${{" + name + "}}", "${{ " + name + " }}"


class Replacer:
    """
    Token replacer compiled from a flat token -> text mapping.

    Usage:
        replacer = Replacer.from_variables({"range.key": "a"})
        replacer.replace("lib${{range.key}}")  # -> "liba"
    """

    def __init__(self, replacements: Mapping[str, str]):
        self._replacements = {token: str(value) for token, value in replacements.items() if token}
        if self._replacements:
            tokens = sorted(self._replacements, key=len, reverse=True)
            self._pattern: re.Pattern | None = re.compile("|".join(re.escape(t) for t in tokens))
        else:
            self._pattern = None

    @classmethod
    def from_variables(cls, variables: Mapping[str, str]) -> "Replacer":
        """
        Build a replacer from dotted variable names.

        Each variable ``inputs.prefix`` is registered as both
        ``${{inputs.prefix}}`` and ``${{ inputs.prefix }}``.
        """
        replacements: dict[str, str] = {}
        for name, value in variables.items():
            for token in placeholder_tokens(name):
                replacements[token] = value
        return cls(replacements)

    @property
    def replacements(self) -> dict[str, str]:
        return dict(self._replacements)

    def replace(self, text: str) -> str:
        if not text or self._pattern is None:
            return text
        return self._pattern.sub(lambda m: self._replacements[m.group(0)], text)
