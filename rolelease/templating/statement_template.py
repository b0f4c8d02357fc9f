from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Mapping, Sequence

from rolelease.execution.errors import TemplatingError

# ==================================================
# Statement Templates
# ==================================================

STATEMENT_DELIMITER = ";"

NAME_TOKEN = "name"
PASSWORD_TOKEN = "password"
EXPIRATION_TOKEN = "expiration"

RECOGNIZED_TOKENS = frozenset({NAME_TOKEN, PASSWORD_TOKEN, EXPIRATION_TOKEN})

_TOKEN_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def placeholder(token: str) -> str:
    return "{{" + token + "}}"


def split_statements(script: str, delimiter: str = STATEMENT_DELIMITER) -> list[str]:
    """
    Splits a script into trimmed, non-empty statements, preserving order.
    """
    statements: list[str] = []
    for segment in script.split(delimiter):
        segment = segment.strip()
        if segment:
            statements.append(segment)
    return statements


def substitute(statement: str, values: Mapping[str, str]) -> str:
    """
    Replaces every `{{token}}` occurrence for each bound token.

    Tokens without a binding are left verbatim. Substituted values are never
    scanned again, so a password containing `{{name}}` stays as written.
    """

    def _replace(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else value

    return _TOKEN_PATTERN.sub(_replace, statement)


@dataclass(frozen=True)
class StatementTemplate:
    """
    A caller-authored multi-statement script with `{{token}}` placeholders.

    Values substituted here are trusted operator input. Identifiers built by
    the engine itself never go through this path; they are quoted by the
    driver instead.
    """

    script: str
    mandatory_tokens: frozenset[str] = field(default_factory=lambda: frozenset({NAME_TOKEN}))

    @property
    def statements(self) -> list[str]:
        return split_statements(self.script)

    def tokens(self) -> set[str]:
        """
        Recognized tokens that appear in the script.
        """
        return {token for token in _TOKEN_PATTERN.findall(self.script) if token in RECOGNIZED_TOKENS}

    def validate(self, values: Mapping[str, str | None]) -> None:
        """
        Rejects a script missing a mandatory token. Tokens without a value in
        `values` are allowed and render verbatim.
        """
        present = self.tokens()
        missing = sorted(self.mandatory_tokens - present)
        if missing:
            raise TemplatingError.from_message(
                "render",
                "statement template does not reference required token(s): "
                + ", ".join(placeholder(token) for token in missing),
            )

    def render(self, values: Mapping[str, str | None]) -> list[str]:
        """
        Validates the bindings and returns the ready-to-execute statements.
        """
        self.validate(values)
        bound = {token: value for token, value in values.items() if value is not None and token in RECOGNIZED_TOKENS}
        return [substitute(statement, bound) for statement in self.statements]


def render_statements(
    script: str,
    values: Mapping[str, str | None],
    *,
    mandatory_tokens: Sequence[str] = (NAME_TOKEN,),
) -> list[str]:
    return StatementTemplate(script, frozenset(mandatory_tokens)).render(values)
