from rolelease.templating.statement_template import (
    EXPIRATION_TOKEN,
    NAME_TOKEN,
    PASSWORD_TOKEN,
    RECOGNIZED_TOKENS,
    STATEMENT_DELIMITER,
    StatementTemplate,
    render_statements,
    split_statements,
    substitute,
)

__all__ = [
    "EXPIRATION_TOKEN",
    "NAME_TOKEN",
    "PASSWORD_TOKEN",
    "RECOGNIZED_TOKENS",
    "STATEMENT_DELIMITER",
    "StatementTemplate",
    "render_statements",
    "split_statements",
    "substitute",
]
