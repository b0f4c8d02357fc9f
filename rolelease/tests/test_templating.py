import pytest

from rolelease.execution.errors import TemplatingError
from rolelease.templating.statement_template import (
    StatementTemplate,
    render_statements,
    split_statements,
    substitute,
)


def test_split_drops_empty_segments_and_preserves_order() -> None:
    assert split_statements("A; ; B;;C") == ["A", "B", "C"]


def test_split_trims_whitespace_and_newlines() -> None:
    script = """
        CREATE ROLE "{{name}}";

        GRANT SELECT ON ALL TABLES IN SCHEMA public TO "{{name}}";
    """
    assert split_statements(script) == [
        'CREATE ROLE "{{name}}"',
        'GRANT SELECT ON ALL TABLES IN SCHEMA public TO "{{name}}"',
    ]


def test_split_of_blank_script_is_empty() -> None:
    assert split_statements("  ;  ;\n") == []


def test_render_replaces_every_token_exactly_once() -> None:
    script = "CREATE ROLE {{name}} WITH PASSWORD '{{password}}' VALID UNTIL '{{expiration}}';"
    rendered = render_statements(
        script,
        {"name": "alice", "password": "p@ss", "expiration": "2024-01-01T00:00:00Z"},
    )

    assert rendered == ["CREATE ROLE alice WITH PASSWORD 'p@ss' VALID UNTIL '2024-01-01T00:00:00Z'"]
    assert "{{" not in rendered[0]
    assert rendered[0].count("alice") == 1
    assert rendered[0].count("p@ss") == 1


def test_render_replaces_repeated_tokens() -> None:
    rendered = render_statements(
        'CREATE ROLE "{{name}}"; GRANT app_reader TO "{{name}}"',
        {"name": "bob"},
    )
    assert rendered == ['CREATE ROLE "bob"', 'GRANT app_reader TO "bob"']


def test_unknown_tokens_are_left_verbatim() -> None:
    rendered = render_statements('CREATE ROLE "{{name}}" IN ROLE {{group}}', {"name": "bob"})
    assert rendered == ['CREATE ROLE "bob" IN ROLE {{group}}']


def test_substitute_ignores_tokens_without_binding() -> None:
    assert substitute("{{name}} {{other}}", {"name": "x"}) == "x {{other}}"


def test_missing_mandatory_name_token_is_rejected() -> None:
    with pytest.raises(TemplatingError) as excinfo:
        render_statements("CREATE ROLE fixed_role", {"name": "alice"})
    assert "{{name}}" in str(excinfo.value)


def test_recognized_but_unbound_token_is_left_verbatim() -> None:
    template = StatementTemplate("ALTER ROLE {{name}} PASSWORD '{{password}}'")
    assert template.render({"name": "alice"}) == ["ALTER ROLE alice PASSWORD '{{password}}'"]
    assert template.render({"name": "alice", "password": None}) == ["ALTER ROLE alice PASSWORD '{{password}}'"]


def test_tokens_reports_only_recognized_names() -> None:
    template = StatementTemplate("{{name}} {{password}} {{unknown}}")
    assert template.tokens() == {"name", "password"}


def test_semicolon_inside_password_does_not_split_statement() -> None:
    rendered = render_statements(
        "CREATE ROLE {{name}} PASSWORD '{{password}}'",
        {"name": "carol", "password": "a;b"},
    )
    assert rendered == ["CREATE ROLE carol PASSWORD 'a;b'"]


def test_substituted_values_are_not_rescanned() -> None:
    rendered = render_statements(
        "CREATE ROLE {{name}} PASSWORD '{{password}}' VALID UNTIL '{{expiration}}'",
        {"name": "dave", "password": "x{{expiration}}{{name}}", "expiration": "2030-01-01"},
    )
    assert rendered == ["CREATE ROLE dave PASSWORD 'x{{expiration}}{{name}}' VALID UNTIL '2030-01-01'"]
