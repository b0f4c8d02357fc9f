from datetime import datetime, timezone
from typing import Any

import psycopg
import pytest

from rolelease.credentials import PostgreSQLCredentials
from rolelease.execution.errors import TransactionError

CREATE_SQL = """
CREATE ROLE "{{name}}" WITH LOGIN PASSWORD '{{password}}' VALID UNTIL '{{expiration}}';
"""


def _role_row(admin_connection: psycopg.Connection, name: str) -> Any:
    with admin_connection.cursor() as cur:
        cur.execute("SELECT rolname, rolcanlogin, rolvaliduntil FROM pg_roles WHERE rolname = %s", [name])
        return cur.fetchone()


# ==================================================
# Creation and Renewal
# ==================================================


def test_create_user_creates_login_role(
    engine: PostgreSQLCredentials,
    admin_connection: psycopg.Connection,
    role_name: str,
) -> None:
    expires = datetime(2031, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    engine.create_user(CREATE_SQL, role_name, "Sup3r;Secret", expires)

    row = _role_row(admin_connection, role_name)
    assert row is not None
    assert row[1] is True
    assert row[2] == expires


def test_failed_create_script_leaves_no_role(
    engine: PostgreSQLCredentials,
    admin_connection: psycopg.Connection,
    role_name: str,
) -> None:
    script = CREATE_SQL + 'GRANT role_that_does_not_exist TO "{{name}}";'

    with pytest.raises(TransactionError):
        engine.create_user(script, role_name, "pw", "2031-01-01 00:00:00+0000")

    assert _role_row(admin_connection, role_name) is None


def test_renew_user_moves_expiration(
    engine: PostgreSQLCredentials,
    admin_connection: psycopg.Connection,
    role_name: str,
) -> None:
    engine.create_user(CREATE_SQL, role_name, "pw", "2030-01-01 00:00:00+0000")

    engine.renew_user(role_name, datetime(2032, 2, 3, 4, 5, 6))

    assert _role_row(admin_connection, role_name)[2] == datetime(2032, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


# ==================================================
# Revocation
# ==================================================


def test_default_revoke_strips_grants_and_drops_role(
    engine: PostgreSQLCredentials,
    admin_connection: psycopg.Connection,
    role_name: str,
    scratch_schema: str,
) -> None:
    script = (
        CREATE_SQL
        + f'GRANT USAGE ON SCHEMA {scratch_schema} TO "{{{{name}}}}";'
        + f'GRANT SELECT (id, email) ON {scratch_schema}.accounts TO "{{{{name}}}}";'
        + 'GRANT SELECT ON ALL TABLES IN SCHEMA public TO "{{name}}";'
    )
    engine.create_user(script, role_name, "pw", "2031-01-01 00:00:00+0000")
    assert _role_row(admin_connection, role_name) is not None

    engine.default_revoke_user(role_name)

    assert _role_row(admin_connection, role_name) is None


def test_default_revoke_of_missing_role_is_a_no_op(engine: PostgreSQLCredentials, role_name: str) -> None:
    engine.default_revoke_user(role_name)
    engine.revoke_user(role_name, "")


def test_custom_revoke_runs_operator_script(
    engine: PostgreSQLCredentials,
    admin_connection: psycopg.Connection,
    role_name: str,
) -> None:
    engine.create_user(CREATE_SQL, role_name, "pw", "2031-01-01 00:00:00+0000")

    engine.revoke_user(role_name, 'DROP ROLE "{{name}}";')

    assert _role_row(admin_connection, role_name) is None


# ==================================================
# Connection
# ==================================================


def test_sessions_run_in_utc(engine: PostgreSQLCredentials) -> None:
    with engine.connection() as handle:
        with handle.session() as session:
            assert session.fetch_one("SHOW TimeZone") == ("UTC",)


def test_session_quotes_identifiers_and_literals(engine: PostgreSQLCredentials) -> None:
    with engine.connection() as handle:
        with handle.session() as session:
            assert session.quote_identifier('v-x"y') == '"v-x""y"'
            assert session.quote_literal("it's") == "'it''s'"


def test_reset_reconnects_with_same_url(engine: PostgreSQLCredentials) -> None:
    before = engine.connections.generation

    engine.reset(engine.connections.config)

    with engine.connection() as handle:
        assert handle.generation > before
        with handle.session() as session:
            assert session.fetch_one("SELECT 1") == (1,)
