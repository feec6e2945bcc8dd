"""
Tests for database settings and the connection pool

Settings tests run without a database; pool tests use testcontainers.
"""
import pytest

from ves_dw.warehouse.connection import DatabaseConnectionPool, DatabaseSettings


@pytest.fixture
def clean_db_env(monkeypatch):
    for name in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD", "DB_SCHEMA"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.unit
def test_settings_from_env(clean_db_env):
    """Test that DB_* variables populate the settings"""
    clean_db_env.setenv("DB_HOST", "warehouse.internal")
    clean_db_env.setenv("DB_PORT", "6543")
    clean_db_env.setenv("DB_NAME", "ves")
    clean_db_env.setenv("DB_USER", "loader")
    clean_db_env.setenv("DB_PASSWORD", "secret")
    clean_db_env.setenv("DB_SCHEMA", "staging_dw")

    settings = DatabaseSettings.from_env()

    assert settings.host == "warehouse.internal"
    assert settings.port == 6543
    assert settings.database == "ves"
    assert settings.user == "loader"
    assert settings.schema_name == "staging_dw"
    assert "dbname=ves" in settings.conninfo
    assert "port=6543" in settings.conninfo


@pytest.mark.unit
def test_settings_defaults(clean_db_env):
    clean_db_env.setenv("DB_PASSWORD", "secret")

    settings = DatabaseSettings.from_env()

    assert settings.host == "localhost"
    assert settings.port == 5432
    assert settings.schema_name == "warehouse"


@pytest.mark.unit
def test_settings_overrides_win_over_env(clean_db_env):
    """Test that explicit values (e.g. CLI flags) override the environment"""
    clean_db_env.setenv("DB_HOST", "from-env")
    clean_db_env.setenv("DB_PASSWORD", "env-secret")

    settings = DatabaseSettings.from_env(host="from-flag", port=None, password="flag-secret")

    assert settings.host == "from-flag"
    assert settings.port == 5432
    assert settings.password == "flag-secret"


@pytest.mark.unit
def test_settings_require_password(clean_db_env):
    with pytest.raises(ValueError) as exc_info:
        DatabaseSettings.from_env()

    assert "DB_PASSWORD" in str(exc_info.value)


@pytest.mark.unit
def test_pool_requires_open():
    """Test that using a pool before open() fails loudly"""
    pool = DatabaseConnectionPool(DatabaseSettings(password="secret"))

    with pytest.raises(RuntimeError) as exc_info:
        with pool.get_connection():
            pass

    assert "not open" in str(exc_info.value)


@pytest.mark.integration
def test_connection_pool_initialization(db_settings):
    """Test that connection pool initializes correctly"""
    settings = db_settings.model_copy(update={"min_size": 2, "max_size": 5})
    pool = DatabaseConnectionPool(settings)

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()
    assert pool._pool is None


@pytest.mark.integration
def test_get_connection(db_settings):
    """Test getting a connection from the pool"""
    with DatabaseConnectionPool(db_settings) as pool:
        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 as test")
                result = cur.fetchone()
                assert result["test"] == 1


@pytest.mark.integration
def test_execute_query_and_command(db_settings):
    """Test the query helpers against the operational tables"""
    with DatabaseConnectionPool(db_settings) as pool:
        rows = pool.execute_query(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s",
            (db_settings.schema_name, "etl_execution_log"),
        )
        assert rows == [{"table_name": "etl_execution_log"}]

        affected = pool.execute_command("SELECT 1")
        assert affected == 1


@pytest.mark.integration
def test_open_retries_then_fails():
    """Test that an unreachable database raises after all retries"""
    from psycopg import OperationalError

    settings = DatabaseSettings(host="127.0.0.1", port=1, password="x", timeout=1.0)
    pool = DatabaseConnectionPool(settings)

    with pytest.raises(OperationalError) as exc_info:
        pool.open(max_retries=2, retry_delay=0.0)

    assert "after 2 attempts" in str(exc_info.value)
    assert pool._pool is None
