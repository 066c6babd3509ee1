import pytest

from tutorlab.config import Settings


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgresql://u:p@db/lab", "postgresql+asyncpg://u:p@db/lab"),
        ("postgres://u:p@db/lab", "postgresql+asyncpg://u:p@db/lab"),
        ("sqlite+aiosqlite:///./lab.db", "sqlite+aiosqlite:///./lab.db"),
    ],
)
def test_database_url_gets_async_driver(raw, expected):
    assert Settings(DATABASE_URL=raw, _env_file=None).database_url == expected


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BATCH_MAX_CONCURRENT", "4")
    monkeypatch.setenv("KNOWUNITY_API_KEY", "secret")

    config = Settings(_env_file=None)

    assert config.BATCH_MAX_CONCURRENT == 4
    assert config.KNOWUNITY_API_KEY == "secret"
