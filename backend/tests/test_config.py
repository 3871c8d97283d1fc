# tests/test_config.py
from __future__ import annotations

import pytest

from storedesk.core.config import DEV_JWT_SECRET, Settings, _strip_asyncpg_unsupported_params


def make(**overrides) -> Settings:
    base = {"DATABASE_URL_ASYNC": "postgresql+asyncpg://u:p@localhost/db"}
    base.update(overrides)
    return Settings(_env_file=None, **base)


def test_strips_asyncpg_unsupported_query_params():
    url = "postgresql+asyncpg://u:p@host/db?sslmode=require&channel_binding=require&application_name=x"
    assert _strip_asyncpg_unsupported_params(url) == "postgresql+asyncpg://u:p@host/db?application_name=x"


def test_development_allows_dev_secret():
    s = make(ENVIRONMENT="development", JWT_SECRET=DEV_JWT_SECRET)
    assert s.is_production_like is False
    assert s.SESSION_TOKEN_EXPIRE_DAYS == 7


@pytest.mark.parametrize("secret", [DEV_JWT_SECRET, "short-secret"])
def test_production_requires_strong_secret(secret):
    with pytest.raises(ValueError):
        make(ENVIRONMENT="production", JWT_SECRET=secret)


def test_rejects_unknown_algorithm_and_format():
    with pytest.raises(ValueError):
        make(JWT_ALGORITHM="RS256")
    with pytest.raises(ValueError):
        make(LOG_FORMAT="xml")
