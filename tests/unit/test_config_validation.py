import pytest

from fednode.config import get_settings, validate_settings_for_env


def _base_prod_env() -> dict[str, str]:
    return {
        "APP_ENV": "prod",
        "APP_DB": "/srv/fednode/ledger.db",
        "NODE_IDENTITY": "O=Carrier,L=Rotterdam,C=NL",
        "MESSAGE_ENDPOINT_URL": "https://gateway.internal/api/message",
        "MESSAGE_ENDPOINT_API_KEY": "gateway-secret",
        "INBOUND_API_KEY": "inbound-secret",
        "TRIPLESTORE_URL": "http://graphdb.internal:7200",
        "TRIPLESTORE_REPOSITORY": "federated",
    }


def _validate(monkeypatch: pytest.MonkeyPatch, env: dict[str, str]) -> None:
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    try:
        validate_settings_for_env(get_settings())
    finally:
        get_settings.cache_clear()


def test_validate_settings_prod_missing_required(monkeypatch: pytest.MonkeyPatch) -> None:
    env = _base_prod_env()
    env["MESSAGE_ENDPOINT_API_KEY"] = ""
    with pytest.raises(ValueError, match="MESSAGE_ENDPOINT_API_KEY"):
        _validate(monkeypatch, env)


def test_validate_settings_prod_accepts_full_required_set(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _validate(monkeypatch, _base_prod_env())


def test_validate_settings_prod_rejects_dev_inbound_key(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    env = _base_prod_env()
    env["INBOUND_API_KEY"] = "dev-inbound-key"
    with pytest.raises(ValueError, match="INBOUND_API_KEY"):
        _validate(monkeypatch, env)


def test_validate_settings_prod_rejects_malformed_identity(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    env = _base_prod_env()
    env["NODE_IDENTITY"] = "Carrier Rotterdam"
    with pytest.raises(ValueError, match="NODE_IDENTITY"):
        _validate(monkeypatch, env)


def test_validate_settings_prod_requires_absolute_db(monkeypatch: pytest.MonkeyPatch) -> None:
    env = _base_prod_env()
    env["APP_DB"] = "ledger.db"
    with pytest.raises(ValueError, match="APP_DB"):
        _validate(monkeypatch, env)


def test_validate_settings_dev_skips_strict_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    _validate(monkeypatch, {"APP_ENV": "dev", "MESSAGE_ENDPOINT_API_KEY": ""})
