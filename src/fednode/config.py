"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/fednode.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    # Identity of this node as seen by its peers.
    node_identity: str = Field(alias="NODE_IDENTITY", default="O=Local,L=Localhost,C=NL")

    # Outbound peer message endpoint (the gateway that routes to peers).
    message_endpoint_url: str = Field(
        alias="MESSAGE_ENDPOINT_URL", default="http://localhost:8080/api/message"
    )
    message_endpoint_api_key: str = Field(alias="MESSAGE_ENDPOINT_API_KEY", default="")
    message_endpoint_timeout_seconds: int = Field(
        alias="MESSAGE_ENDPOINT_TIMEOUT_SECONDS", default=30
    )
    # Key expected on inbound peer messages.
    inbound_api_key: str = Field(alias="INBOUND_API_KEY", default="dev-inbound-key")

    triplestore_url: str = Field(alias="TRIPLESTORE_URL", default="http://localhost:7200")
    triplestore_repository: str = Field(alias="TRIPLESTORE_REPOSITORY", default="federated")
    triplestore_timeout_seconds: int = Field(alias="TRIPLESTORE_TIMEOUT_SECONDS", default=30)

    publication_interval_seconds: int = Field(alias="PUBLICATION_INTERVAL_SECONDS", default=60)
    publication_initial_delay_seconds: int = Field(
        alias="PUBLICATION_INITIAL_DELAY_SECONDS", default=15
    )
    publication_batch_size: int = Field(alias="PUBLICATION_BATCH_SIZE", default=500)
    retention_interval_seconds: int = Field(alias="RETENTION_INTERVAL_SECONDS", default=86400)
    retention_initial_delay_seconds: int = Field(
        alias="RETENTION_INITIAL_DELAY_SECONDS", default=0
    )

    # PEM encoded RSA private key used to sign webhook client assertions.
    webhook_private_key: str = Field(alias="WEBHOOK_PRIVATE_KEY", default="")
    webhook_timeout_seconds: int = Field(alias="WEBHOOK_TIMEOUT_SECONDS", default=20)

    task_runner_max_concurrent: int = Field(alias="TASK_RUNNER_MAX_CONCURRENT", default=4)
    task_runner_shutdown_timeout_seconds: int = Field(
        alias="TASK_RUNNER_SHUTDOWN_TIMEOUT_SECONDS",
        default=30,
    )

    # Security: bind host defaults to loopback
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    from fednode.distribution.destinations import parse_destination
    from fednode.errors import InvalidDestinationError

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "This exposes the node API to all network interfaces. "
            "Set BIND_HOST=127.0.0.1 and use a reverse proxy."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "NODE_IDENTITY": settings.node_identity,
        "MESSAGE_ENDPOINT_URL": settings.message_endpoint_url,
        "MESSAGE_ENDPOINT_API_KEY": settings.message_endpoint_api_key,
        "INBOUND_API_KEY": settings.inbound_api_key,
        "TRIPLESTORE_URL": settings.triplestore_url,
        "TRIPLESTORE_REPOSITORY": settings.triplestore_repository,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    if settings.inbound_api_key == "dev-inbound-key":
        missing.append("INBOUND_API_KEY(non-dev value)")
    if settings.node_identity.strip():
        try:
            parse_destination(settings.node_identity)
        except InvalidDestinationError:
            missing.append("NODE_IDENTITY(distinguished name O=..,L=..,C=..)")
    if not settings.app_db.startswith("/"):
        missing.append("APP_DB(absolute path required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
