from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from datacore.core.errors import ConfigError, PlaceholderCredentialError


PLACEHOLDER_PREFIX = "<YOUR_DB_"
CREDENTIAL_FIELDS = (
    "DATACORE_DB_HOST",
    "DATACORE_DB_NAME",
    "DATACORE_DB_USER",
    "DATACORE_DB_PASS",
)
REQUIRED_OPTIONS = ("driver_factory", "api_secret", "db_type")


class Settings(BaseSettings):
    DATACORE_API_SECRET: Optional[str] = None
    DATACORE_DB_TYPE: Optional[str] = None
    DATACORE_DB_HOST: Optional[str] = None
    DATACORE_DB_PORT: Optional[int] = None
    DATACORE_DB_NAME: Optional[str] = None
    DATACORE_DB_USER: Optional[str] = None
    DATACORE_DB_PASS: Optional[str] = None
    DATACORE_APP: Optional[str] = None
    DATACORE_API_URL: Optional[str] = None
    DATACORE_SCHEMA_PATH: str = "schema"
    DATACORE_TELEMETRY: bool = True
    DATACORE_TELEMETRY_URL: Optional[str] = None
    DATACORE_TELEMETRY_WRITE_KEY: Optional[str] = None
    PORT: int = 4000
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Built on every call so each check sees the environment as it is right now
def get_settings() -> Settings:
    return Settings()


class ServerOptions(BaseModel):
    """Fully resolved server options. Immutable once built."""

    driver_factory: Callable[..., Any]
    api_secret: str
    db_type: str
    schema_path: str = "schema"
    dev_server: bool = False
    logger: Optional[Callable[[str, Dict[str, Any]], None]] = None
    orchestrator_options: Dict[str, Any] = {}
    schema_version: Optional[Callable[[], str]] = None
    check_auth: Optional[Callable[..., Any]] = None
    telemetry: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)


def check_env_for_placeholders(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    for field in CREDENTIAL_FIELDS:
        value = getattr(settings, field)
        if value and value.startswith(PLACEHOLDER_PREFIX):
            raise PlaceholderCredentialError(
                "Your .env file contains placeholders in DB credentials. "
                "Please replace them with your DB credentials."
            )


def resolve_options(
    options: Optional[Dict[str, Any]] = None,
    driver_factory_for: Optional[Callable[[str], Callable[..., Any]]] = None,
) -> ServerOptions:
    """
    Merge caller options over environment defaults and validate the result.

    Args:
        options: Caller supplied options. Keys present here always win.
        driver_factory_for: Maps a db type to its default driver factory.
            Only consulted when the caller did not pass ``driver_factory``.

    Raises:
        ConfigError: a required option is missing, an option is unknown or
            the default driver factory cannot serve the db type.
    """
    options = dict(options or {})
    settings = get_settings()

    resolved = {
        "api_secret": settings.DATACORE_API_SECRET,
        "db_type": settings.DATACORE_DB_TYPE,
        "schema_path": settings.DATACORE_SCHEMA_PATH,
        "dev_server": settings.APP_ENV != "production",
        "telemetry": settings.DATACORE_TELEMETRY,
        **options,
    }
    if (
        "driver_factory" not in options
        and driver_factory_for is not None
        and resolved.get("db_type")
    ):
        resolved["driver_factory"] = driver_factory_for(resolved["db_type"])

    missing = [name for name in REQUIRED_OPTIONS if not resolved.get(name)]
    if missing:
        raise ConfigError(f"{', '.join(REQUIRED_OPTIONS)} are required options (missing: {', '.join(missing)})")

    try:
        return ServerOptions(**resolved)
    except ValidationError as error:
        raise ConfigError(f"Invalid server options: {error}") from error
