"""Database configuration loading helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Protocol

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

CONFIG_FILE = Path.home() / ".config" / "tierdb" / "database.toml"

DSN_TEMPLATE = "mysql:host={host};port={port};dbname={db};charset=utf8mb4"

_LEGACY_PREFIX = "mysql_"
_LEGACY_KEYS = ("host", "port", "db", "user", "pass")

ConfigValue = str | int


class ConfigError(ValueError):
    """Raised when a configuration source cannot be turned into settings."""


class ConfigLoader(Protocol):
    """Interface implemented by configuration sources."""

    def load(self, source: str | Path) -> dict[str, ConfigValue]:
        """Evaluate *source* into a flat mapping of scalar values."""


class DatabaseConfig(BaseModel):
    """Connection settings read from the configuration source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    db: str | None = None
    user: str | None = None
    password: str | None = Field(default=None, alias="pass")
    sqlite_path: str = ":memory:"

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_keys(cls, data: Any) -> Any:
        """Accept ``mysql_host`` style keys used by older config files."""

        if not isinstance(data, Mapping):
            return data
        folded = dict(data)
        for key in _LEGACY_KEYS:
            legacy = folded.pop(f"{_LEGACY_PREFIX}{key}", None)
            if legacy is not None and folded.get(key) is None:
                folded[key] = legacy
        return folded

    def derived_dsn(self) -> str:
        """Build the MySQL DSN from host/port/db."""

        missing = [name for name in ("host", "port", "db") if getattr(self, name) in (None, "")]
        if missing:
            raise ConfigError(f"Cannot derive DSN, missing keys: {', '.join(missing)}")
        return build_dsn(self.host, self.port, self.db)  # type: ignore[arg-type]

    def with_dsn(self) -> DatabaseConfig:
        """Return a copy whose ``dsn`` is populated."""

        if self.dsn:
            return self
        return self.model_copy(update={"dsn": self.derived_dsn()})

    def as_mapping(self) -> dict[str, ConfigValue]:
        """Flat key/value view using the source key names."""

        return self.model_dump(by_alias=True, exclude_none=True)


class TomlConfigLoader:
    """Reads connection settings from a flat TOML file."""

    def load(self, source: str | Path) -> dict[str, ConfigValue]:
        path = Path(source).expanduser()
        try:
            with path.open("rb") as handle:
                raw = tomllib.load(handle)
        except FileNotFoundError as exc:
            raise ConfigError(f"Config source '{path}' does not exist") from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Config source '{path}' is not valid TOML: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Config source '{path}' could not be read: {exc}") from exc
        return _flatten_scalars(raw, path)


def build_dsn(host: str, port: int | str, db: str) -> str:
    """Format the MySQL DSN in its canonical token order."""

    return DSN_TEMPLATE.format(host=host, port=port, db=db)


def load_config(source: str | Path | None = None, loader: ConfigLoader | None = None) -> DatabaseConfig:
    """Load, validate, and complete the configuration at *source*."""

    reader = loader or TomlConfigLoader()
    target = source if source is not None else CONFIG_FILE
    data = reader.load(target)
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config source '{target}' did not produce a mapping")
    try:
        config = DatabaseConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in '{target}': {exc}") from exc
    return config.with_dsn()


def save_config(config: DatabaseConfig, path: str | Path | None = None) -> Path:
    """Persist *config* as a flat TOML file and return its location."""

    target = Path(path).expanduser() if path is not None else CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    for key, value in config.as_mapping().items():
        if isinstance(value, int):
            lines.append(f"{key} = {value}")
        else:
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{key} = "{escaped}"')
    target.write_text("\n".join(lines) + "\n")
    return target


def _flatten_scalars(raw: Mapping[str, object], path: Path) -> dict[str, ConfigValue]:
    data: dict[str, ConfigValue] = {}
    for key, value in raw.items():
        # bool is an int subclass but not a valid setting value.
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ConfigError(
                f"Config key '{key}' in '{path}' must be a string or integer, got {type(value).__name__}"
            )
        data[str(key)] = value
    return data


__all__ = [
    "CONFIG_FILE",
    "DSN_TEMPLATE",
    "ConfigError",
    "ConfigLoader",
    "ConfigValue",
    "DatabaseConfig",
    "TomlConfigLoader",
    "build_dsn",
    "load_config",
    "save_config",
]
