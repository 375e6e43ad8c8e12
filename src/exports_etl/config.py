"""exports_etl.config

Explicit run configuration for the append pipeline.

Usage:
    from pathlib import Path
    from exports_etl.config import load_config

    config = load_config(Path("config/exports_etl.yml"))

YAML shape (every key optional except a DSN source):

    db_dsn: "host=localhost dbname=community user=etl"
    # or, instead of db_dsn:
    db:
      host: localhost
      port: 5432
      user: etl
      password: secret
      database: community
      ssl: false
    db_schema: public
    batch_size: 250
    max_file_bytes: 268435456
    report_dir: ./artifacts/reports
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from psycopg.conninfo import make_conninfo

DEFAULT_BATCH_SIZE = 250
DEFAULT_MAX_FILE_BYTES = 256 * 1024 * 1024

ALLOWED_YAML_KEYS = frozenset({
    "db_dsn", "db", "db_schema", "batch_size", "max_file_bytes", "report_dir",
})

ALLOWED_DB_KEYS = frozenset({"host", "port", "user", "password", "database", "ssl"})


class ConfigValidationError(ValueError):
    """Raised when a config file fails validation."""


@dataclass
class DbSettings:
    host: str = "localhost"
    port: int = 5432
    user: str = ""
    password: str = ""
    database: str = ""
    ssl: bool = False

    def to_dsn(self) -> str:
        return make_conninfo(
            host=self.host,
            port=self.port,
            user=self.user or None,
            password=self.password or None,
            dbname=self.database or None,
            sslmode="require" if self.ssl else "prefer",
        )


@dataclass
class AppendConfig:
    db_dsn: str = ""
    db_schema: str = "public"
    batch_size: int = DEFAULT_BATCH_SIZE
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    report_dir: Path = field(default_factory=lambda: Path("./artifacts/reports"))

    def with_overrides(self, **overrides: Any) -> AppendConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(yaml_path: Path) -> AppendConfig:
    """Load, validate, and return an AppendConfig from a YAML file.

    Raises:
        ConfigValidationError: If a key is unknown or a value is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    validate_config(data)

    if data.get("db_dsn"):
        dsn = str(data["db_dsn"])
    elif data.get("db"):
        dsn = DbSettings(**data["db"]).to_dsn()
    else:
        dsn = ""

    config = AppendConfig(db_dsn=dsn)
    return config.with_overrides(
        db_schema=data.get("db_schema"),
        batch_size=data.get("batch_size"),
        max_file_bytes=data.get("max_file_bytes"),
        report_dir=Path(data["report_dir"]) if data.get("report_dir") else None,
    )


def validate_config(data: Any) -> None:
    if not isinstance(data, dict):
        raise ConfigValidationError("config file must contain a mapping")

    unknown = set(data) - ALLOWED_YAML_KEYS
    if unknown:
        raise ConfigValidationError(f"unknown config keys: {sorted(unknown)}")

    if "db_dsn" in data and "db" in data:
        raise ConfigValidationError("set either db_dsn or db, not both")

    db = data.get("db")
    if db is not None:
        if not isinstance(db, dict):
            raise ConfigValidationError("db must be a mapping")
        unknown_db = set(db) - ALLOWED_DB_KEYS
        if unknown_db:
            raise ConfigValidationError(f"unknown db keys: {sorted(unknown_db)}")
        if "port" in db and not isinstance(db["port"], int):
            raise ConfigValidationError("db.port must be an integer")

    for key in ("batch_size", "max_file_bytes"):
        if key in data:
            value = data[key]
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigValidationError(f"{key} must be a positive integer, got {value!r}")
