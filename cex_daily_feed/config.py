"""Feed configuration: loading, validation and hot reload.

A configuration file is JSON, checked against a JSON Schema and then parsed
into an immutable `FeedConfig`. `ConfigPublisher` re-checks the file on a
`TickEngine` and publishes a changed, already-validated snapshot into a
single pending slot that the consumer takes atomically.
"""

from __future__ import annotations

import enum
import json
import os
import threading
from pathlib import Path
from typing import Any, Optional

from jsonschema import Draft202012Validator
from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema.exceptions import SchemaError
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ParseError, ValidationError
from .tick_engine import StopToken, TickEngine


DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"


class FeedConfig(BaseModel):
    """Immutable configuration snapshot. Equality is field-by-field."""

    main_exchange: str = Field(..., min_length=1)
    database_path: Path
    top_n: int = Field(50, ge=1)
    quote_asset: str = Field("USDT", min_length=1)
    fetch_batch_size: int = Field(8, ge=1)
    http_timeout_seconds: float = Field(15.0, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_json_obj(cls, obj: dict[str, Any]) -> FeedConfig:
        return cls.model_validate(obj)

    def to_json_obj(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def load_json_file(path: str | Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise ParseError(f"cannot open json file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ParseError(f"failed to parse JSON in {path}: {e}") from e


def validate_against_schema(instance: Any, schema: dict[str, Any]) -> None:
    try:
        Draft202012Validator.check_schema(schema)
        Draft202012Validator(schema).validate(instance)
    except SchemaError as e:
        raise ValidationError(f"invalid JSON schema: {e.message}") from e
    except JsonSchemaValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ValidationError(f"JSON validation failed at {where}: {e.message}") from e


def load_config(config_path: str | Path, schema_path: str | Path = DEFAULT_SCHEMA_PATH) -> FeedConfig:
    """Load, schema-check and parse a configuration file.

    Raises ValidationError for anything that keeps the file from becoming a
    usable configuration, including unreadable or malformed JSON.
    """
    try:
        raw = load_json_file(config_path)
        schema = load_json_file(schema_path)
    except ParseError as e:
        raise ValidationError(str(e)) from e
    validate_against_schema(raw, schema)
    try:
        return FeedConfig.from_json_obj(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"config parse failed: {e}") from e


class ReloadOutcome(str, enum.Enum):
    UNCHANGED = "unchanged"
    INVALID = "invalid"
    IDENTICAL = "reloaded-identical"
    PUBLISHED = "reloaded-different"


class ConfigPublisher:
    """Watches a config file and publishes at most one pending snapshot.

    The initial load happens in the constructor and raises ValidationError on
    failure. Later failures are logged and the current snapshot stays in force.
    """

    def __init__(
        self,
        config_path: str | Path,
        schema_path: str | Path = DEFAULT_SCHEMA_PATH,
        check_interval: float = 30.0,
        *,
        timeout: float = 0.5,
        stop_token: Optional[StopToken] = None,
    ):
        self.config_path = Path(config_path)
        self.schema_path = Path(schema_path)
        self._lock = threading.Lock()
        self._check_lock = threading.Lock()
        self._pending: Optional[FeedConfig] = None

        try:
            self._current = load_config(self.config_path, self.schema_path)
        except ValidationError as e:
            raise ValidationError(f"Initial config invalid: {e}") from e
        self._last_revision = self._read_revision()
        logger.info(f"Initial config loaded from {self.config_path}")

        self.engine = TickEngine(
            self.check,
            interval=check_interval,
            timeout=timeout,
            start_delay=0.0,
            stop_token=stop_token,
            name="config-publisher",
        )

    @property
    def current(self) -> FeedConfig:
        with self._lock:
            return self._current

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def take_pending(self) -> Optional[FeedConfig]:
        """Consume the pending snapshot. It becomes the current one."""
        with self._lock:
            cfg = self._pending
            if cfg is None:
                return None
            self._pending = None
            self._current = cfg
            return cfg

    def _read_revision(self) -> Optional[int]:
        try:
            return os.stat(self.config_path).st_mtime_ns
        except OSError as e:
            logger.error(f"Cannot read modification time of {self.config_path}: {e}")
            return None

    def check(self) -> ReloadOutcome:
        with self._check_lock:
            revision = self._read_revision()
            if revision is None:
                return ReloadOutcome.UNCHANGED
            if self._last_revision is not None and revision <= self._last_revision:
                return ReloadOutcome.UNCHANGED

            logger.info("Config file changed, loading...")
            try:
                candidate = load_config(self.config_path, self.schema_path)
            except ValidationError as e:
                logger.error(f"Updated config INVALID: {e}")
                return ReloadOutcome.INVALID

            with self._lock:
                baseline = self._pending if self._pending is not None else self._current
                if candidate == baseline:
                    self._last_revision = revision
                    logger.info("Content unchanged. No reload.")
                    return ReloadOutcome.IDENTICAL
                self._pending = candidate
                self._last_revision = revision

            logger.info("New config validated and ready to apply.")
            return ReloadOutcome.PUBLISHED

    def start(self) -> None:
        self.engine.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.engine.stop(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        self.engine.join(timeout)
