"""Two-layer configuration store.

The base document (static-config.yaml) is authored by the operator and
never written here. The generated document (dynamic-config.yaml) is
written only through ConfigStore.update and ConfigStore.reset, which
rewrite one section, keep every sibling section as it was, and replace
the file atomically after taking a timestamped backup.

SECURITY: File sizes are checked before reading.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_CONFIG_FILE_SIZE_BYTES, Config
from .errors import ConfigMissing, OrchestratorError
from .models import (
    LEGACY_SECTION_KEYS,
    ORPHANED,
    SECTION_MODELS,
    BaseSettings,
    GeneratedState,
    default_document,
    empty_section,
)

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class ConfigStoreError(OrchestratorError):
    """Raised when the generated document cannot be read or written."""

    pass


@dataclass(frozen=True)
class ConfigDocument:
    """Both layers as typed records."""

    base: BaseSettings
    generated: GeneratedState


def _format_validation_error(path: Path, error: ValidationError) -> str:
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    return f"Validation failed for {path}:\n" + "\n".join(errors)


def _read_yaml(path: Path, error_cls: type[OrchestratorError]) -> Any:
    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise error_cls(f"Failed to stat {path}: {e}") from e

    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise error_cls(f"{path} exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise error_cls(f"Failed to read {path}: {e}") from e

    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise error_cls(f"Invalid YAML in {path}: {e}") from e


class ConfigStore:
    """Single writer of the generated configuration document."""

    def __init__(
        self,
        base_path: Path,
        generated_path: Path,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._base_path = base_path
        self._generated_path = generated_path
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config) -> ConfigStore:
        return cls(config.base_path, config.generated_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def generated_path(self) -> Path:
        return self._generated_path

    # =========================================================================
    # Reads
    # =========================================================================

    def load_base(self) -> BaseSettings:
        """Load the immutable base settings.

        Raises:
            ConfigMissing: If the file is absent, unreadable, or lacks the
                region or account id.
        """
        if not self._base_path.exists():
            raise ConfigMissing(f"Base configuration not found: {self._base_path}")

        raw = _read_yaml(self._base_path, ConfigMissing)
        if not isinstance(raw, dict):
            raise ConfigMissing(f"Base configuration must be a YAML mapping: {self._base_path}")

        try:
            settings = BaseSettings.model_validate(raw)
        except ValidationError as e:
            raise ConfigMissing(_format_validation_error(self._base_path, e)) from e

        logger.debug("Loaded base settings", extra={"path": str(self._base_path)})
        return settings

    def load_generated(self) -> GeneratedState:
        """Load the generated state, defaulting every absent section."""
        raw = self._read_generated_raw()
        try:
            return GeneratedState.model_validate(raw)
        except ValidationError as e:
            raise ConfigStoreError(_format_validation_error(self._generated_path, e)) from e

    def load(self) -> ConfigDocument:
        return ConfigDocument(base=self.load_base(), generated=self.load_generated())

    def _read_generated_raw(self) -> dict[str, Any]:
        if not self._generated_path.exists():
            return default_document()

        raw = _read_yaml(self._generated_path, ConfigStoreError)
        if raw is None:
            return default_document()
        if not isinstance(raw, dict):
            raise ConfigStoreError(
                f"Generated configuration must be a YAML mapping: {self._generated_path}"
            )
        return raw

    # =========================================================================
    # Writes
    # =========================================================================

    def update(self, section: str, record: Mapping[str, Any] | BaseModel) -> None:
        """Merge `record` into one section and persist atomically.

        Keys of `record` overwrite the section's keys; keys it does not
        mention are kept. Other sections are written back untouched.
        """
        if isinstance(record, BaseModel):
            values = record.model_dump()
        else:
            values = dict(record)

        raw = self._read_generated_raw()
        parent, key = self._locate(raw, section)
        current = parent.get(key)
        merged = {**(current if isinstance(current, dict) else empty_section(section)), **values}

        try:
            SECTION_MODELS[section].model_validate(merged)
        except ValidationError as e:
            raise ConfigStoreError(
                _format_validation_error(self._generated_path, e).replace(
                    "Validation failed", f"Invalid '{section}' update"
                )
            ) from e

        parent[key] = merged
        self._write(raw)
        logger.info("Updated generated section", extra={"section": section, "keys": list(values)})

    def reset(self, section: str) -> None:
        """Replace a section with its empty-valued schema."""
        raw = self._read_generated_raw()
        parent, key = self._locate(raw, section)
        parent[key] = empty_section(section)
        self._write(raw)
        logger.info("Reset generated section", extra={"section": section})

    def mark_orphaned(self, section: str) -> None:
        """Flag a section whose remote deletion could not be confirmed."""
        if section == "runtime":
            for child in ("runtime.diy_agent", "runtime.sdk_agent"):
                self.update(child, {"status": ORPHANED})
            return
        self.update(section, {"status": ORPHANED})

    def _locate(self, raw: dict[str, Any], section: str) -> tuple[dict[str, Any], str]:
        """Return the mapping holding `section` and the key inside it."""
        if section not in SECTION_MODELS:
            raise KeyError(f"Unknown generated section: {section}")

        parts = section.split(".")
        legacy = LEGACY_SECTION_KEYS.get(parts[0])
        if legacy and parts[0] not in raw and legacy in raw:
            # Rename the legacy key in place so the section keeps its position
            raw_items = list(raw.items())
            raw.clear()
            for k, v in raw_items:
                raw[parts[0] if k == legacy else k] = v

        node = raw
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        return node, parts[-1]

    def _write(self, raw: dict[str, Any]) -> None:
        path = self._generated_path
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.exists():
            self._backup()

        content = yaml.safe_dump(raw, sort_keys=False, default_flow_style=False)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ConfigStoreError(f"Failed to write {path}: {e}") from e

    def _backup(self) -> Path:
        """Copy the current document aside, keeping only the newest backup."""
        path = self._generated_path
        stamp = self._clock().strftime(BACKUP_TIMESTAMP_FORMAT)
        backup = path.with_name(f"{path.name}.backup.{stamp}")

        for old in path.parent.glob(f"{path.name}.backup.*"):
            if old != backup:
                old.unlink(missing_ok=True)

        try:
            backup.write_bytes(path.read_bytes())
        except OSError as e:
            raise ConfigStoreError(f"Failed to back up {path}: {e}") from e
        return backup
