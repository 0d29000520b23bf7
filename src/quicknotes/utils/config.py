"""Store limits and user options.

Limits default to the values in dataModels and can be overridden from the
environment. Options mirror what the extension's options page kept under the
"options" slot, using the same camelCase keys.
"""
from __future__ import annotations

import logging
import os

from dataclasses import dataclass, field
from typing import Any, Dict, List

from quicknotes.storage.kv import KeyValueStore
from quicknotes.utils.dataModels import (
    BUILTIN_CATEGORIES,
    MAX_NOTES_COUNT,
    MAX_NOTE_SIZE_BYTES,
    OPTIONS_SLOT,
    WARNING_THRESHOLD_BYTES,
)
from quicknotes.utils.errors import ConfigError

logger = logging.getLogger(__name__)

NOTES_ORDERS = ("newest", "oldest")
AUTO_BACKUP_CHOICES = ("never", "daily", "weekly", "monthly")

DEFAULT_CATEGORY_COLORS = {
    "sql": "#007bff",
    "url": "#28a745",
    "snippet": "#dc3545",
    "command": "#ffc107",
    "other": "#6c757d",
}


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be positive, got {parsed}")
    return parsed


@dataclass(frozen=True)
class StoreLimits:
    max_note_size_bytes: int = MAX_NOTE_SIZE_BYTES
    max_notes_count: int = MAX_NOTES_COUNT
    warning_threshold_bytes: int = WARNING_THRESHOLD_BYTES

    @classmethod
    def from_env(cls) -> StoreLimits:
        return cls(
            max_note_size_bytes=_int_env("QUICKNOTES_MAX_NOTE_SIZE", MAX_NOTE_SIZE_BYTES),
            max_notes_count=_int_env("QUICKNOTES_MAX_NOTES", MAX_NOTES_COUNT),
            warning_threshold_bytes=_int_env("QUICKNOTES_WARN_BYTES", WARNING_THRESHOLD_BYTES),
        )


@dataclass
class Options:
    default_category: str = "other"
    max_notes_display: int = 20
    notes_order: str = "newest"
    category_colors: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_COLORS))
    auto_backup: str = "never"
    custom_categories: List[str] = field(default_factory=list)

    @property
    def categories(self) -> tuple:
        return BUILTIN_CATEGORIES + tuple(c for c in self.custom_categories if c not in BUILTIN_CATEGORIES)

    def problems(self) -> Dict[str, str]:
        """Invalid fields mapped to a message; empty when the options are usable."""
        found: Dict[str, str] = {}
        if self.default_category not in self.categories:
            found["default_category"] = f"Unknown default category {self.default_category!r}"
        if not isinstance(self.max_notes_display, int) or self.max_notes_display <= 0:
            found["max_notes_display"] = "maxNotesDisplay must be a positive integer"
        if self.notes_order not in NOTES_ORDERS:
            found["notes_order"] = f"notesOrder must be one of {', '.join(NOTES_ORDERS)}"
        if self.auto_backup not in AUTO_BACKUP_CHOICES:
            found["auto_backup"] = f"autoBackup must be one of {', '.join(AUTO_BACKUP_CHOICES)}"
        return found

    def validate(self) -> None:
        found = self.problems()
        if found:
            raise ConfigError(next(iter(found.values())))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "defaultCategory": self.default_category,
            "maxNotesDisplay": self.max_notes_display,
            "notesOrder": self.notes_order,
            "categoryColors": dict(self.category_colors),
            "autoBackup": self.auto_backup,
            "customCategories": list(self.custom_categories),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], strict: bool = True) -> Options:
        """Build options from their stored form.

        Invalid values raise ConfigError when `strict`; otherwise each one is
        reset to its default with a warning.
        """
        opts = Options()
        if not isinstance(data, dict):
            return opts
        if isinstance(data.get("defaultCategory"), str):
            opts.default_category = data["defaultCategory"]
        if data.get("maxNotesDisplay") is not None:
            try:
                opts.max_notes_display = int(data["maxNotesDisplay"])
            except (TypeError, ValueError) as exc:
                if strict:
                    raise ConfigError(f"maxNotesDisplay is not a number: {data['maxNotesDisplay']!r}") from exc
                logger.warning("Ignoring maxNotesDisplay %r: not a number", data["maxNotesDisplay"])
        if isinstance(data.get("notesOrder"), str):
            opts.notes_order = data["notesOrder"]
        if isinstance(data.get("categoryColors"), dict):
            opts.category_colors.update({str(k): str(v) for k, v in data["categoryColors"].items()})
        if isinstance(data.get("autoBackup"), str):
            opts.auto_backup = data["autoBackup"]
        if isinstance(data.get("customCategories"), list):
            opts.custom_categories = [c.strip() for c in data["customCategories"] if isinstance(c, str) and c.strip()]
        if strict:
            opts.validate()
            return opts
        defaults = Options()
        for name, message in opts.problems().items():
            logger.warning("%s; using default %r", message, getattr(defaults, name))
            setattr(opts, name, getattr(defaults, name))
        return opts


def load_options(kv: KeyValueStore) -> Options:
    return Options.from_dict(kv.get(OPTIONS_SLOT) or {}, strict=False)


def save_options(kv: KeyValueStore, options: Options) -> None:
    options.validate()
    kv.set(OPTIONS_SLOT, options.to_dict())
