"""Compiler settings loading and normalization helpers."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from jsonschema import ValidationError

from compilemw.contracts import validate_settings
from compilemw.errors import ConfigurationError
from compilemw.paths import expand

ENV_CONFIG_PATH = "COMPILEMW_CONFIG"
DEFAULT_IGNORE = r"\.(jpe?g|gif|png)$"
DEFAULT_INDEX = "index.html"

#: Option keys that override global settings when scoped to one backend.
SETTING_OVERRIDE_KEYS = ("delta", "expires", "create_dirs", "external_timeout")

DEFAULTS: dict[str, Any] = {
    "enabled": [],
    "src": None,
    "dest": None,
    "roots": None,
    "mount": "",
    "delta": None,
    "expires": None,
    "log_level": "WARN",
    "create_dirs": True,
    "external_timeout": 3000,
    "cascade": False,
    "ignore": DEFAULT_IGNORE,
    "resolve_index": False,
    "allowed_methods": ["GET"],
    "options": {"all": {}},
    "backends": {},
}


@dataclass(frozen=True)
class CompilerSettings:
    """Normalized compile middleware settings."""

    enabled: tuple[str, ...]
    roots: tuple[tuple[Path, Path], ...]
    mount: str = ""
    resolve_index: str | None = None
    delta: float = 0.0
    expires: float | None = None
    create_dirs: bool = True
    cascade: bool = False
    ignore: re.Pattern[str] | None = None
    allowed_methods: tuple[str, ...] = ("GET",)
    options: dict[str, dict[str, Any]] = field(default_factory=dict)
    external_timeout: float = 3000.0
    log_level: str = "WARN"
    backends: dict[str, dict[str, Any]] = field(default_factory=dict)

    def for_backend(self, backend_id: str) -> "CompilerSettings":
        """Return settings with per-backend overrides of global keys applied."""
        scoped = self.options.get(backend_id) or {}
        overrides: dict[str, Any] = {}
        for key in SETTING_OVERRIDE_KEYS:
            if key in scoped:
                overrides[key] = scoped[key]
        if not overrides:
            return self
        if "delta" in overrides:
            overrides["delta"] = _as_float(overrides["delta"], "delta", default=0.0)
        if "expires" in overrides:
            overrides["expires"] = _as_expires(overrides["expires"])
        if "external_timeout" in overrides:
            overrides["external_timeout"] = _as_float(
                overrides["external_timeout"], "external_timeout", default=3000.0
            )
        if "create_dirs" in overrides:
            overrides["create_dirs"] = bool(overrides["create_dirs"])
        return replace(self, **overrides)

    def backend_options(self, backend_id: str) -> dict[str, Any]:
        """Return the ``all`` bucket overridden by the backend's own bucket."""
        merged: dict[str, Any] = {}
        merged.update(self.options.get("all") or {})
        merged.update(self.options.get(backend_id) or {})
        for key in SETTING_OVERRIDE_KEYS:
            merged.pop(key, None)
        return merged

    def as_dict(self) -> dict[str, Any]:
        return {
            "enabled": list(self.enabled),
            "roots": [[str(src), str(dest)] for src, dest in self.roots],
            "mount": self.mount,
            "resolve_index": self.resolve_index or False,
            "delta": self.delta,
            "expires": self.expires,
            "create_dirs": self.create_dirs,
            "cascade": self.cascade,
            "ignore": self.ignore.pattern if self.ignore is not None else None,
            "allowed_methods": list(self.allowed_methods),
            "options": {key: dict(value) for key, value in self.options.items()},
            "external_timeout": self.external_timeout,
            "log_level": self.log_level,
            "backends": {key: dict(value) for key, value in self.backends.items()},
        }


def _as_float(value: object, name: str, *, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigurationError(f"Setting '{name}' must be a number.")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Setting '{name}' must be a number.") from exc


def _as_expires(value: object) -> float | None:
    if value is None or value is False:
        return None
    return _as_float(value, "expires", default=0.0)


def _normalize_list(value: object, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if str(item)]
    if isinstance(value, str):
        return [value] if value else []
    raise ConfigurationError(f"Setting '{name}' must be a string or list of strings.")


def _normalize_roots(payload: Mapping[str, Any]) -> tuple[tuple[Path, Path], ...]:
    roots = payload.get("roots")
    if not roots:
        src_dirs = _normalize_list(payload.get("src"), "src") or [os.getcwd()]
        dest_dir = payload.get("dest") or src_dirs[0]
        return tuple((expand(src), expand(dest_dir)) for src in src_dirs)
    if isinstance(roots, Mapping):
        return tuple((expand(src), expand(dest)) for src, dest in roots.items())
    if isinstance(roots, (list, tuple)):
        pairs = []
        for entry in roots:
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise ConfigurationError("Each root must be a [source, destination] pair.")
            pairs.append((expand(entry[0]), expand(entry[1])))
        return tuple(pairs)
    raise ConfigurationError("Setting 'roots' must be a list of pairs or a mapping.")


def _normalize_resolve_index(value: object) -> str | None:
    if value is True:
        return DEFAULT_INDEX
    if not value:
        return None
    if isinstance(value, str):
        return value.lstrip("/") or None
    raise ConfigurationError("Setting 'resolve_index' must be a boolean or a filename.")


def _normalize_ignore(value: object) -> re.Pattern[str] | None:
    if value is None or value is False:
        return None
    if isinstance(value, re.Pattern):
        return value
    if isinstance(value, str):
        try:
            return re.compile(value, re.IGNORECASE)
        except re.error as exc:
            raise ConfigurationError(f"Invalid ignore pattern: {exc}") from exc
    raise ConfigurationError("Setting 'ignore' must be a regular expression.")


def _normalize_options(value: object) -> dict[str, dict[str, Any]]:
    if value is None:
        return {"all": {}}
    if not isinstance(value, Mapping):
        raise ConfigurationError("Setting 'options' must be a mapping of backend ids.")
    options: dict[str, dict[str, Any]] = {"all": {}}
    for key, bucket in value.items():
        if not isinstance(bucket, Mapping):
            raise ConfigurationError(f"Options for '{key}' must be a mapping.")
        options[str(key)] = dict(bucket)
    return options


def _normalize_backends(value: object) -> dict[str, dict[str, Any]]:
    if not value:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError("Setting 'backends' must be a mapping of backend ids.")
    backends: dict[str, dict[str, Any]] = {}
    for key, entry in value.items():
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"Backend declaration '{key}' must be a mapping.")
        backends[str(key)] = dict(entry)
    return backends


def normalize_settings(payload: Mapping[str, Any] | None = None) -> CompilerSettings:
    """Merge a raw settings payload over DEFAULTS into canonical settings."""
    merged = dict(DEFAULTS)
    merged.update(payload or {})

    enabled = _normalize_list(merged.get("enabled"), "enabled")
    if not enabled:
        raise ConfigurationError("You must supply a list of enabled backends.")

    allowed_methods = tuple(
        method.upper() for method in _normalize_list(merged.get("allowed_methods"), "allowed_methods")
    )
    return CompilerSettings(
        enabled=tuple(enabled),
        roots=_normalize_roots(merged),
        mount=str(merged.get("mount") or ""),
        resolve_index=_normalize_resolve_index(merged.get("resolve_index")),
        delta=_as_float(merged.get("delta"), "delta", default=0.0),
        expires=_as_expires(merged.get("expires")),
        create_dirs=bool(merged.get("create_dirs")),
        cascade=bool(merged.get("cascade")),
        ignore=_normalize_ignore(merged.get("ignore")),
        allowed_methods=allowed_methods,
        options=_normalize_options(merged.get("options")),
        external_timeout=_as_float(
            merged.get("external_timeout"), "external_timeout", default=3000.0
        ),
        log_level=str(merged.get("log_level") or "WARN").upper(),
        backends=_normalize_backends(merged.get("backends")),
    )


def load_settings(path: Path) -> CompilerSettings:
    """Load and validate a JSON settings file from disk."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unable to read settings file {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ConfigurationError("Settings file must contain a JSON object.")
    try:
        validate_settings(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings file {path}: {exc.message}") from exc
    base_dir = path.parent
    payload = _anchor_relative_roots(payload, base_dir)
    return normalize_settings(payload)


def _anchor_relative_roots(payload: Mapping[str, Any], base_dir: Path) -> dict[str, Any]:
    """Resolve relative directories in a settings file against its folder."""

    def anchor(value: str) -> str:
        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            return str(candidate)
        return str(base_dir / candidate)

    anchored = dict(payload)
    roots = anchored.get("roots")
    if isinstance(roots, Mapping):
        anchored["roots"] = {anchor(src): anchor(dest) for src, dest in roots.items()}
    elif isinstance(roots, list):
        anchored["roots"] = [[anchor(src), anchor(dest)] for src, dest in roots]
    src = anchored.get("src")
    if isinstance(src, str):
        anchored["src"] = anchor(src)
    elif isinstance(src, list):
        anchored["src"] = [anchor(item) for item in src]
    if isinstance(anchored.get("dest"), str):
        anchored["dest"] = anchor(anchored["dest"])
    if not roots and not src:
        anchored["src"] = str(base_dir)
    return anchored


def settings_path_from_env() -> Path | None:
    """Return the settings file named by COMPILEMW_CONFIG, if any."""
    value = os.environ.get(ENV_CONFIG_PATH)
    if not value:
        return None
    return Path(value).expanduser()
