"""Configuration helpers for the chatbot knowledge base service."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import TYPE_CHECKING, Final

from dotenv import load_dotenv

from .errors import ConfigError
from .models import DEFAULT_ROOT_FOLDER

if TYPE_CHECKING:  # pragma: no cover
    from .observability import MetricsRecorder
    from .store import ItemStore

load_dotenv()

_DEFAULT_STORE_BACKEND: Final[str] = "local"
_DEFAULT_DATA_DIR: Final[str] = "data"
_DEFAULT_STORE_TIMEOUT: Final[float] = 30.0
_DEFAULT_POLL_INTERVAL: Final[float] = 5.0
_DEFAULT_RECONCILE_INTERVAL: Final[float] = 300.0
_DEFAULT_TABULAR_SUFFIXES: Final[tuple[str, ...]] = (".csv",)
_STORE_BACKENDS: Final[frozenset[str]] = frozenset({"local", "directus"})


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean value (true/false).")


def _env_bool(name: str, default: bool) -> bool:
    value = _env_optional_bool(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_suffixes(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    suffixes = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        suffixes.append(part if part.startswith(".") else f".{part}")
    return tuple(suffixes)


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    store_backend: str = _DEFAULT_STORE_BACKEND
    data_dir: str = _DEFAULT_DATA_DIR
    directus_url: str | None = None
    directus_token: str | None = None
    store_timeout: float = _DEFAULT_STORE_TIMEOUT
    root_folder: str = DEFAULT_ROOT_FOLDER
    poll_interval: float = _DEFAULT_POLL_INTERVAL
    reconcile_interval: float = _DEFAULT_RECONCILE_INTERVAL
    tabular_suffixes: tuple[str, ...] = field(default=_DEFAULT_TABULAR_SUFFIXES)
    observability_metrics_enabled: bool = True
    observability_namespace: str = "botkb"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            store_backend=os.getenv("STORE_BACKEND", _DEFAULT_STORE_BACKEND).strip().lower(),
            data_dir=os.getenv("DATA_DIR", _DEFAULT_DATA_DIR),
            directus_url=os.getenv("DIRECTUS_URL") or None,
            directus_token=os.getenv("DIRECTUS_TOKEN") or None,
            store_timeout=_env_float("STORE_TIMEOUT", _DEFAULT_STORE_TIMEOUT),
            root_folder=os.getenv("KB_ROOT_FOLDER", DEFAULT_ROOT_FOLDER).strip() or DEFAULT_ROOT_FOLDER,
            poll_interval=max(_env_float("KB_POLL_INTERVAL", _DEFAULT_POLL_INTERVAL), 0.1),
            reconcile_interval=max(_env_float("KB_RECONCILE_INTERVAL", _DEFAULT_RECONCILE_INTERVAL), 0.0),
            tabular_suffixes=_env_suffixes("KB_TABULAR_SUFFIXES", _DEFAULT_TABULAR_SUFFIXES),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "botkb"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_directus_backend(self) -> bool:
        return self.store_backend == "directus"

    @property
    def reconcile_enabled(self) -> bool:
        return self.reconcile_interval > 0

    def store_path(self) -> Path:
        """Return the directory backing the local item store."""

        return Path(self.data_dir).expanduser().resolve() / "store"

    def build_store(self) -> "ItemStore":
        """Instantiate the configured item/file store."""

        if self.store_backend not in _STORE_BACKENDS:
            raise ConfigError(
                f"STORE_BACKEND must be one of {sorted(_STORE_BACKENDS)}, got '{self.store_backend}'"
            )
        if self.is_directus_backend:
            if not self.directus_url:
                raise ConfigError("DIRECTUS_URL is required when STORE_BACKEND=directus")
            from .directus import DirectusStore

            return DirectusStore(self.directus_url, token=self.directus_token, timeout=self.store_timeout)

        from .store import LocalItemStore

        store = LocalItemStore(self.store_path())
        store.ensure_folder(self.root_folder)
        return store

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )


__all__ = ["Settings"]
