"""Runtime settings, their JSON file and the encrypted API key."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
    "redact_headers",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".threadloom"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_ENV_PREFIX = "THREADLOOM_"
# Fields that may be overridden by THREADLOOM_<FIELD> environment variables.
_ENV_FIELDS: tuple[str, ...] = (
    "api_key",
    "base_url",
    "model",
    "organization",
    "system_prompt",
    "welcome_message",
    "temperature",
    "request_timeout",
    "bootstrap_timeout",
    "max_retries",
    "max_tool_iterations",
    "debug_logging",
    "debug_event_logging",
    "persist_errors",
    "pregenerate_openings",
)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_SENSITIVE_HEADERS = {"authorization", "api-key", "x-api-key"}


@dataclass(slots=True)
class Settings:
    """Everything the pipeline, the model client and the console read at start-up."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_iterations: int = 8
    system_prompt: str | None = None
    bootstrap_timeout: float = 10.0
    debug_logging: bool = False
    debug_event_logging: bool = False
    persist_errors: bool = True
    welcome_message: str = "Welcome to a new conversation! How can I help you today?"
    pregenerate_openings: bool = True
    pregenerated_pool_size: int = 1
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Settings":
        """Build settings from a stored payload, ignoring unknown keys."""
        known = {item.name for item in fields(cls)} - {"api_key"}
        return cls(**{key: value for key, value in payload.items() if key in known})

    def merged(self, overrides: Mapping[str, Any], *, source: str = "runtime") -> "Settings":
        """Copy with ``overrides`` applied; ``None`` values and unknown keys are skipped.

        ``metadata`` is merged key by key instead of being replaced.
        """
        known = {item.name for item in fields(self)}
        changes = {key: value for key, value in overrides.items() if key in known and value is not None}
        if isinstance(changes.get("metadata"), Mapping):
            changes["metadata"] = {**self.metadata, **changes["metadata"]}
        if not changes:
            return self
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(changes))
        return replace(self, **changes)


class SecretVault:
    """Fernet encryption for the stored API key.

    The symmetric key lives in its own file (mode 0600 where supported) and is
    created on first use. Tokens are written as ``fernet:<token>``.
    """

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._cipher().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: For a foreign prefix or a token this key cannot open.
        """
        if not token:
            return ""
        scheme, separator, body = token.partition(":")
        if not separator:
            scheme, body = self.name, token
        if scheme != self.name:
            raise ValueError(f"Unknown secret token prefix {scheme!r}")
        try:
            return self._cipher().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("API key token cannot be decrypted with this key") from exc

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._read_or_create_key())
        return self._fernet

    def _read_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self._key_path.with_suffix(".tmp")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(staging, 0o600)
        staging.replace(self._key_path)
        LOGGER.info("Created settings encryption key at %s", self._key_path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON.

    Precedence on load: file, then ``overrides`` (command line), then
    ``THREADLOOM_*`` environment variables.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        payload = self._read()
        settings = Settings()
        if payload:
            settings = self._from_file(payload)
        LOGGER.debug("Settings loaded from %s (model=%s)", self._path, settings.model)
        if overrides:
            settings = settings.merged(overrides, source="CLI")
        return settings.merged(_environment_overrides(), source="environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""
        payload = asdict(settings)
        api_key = payload.pop("api_key", "")
        if api_key:
            payload[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        payload["version"] = _SETTINGS_VERSION

        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_suffix(".tmp")
        staging.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _from_file(self, payload: Dict[str, Any]) -> Settings:
        ciphertext = payload.pop(_API_KEY_FIELD, None)
        plaintext = payload.pop("api_key", None)
        try:
            settings = Settings.from_payload(payload)
        except TypeError as exc:
            LOGGER.warning("Ignoring malformed settings in %s: %s", self._path, exc)
            settings = Settings()

        api_key = ""
        if ciphertext:
            try:
                api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
        elif plaintext:
            LOGGER.info("Found a plaintext API key in %s; it will be stored encrypted", self._path)
            api_key = plaintext
        if api_key:
            settings = replace(settings, api_key=api_key)

        if plaintext or payload.get("version") != _SETTINGS_VERSION:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to rewrite settings file %s: %s", self._path, exc)
        return settings

    def _read(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload


def _environment_overrides() -> Dict[str, Any]:
    defaults = Settings()
    overrides: Dict[str, Any] = {}
    for name in _ENV_FIELDS:
        env_name = f"{_ENV_PREFIX}{name.upper()}"
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        kind = type(getattr(defaults, name))
        try:
            overrides[name] = _coerce(kind, raw)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid %s", env_name, raw, kind.__name__)
    return overrides


def _coerce(kind: type, raw: str) -> Any:
    if kind is bool:
        return raw.strip().lower() in _TRUE_VALUES
    if kind is int:
        return int(raw, 10)
    if kind is float:
        return float(raw)
    return raw


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""
    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Copy of ``headers`` with credential-bearing values masked."""
    if not isinstance(headers, Mapping):
        return {}
    return {
        key: redact_secret(value) if key.lower() in _SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }
