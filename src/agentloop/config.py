"""Settings dataclass and persistence helpers.

Settings are read from ``~/.agentloop/settings.json`` (or an explicit path),
then CLI overrides, then ``AGENTLOOP_*`` environment variables are applied on
top. The result bridges to :class:`~agentloop.client.ClientSettings` and
:class:`~agentloop.orchestration.types.GenerationSettings`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

from .client import ClientSettings
from .orchestration.tools.types import ToolSpec
from .orchestration.types import GenerationSettings

__all__ = [
    "Settings",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".agentloop"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_API_KEY": "api_key",
    "AGENTLOOP_BASE_URL": "base_url",
    "AGENTLOOP_MODEL": "model",
    "AGENTLOOP_ORGANIZATION": "organization",
    "AGENTLOOP_SYSTEM_INSTRUCTION": "system_instruction",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_DEBUG_LOGGING": "debug_logging",
    "AGENTLOOP_REQUIRE_PLAN_APPROVAL": "require_plan_approval",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_REQUEST_TIMEOUT": "request_timeout",
    "AGENTLOOP_TEMPERATURE": "temperature",
    "AGENTLOOP_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_MAX_OUTPUT_TOKENS": "max_output_tokens",
    "AGENTLOOP_MAX_TURNS": "max_turns",
    "AGENTLOOP_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float | None = 0.2
    max_output_tokens: int | None = None
    system_instruction: str = ""
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_turns: int = 25
    tool_timeout: float = 30.0
    require_plan_approval: bool = False
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)

    def to_client_settings(self) -> ClientSettings:
        """Settings for the OpenAI-compatible provider."""
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )

    def to_generation_settings(self, tools: Sequence[ToolSpec] = ()) -> GenerationSettings:
        """Validated per-run settings; raises ``SettingsError`` on bad values."""
        return GenerationSettings(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            system_instruction=self.system_instruction,
            tools=tuple(tools),
            require_plan_approval=self.require_plan_approval,
            model=self.model,
            max_turns=self.max_turns,
        )


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if payload.get("version") != _SETTINGS_VERSION:
                LOGGER.debug("Settings file %s has version %s", self._path, payload.get("version"))
        LOGGER.debug("Settings loaded from %s (%s)", self._path, "found" if payload else "defaults")

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes.

        The API key is never written; supply it through ``AGENTLOOP_API_KEY``.
        """

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        data.pop("api_key", None)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {f.name for f in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        headers_override = filtered.get("default_headers")
        if isinstance(headers_override, Mapping):
            merged_headers = dict(settings.default_headers or {})
            merged_headers.update(headers_override)
            filtered["default_headers"] = merged_headers
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {f.name for f in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
