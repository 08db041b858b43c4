from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_WORD_BUDGET = 425


@dataclass
class ComposerSettings:
    word_budget: int = DEFAULT_WORD_BUDGET
    watchdog_interval_s: float = 30.0
    cache_backend: str = "memory"
    redis_url: str = "redis://redis:6379/0"
    style_profile_ttl_s: int = 24 * 60 * 60
    source_embeddings_ttl_s: int = 24 * 60 * 60
    job_mapping_ttl_s: int = 60 * 60
    llm_provider: str = "mock"
    openai_api_key: Optional[str] = None
    openai_model: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_temperature: Optional[float] = None
    openai_max_output_tokens: Optional[int] = None
    openai_timeout_s: Optional[float] = None
    openai_max_retries: Optional[int] = None
    candidate_name: str = ""

    def cache_ttls(self) -> Dict[str, int]:
        return {
            "style_profile": self.style_profile_ttl_s,
            "source_embeddings": self.source_embeddings_ttl_s,
            "job_mapping": self.job_mapping_ttl_s,
        }


_ENV_KEYS: Dict[str, str] = {
    "word_budget": "WORD_BUDGET",
    "watchdog_interval_s": "WATCHDOG_INTERVAL_S",
    "cache_backend": "CACHE_BACKEND",
    "redis_url": "REDIS_URL",
    "style_profile_ttl_s": "STYLE_PROFILE_TTL_S",
    "source_embeddings_ttl_s": "SOURCE_EMBEDDINGS_TTL_S",
    "job_mapping_ttl_s": "JOB_MAPPING_TTL_S",
    "llm_provider": "LLM_PROVIDER",
    "openai_api_key": "OPENAI_API_KEY",
    "openai_model": "OPENAI_MODEL",
    "openai_base_url": "OPENAI_BASE_URL",
    "openai_temperature": "OPENAI_TEMPERATURE",
    "openai_max_output_tokens": "OPENAI_MAX_OUTPUT_TOKENS",
    "openai_timeout_s": "OPENAI_TIMEOUT_S",
    "openai_max_retries": "OPENAI_MAX_RETRIES",
    "candidate_name": "CANDIDATE_NAME",
}

_INT_FIELDS = {
    "word_budget",
    "style_profile_ttl_s",
    "source_embeddings_ttl_s",
    "job_mapping_ttl_s",
    "openai_max_output_tokens",
    "openai_max_retries",
}
_FLOAT_FIELDS = {"watchdog_interval_s", "openai_temperature", "openai_timeout_s"}
_POSITIVE_FIELDS = {
    "word_budget",
    "watchdog_interval_s",
    "style_profile_ttl_s",
    "source_embeddings_ttl_s",
    "job_mapping_ttl_s",
}


def _parse_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        return _parse_optional_int(value)
    if name in _FLOAT_FIELDS:
        return _parse_optional_float(value)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _apply(settings: ComposerSettings, raw: Mapping[str, Any]) -> None:
    known = {field.name for field in fields(ComposerSettings)}
    for name, value in raw.items():
        if name not in known:
            continue
        parsed = _coerce(name, value)
        if parsed is None:
            continue
        if name in _POSITIVE_FIELDS and parsed <= 0:
            continue
        if name == "cache_backend" or name == "llm_provider":
            parsed = parsed.lower()
        setattr(settings, name, parsed)


def _load_yaml(config_path: str) -> Dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    section = data.get("composer", {}) if isinstance(data, dict) else {}
    return section if isinstance(section, dict) else {}


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_path: str | None = None,
) -> ComposerSettings:
    """Build settings from an optional YAML file, then environment overrides.

    The YAML file is read from ``config_path`` or ``COMPOSER_CONFIG_PATH`` and
    must keep its values under a top-level ``composer:`` key. Unparseable or
    non-positive numbers are ignored and the default is kept.
    """
    env = os.environ if environ is None else environ
    settings = ComposerSettings()
    path = config_path or env.get("COMPOSER_CONFIG_PATH")
    if path:
        _apply(settings, _load_yaml(path))
    _apply(settings, {name: env.get(key) for name, key in _ENV_KEYS.items()})
    return settings
