from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator, model_validator

from repomon.schemas import RepoMonBaseModel

DEFAULT_INFERENCE_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_INFERENCE_MODEL = "gpt-4o-mini"
DEFAULT_INFERENCE_API_KEY_ENV_VAR = "REPOMON_INFERENCE_API_KEY"
DEFAULT_GITHUB_API_BASE = "https://api.github.com"
DEFAULT_GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"


class ConfidenceLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


def _parse_bool(raw: str, *, env_var: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{env_var} must be a boolean value")


def _parse_float(raw: str, *, env_var: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{env_var} must be a number") from exc


def _normalize_optional_token(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    return text


def _validate_score(value: float) -> float:
    if value < 0 or value > 1:
        raise ValueError("scores must be between 0 and 1")
    return value


class ConfidencePolicy(RepoMonBaseModel):
    git: float = 0.9
    git_empty_history: float = 0.6
    api: float = 0.85
    local: float = 0.6
    local_vcs_bonus: float = 0.1
    document: float = 0.6
    document_inference: float = 0.5
    ai_document: float = 0.5
    ai_fallback: float = 0.3
    minimal: float = 0.1
    enhancement_threshold: float = 0.8
    ai_bonus: float = 0.1
    ai_ceiling: float = 0.9
    low_min_score: float = 0.35
    medium_min_score: float = 0.65
    high_min_score: float = 0.85

    @field_validator(
        "git",
        "git_empty_history",
        "api",
        "local",
        "local_vcs_bonus",
        "document",
        "document_inference",
        "ai_document",
        "ai_fallback",
        "minimal",
        "enhancement_threshold",
        "ai_bonus",
        "ai_ceiling",
        "low_min_score",
        "medium_min_score",
        "high_min_score",
    )
    @classmethod
    def validate_score_range(cls, value: float) -> float:
        return _validate_score(value)

    @model_validator(mode="after")
    def validate_ordering(self) -> "ConfidencePolicy":
        if self.low_min_score > self.medium_min_score:
            raise ValueError("low_min_score must be <= medium_min_score")
        if self.medium_min_score > self.high_min_score:
            raise ValueError("medium_min_score must be <= high_min_score")
        if self.minimal > 0.1:
            raise ValueError("minimal confidence must be <= 0.1")
        if self.local + self.local_vcs_bonus > 1:
            raise ValueError("local + local_vcs_bonus must be <= 1")
        return self

    def level_for_score(self, score: float) -> ConfidenceLevel | None:
        if score >= self.high_min_score:
            return ConfidenceLevel.high
        if score >= self.medium_min_score:
            return ConfidenceLevel.medium
        if score >= self.low_min_score:
            return ConfidenceLevel.low
        return None


class ExecutorSettings(RepoMonBaseModel):
    strategy_timeout_seconds: float = 20.0
    overall_deadline_seconds: float = 45.0
    max_workers: int = 8

    @field_validator("strategy_timeout_seconds", "overall_deadline_seconds")
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be >= 1")
        return value


class InferenceSettings(RepoMonBaseModel):
    enabled: bool = True
    endpoint: str = DEFAULT_INFERENCE_ENDPOINT
    model: str = DEFAULT_INFERENCE_MODEL
    api_key_env_var: str = DEFAULT_INFERENCE_API_KEY_ENV_VAR
    temperature: float = 0.2
    request_timeout_seconds: float = 30.0

    @field_validator("endpoint", "model", "api_key_env_var")
    @classmethod
    def validate_non_empty_text(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, value: float) -> float:
        if value < 0 or value > 2:
            raise ValueError("temperature must be between 0 and 2")
        return value


class GitHubSettings(RepoMonBaseModel):
    api_base: str = DEFAULT_GITHUB_API_BASE
    token_env_var: str = DEFAULT_GITHUB_TOKEN_ENV_VAR
    request_timeout_seconds: float = 10.0

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, value: str) -> str:
        text = value.strip().rstrip("/")
        if not text.startswith(("http://", "https://")):
            raise ValueError("api_base must use http or https")
        return text


class GitSettings(RepoMonBaseModel):
    executable: str = "git"
    history_depth: int = 50
    command_timeout_seconds: float = 15.0

    @field_validator("history_depth")
    @classmethod
    def validate_positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("counts must be >= 1")
        return value


class MonitorConfig(RepoMonBaseModel):
    confidence_policy: ConfidencePolicy = Field(default_factory=ConfidencePolicy)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    inference: InferenceSettings = Field(default_factory=InferenceSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    rule_table_path: str | None = None

    @field_validator("rule_table_path")
    @classmethod
    def normalize_rule_table_path(cls, value: str | None) -> str | None:
        return _normalize_optional_token(value)


def load_monitor_config_file(path: Path) -> MonitorConfig:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return MonitorConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return MonitorConfig.model_validate(raw)


def load_monitor_config_from_env(
    environ: Mapping[str, str] | None = None,
    *,
    base_config: MonitorConfig | None = None,
) -> MonitorConfig:
    env = dict(os.environ if environ is None else environ)
    config = base_config
    if config is None and "REPOMON_CONFIG_FILE" in env:
        config = load_monitor_config_file(Path(env["REPOMON_CONFIG_FILE"]))
    config = config or MonitorConfig()
    payload: dict[str, Any] = config.model_dump(mode="python")

    float_overrides = {
        "REPOMON_ENHANCEMENT_THRESHOLD": ("confidence_policy", "enhancement_threshold"),
        "REPOMON_AI_BONUS": ("confidence_policy", "ai_bonus"),
        "REPOMON_STRATEGY_TIMEOUT": ("executor", "strategy_timeout_seconds"),
        "REPOMON_OVERALL_DEADLINE": ("executor", "overall_deadline_seconds"),
        "REPOMON_INFERENCE_TEMPERATURE": ("inference", "temperature"),
    }
    for env_var, (section, key) in float_overrides.items():
        if env_var in env:
            payload[section][key] = _parse_float(env[env_var], env_var=env_var)

    if "REPOMON_MAX_WORKERS" in env:
        payload["executor"]["max_workers"] = int(_parse_float(env["REPOMON_MAX_WORKERS"], env_var="REPOMON_MAX_WORKERS"))
    if "REPOMON_INFERENCE_ENABLED" in env:
        payload["inference"]["enabled"] = _parse_bool(
            env["REPOMON_INFERENCE_ENABLED"],
            env_var="REPOMON_INFERENCE_ENABLED",
        )

    text_overrides = {
        "REPOMON_INFERENCE_ENDPOINT": ("inference", "endpoint"),
        "REPOMON_INFERENCE_MODEL": ("inference", "model"),
        "REPOMON_GITHUB_API_BASE": ("github", "api_base"),
        "REPOMON_GIT_EXECUTABLE": ("git", "executable"),
    }
    for env_var, (section, key) in text_overrides.items():
        if env_var in env:
            payload[section][key] = env[env_var].strip()

    if "REPOMON_RULE_TABLE" in env:
        payload["rule_table_path"] = env["REPOMON_RULE_TABLE"]

    return MonitorConfig.model_validate(payload)
