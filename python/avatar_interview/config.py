"""
Interview configuration loading.

Resolves the provider API key, per-round replica / persona mappings and
host settings from the environment (optionally seeded from python/.env).
Placeholder sentinels and blank values mean "not configured" and never
raise; malformed numeric values fail fast.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .client import API_KEY_PLACEHOLDER, DEFAULT_BASE_URL, is_configured_value


__all__ = [
    "InterviewConfig",
    "load_interview_config",
    "clean_config_value",
    "STOCK_PERSONA_ID",
    "REPLICA_ENV_VARS",
    "REPLICA_PLACEHOLDERS",
]


logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / ".env"

STOCK_PERSONA_ID = "p9a95912"
DEFAULT_FRAME_ORIGIN = "https://tavus.daily.co"
DEFAULT_ADVANCE_DELAY_SECONDS = 1.0

REPLICA_ENV_VARS: dict[str, str] = {
    "screening": "TAVUS_HR_REPLICA_ID",
    "technical": "TAVUS_TECHNICAL_REPLICA_ID",
    "behavioral": "TAVUS_BEHAVIORAL_REPLICA_ID",
}

REPLICA_PLACEHOLDERS: dict[str, str] = {
    "screening": "your_hr_replica_id_here",
    "technical": "your_technical_replica_id_here",
    "behavioral": "your_behavioral_replica_id_here",
}

PERSONA_ENV_VARS: dict[str, str] = {
    "screening": "TAVUS_HR_PERSONA_ID",
    "technical": "TAVUS_TECHNICAL_PERSONA_ID",
    "behavioral": "TAVUS_BEHAVIORAL_PERSONA_ID",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class InterviewConfig:
    """Already-resolved configuration handed to the orchestrator and host."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    replica_ids: Mapping[str, str] = field(default_factory=dict)
    persona_ids: Mapping[str, str] = field(default_factory=dict)
    default_persona_id: str = STOCK_PERSONA_ID
    frame_origin: str = DEFAULT_FRAME_ORIGIN
    host_origin: Optional[str] = None
    interview_type: Optional[str] = None
    advance_delay_seconds: float = DEFAULT_ADVANCE_DELAY_SECONDS
    apply_greenscreen: Optional[bool] = None
    host_bind: str = "0.0.0.0"
    host_port: int = 8770
    artifact_dir: Path = Path(__file__).parent.parent / "output"

    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None

    @property
    def callback_url(self) -> Optional[str]:
        if not self.host_origin:
            return None
        return f"{self.host_origin.rstrip('/')}/api/tavus/callback"


def clean_config_value(value: Optional[str], placeholder: Optional[str] = None) -> Optional[str]:
    """Return the stripped value, or None if blank or the placeholder sentinel."""
    if not is_configured_value(value, placeholder):
        return None
    return value.strip()


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number. Got: {raw}") from exc
    if value < 0:
        raise RuntimeError(f"{name} must be >= 0. Got: {value}.")
    return value


def _parse_port(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        port = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer. Got: {raw}") from exc
    if port < 1 or port > 65535:
        raise RuntimeError(f"{name} must be in range 1-65535. Got: {port}.")
    return port


def _parse_optional_bool(env: Mapping[str, str], name: str) -> Optional[bool]:
    raw = (env.get(name) or "").strip().lower()
    if not raw:
        return None
    return raw in _TRUE_VALUES


def load_interview_config(env: Optional[Mapping[str, str]] = None) -> InterviewConfig:
    """
    Load interview configuration.

    Args:
        env: Mapping to read from. Defaults to os.environ after loading
            python/.env (existing variables are not overridden).

    Returns:
        The resolved InterviewConfig.

    Raises:
        RuntimeError: If a numeric setting is malformed.
    """
    if env is None:
        load_dotenv(_env_path)
        env = os.environ

    api_key = clean_config_value(env.get("TAVUS_API_KEY"), API_KEY_PLACEHOLDER)

    replica_ids: dict[str, str] = {}
    for round_id, var_name in REPLICA_ENV_VARS.items():
        value = clean_config_value(env.get(var_name), REPLICA_PLACEHOLDERS[round_id])
        if value:
            replica_ids[round_id] = value

    persona_ids: dict[str, str] = {}
    for round_id, var_name in PERSONA_ENV_VARS.items():
        value = clean_config_value(env.get(var_name))
        if value:
            persona_ids[round_id] = value

    artifact_override = clean_config_value(env.get("ARTIFACT_DIR"))

    config = InterviewConfig(
        api_key=api_key,
        base_url=clean_config_value(env.get("TAVUS_BASE_URL")) or DEFAULT_BASE_URL,
        replica_ids=replica_ids,
        persona_ids=persona_ids,
        default_persona_id=clean_config_value(env.get("TAVUS_PERSONA_ID")) or STOCK_PERSONA_ID,
        frame_origin=clean_config_value(env.get("TAVUS_FRAME_ORIGIN")) or DEFAULT_FRAME_ORIGIN,
        host_origin=clean_config_value(env.get("HOST_ORIGIN")),
        interview_type=(clean_config_value(env.get("INTERVIEW_TYPE")) or "").lower() or None,
        advance_delay_seconds=_parse_float(
            env, "ROUND_ADVANCE_DELAY_SECONDS", DEFAULT_ADVANCE_DELAY_SECONDS
        ),
        apply_greenscreen=_parse_optional_bool(env, "TAVUS_GREENSCREEN"),
        host_bind=clean_config_value(env.get("HOST_BIND")) or "0.0.0.0",
        host_port=_parse_port(env, "HOST_PORT", 8770),
        artifact_dir=(
            Path(artifact_override).expanduser()
            if artifact_override
            else InterviewConfig.artifact_dir
        ),
    )

    logger.info(
        "Interview config loaded: has_api_key=%s configured_rounds=%s interview_type=%s",
        config.has_api_key,
        sorted(config.replica_ids),
        config.interview_type,
    )
    return config
