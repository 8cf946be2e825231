"""
Runtime settings.

Environment Variables:
    DEVICETRUST_LOG_LEVEL: Log level - default: INFO
    DEVICETRUST_LOG_FORMAT: json or text - default: json
    DEVICETRUST_METRICS_ENABLED: Enable metrics server (true/false) - default: false
    DEVICETRUST_METRICS_PORT: HTTP port for /metrics - default: 9108
    DEVICETRUST_ALGORITHMS: Comma separated encryption algorithms advertised in bundles
    DEVICETRUST_ONE_TIME_KEY_BATCH: One-time keys generated per upload - default: 50
    DEVICETRUST_SAS_EMOJI_COUNT: Emoji shown per verification - default: 7
    DEVICETRUST_REQUEST_TIMEOUT: Seconds before an unanswered request is cancelled (unset = never)
    DEVICETRUST_KEY_DIR: Directory holding persisted identity keys - default: ~/.devicetrust/keys
"""

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_ALGORITHMS = ["m.olm.v1.curve25519-aes-sha2", "m.megolm.v1.aes-sha2"]


def _default_key_dir() -> str:
    return str(Path.home() / ".devicetrust" / "keys")


class Settings(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"
    metrics_enabled: bool = False
    metrics_port: int = 9108
    algorithms: List[str] = Field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    one_time_key_batch: int = Field(default=50, gt=0)
    sas_emoji_count: int = Field(default=7, ge=1, le=7)
    request_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    key_dir: str = Field(default_factory=_default_key_dir)

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from DEVICETRUST_* environment variables."""
        data = {}
        env = os.environ

        if "DEVICETRUST_LOG_LEVEL" in env:
            data["log_level"] = env["DEVICETRUST_LOG_LEVEL"]
        if "DEVICETRUST_LOG_FORMAT" in env:
            data["log_format"] = env["DEVICETRUST_LOG_FORMAT"]
        if "DEVICETRUST_METRICS_ENABLED" in env:
            data["metrics_enabled"] = env["DEVICETRUST_METRICS_ENABLED"].lower() in ("1", "true", "yes")
        if "DEVICETRUST_METRICS_PORT" in env:
            data["metrics_port"] = env["DEVICETRUST_METRICS_PORT"]
        if env.get("DEVICETRUST_ALGORITHMS"):
            data["algorithms"] = [a.strip() for a in env["DEVICETRUST_ALGORITHMS"].split(",") if a.strip()]
        if "DEVICETRUST_ONE_TIME_KEY_BATCH" in env:
            data["one_time_key_batch"] = env["DEVICETRUST_ONE_TIME_KEY_BATCH"]
        if "DEVICETRUST_SAS_EMOJI_COUNT" in env:
            data["sas_emoji_count"] = env["DEVICETRUST_SAS_EMOJI_COUNT"]
        if env.get("DEVICETRUST_REQUEST_TIMEOUT"):
            data["request_timeout_seconds"] = env["DEVICETRUST_REQUEST_TIMEOUT"]
        if env.get("DEVICETRUST_KEY_DIR"):
            data["key_dir"] = env["DEVICETRUST_KEY_DIR"]

        return cls(**data)
