# articlerelay/config.py
import json
from typing import Annotated, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False  # JSON log lines (production), colored console otherwise

    # Discord REST API
    discord_bot_token: str | None = None
    discord_api_base: str = "https://discord.com/api"
    discord_api_version: int = 10
    discord_request_timeout: float = 25.0  # seconds, total per request

    # Article Dispatch
    # Default for articles that do not say whether their roles should be
    # made mentionable around delivery.
    toggle_role_mentions: bool = True
    # Platform error codes treated as "missing permissions" while toggling a role.
    # 50013 = Discord "Missing Permissions". Env: "50013", "50013,50001" or "[50013, 50001]"
    permission_denied_codes: Annotated[list[int], NoDecode] = [50013]
    # Process destinations of one flush concurrently inside each phase
    flush_concurrent_destinations: bool = False

    # Monitoring
    enable_metrics: bool = True

    @field_validator("permission_denied_codes", mode="before")
    @classmethod
    def parse_permission_denied_codes(cls, v):
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [int(part) for part in v.split(",") if part.strip()]
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def discord_api_url(self) -> str:
        """Versioned REST base URL, e.g. https://discord.com/api/v10"""
        return f"{self.discord_api_base.rstrip('/')}/v{self.discord_api_version}"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if not self.discord_bot_token:
            missing.append("discord_bot_token")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.discord_bot_token:
        warnings.append("discord_bot_token is not set (Discord REST calls will be rejected with 401).")

    if s.toggle_role_mentions and not s.permission_denied_codes:
        warnings.append(
            "permission_denied_codes is empty: a missing Manage Roles permission will fail every flush."
        )

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
