from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IGW_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"

    # Identity resolution
    identity_backend: str = "static"
    static_tokens: str = Field(
        default="dev-token:dev-user", description="Comma separated token:user_id pairs"
    )

    # Quota ledger
    ledger_backend: str = "memory"
    ledger_default_limit: int = 100
    ledger_seed_profiles: str = Field(
        default="", description="Comma separated user_id:usage_count:usage_limit triples"
    )

    # Supabase collaborators
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    supabase_timeout_s: float = 5.0

    # Upstream generative model
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_api_key: str | None = None
    default_model: str = "gemini-1.5-pro"
    max_output_tokens: int = 4096
    upstream_stream_format: str = "json"
    upstream_connect_timeout_s: float = 10.0
    upstream_read_timeout_s: float = 60.0

    # Relay
    relay_queue_size: int = 32
    relay_max_segment_bytes: int = 1_048_576

    cors_allow_origins: str = "*"
    metrics_enabled: bool = True

    @property
    def static_token_map(self) -> dict[str, str]:
        """Parse ``token:user_id,token:user_id`` into a dict."""
        result: dict[str, str] = {}
        for item in self.static_tokens.split(","):
            item = item.strip()
            if ":" not in item:
                continue
            token, user_id = item.split(":", 1)
            token = token.strip()
            user_id = user_id.strip()
            if token and user_id:
                result[token] = user_id
        return result

    @property
    def ledger_seed_profile_map(self) -> dict[str, tuple[int, int]]:
        """Parse ``user:count:limit`` triples; malformed entries are skipped."""
        result: dict[str, tuple[int, int]] = {}
        for item in self.ledger_seed_profiles.split(","):
            parts = [part.strip() for part in item.split(":")]
            if len(parts) != 3 or not parts[0]:
                continue
            try:
                usage_count = int(parts[1])
                usage_limit = int(parts[2])
            except ValueError:
                continue
            if usage_count < 0 or usage_limit < 0:
                continue
            result[parts[0]] = (usage_count, usage_limit)
        return result

    @property
    def cors_allow_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_allow_origins.split(",") if item.strip()]

    @property
    def identity_backend_normalized(self) -> str:
        return self.identity_backend.strip().lower()

    @property
    def ledger_backend_normalized(self) -> str:
        return self.ledger_backend.strip().lower()

    @property
    def upstream_stream_format_normalized(self) -> str:
        return self.upstream_stream_format.strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
