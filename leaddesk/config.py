from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:3000"
    api_token: Optional[str] = None
    company_id: Optional[str] = None
    http_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    reply_mode: str = "manual"
    reply_delay_seconds: int = 8
    reply_delay_min_seconds: int = 1
    reply_delay_max_seconds: int = 120
    smart_delay_enabled: bool = False
    smart_delay_low_seconds: int = 4
    smart_delay_high_seconds: int = 12

    scheduling_settings_cache_seconds: float = 60.0
    offered_slot_count: int = 5

    class Config:
        env_file = ".env"
        env_prefix = "LEADDESK_"
        extra = "ignore"


settings = Settings()
