from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Application
    app_name: str = "Battle Stats Sync"
    debug: bool = False
    api_version: str = "v1"

    # Remote store
    access_key: str = ""
    websocket_url: str = "wss://stats.example.com/ws"
    rest_base_url: str = "https://stats.example.com/api/battle-stats/"

    # Real-time client
    reconnect_attempts: int = 5
    reconnect_delay: float = 1.0  # seconds

    # Sync timing (seconds)
    debounce_delay: float = 1.0
    save_fallback_window: float = 3.0
    pull_timeout: float = 10.0
    request_timeout: float = 10.0

    # Event handling delays (seconds)
    hangar_delay: float = 1.0
    random_delay_min: float = 0.0
    random_delay_max: float = 0.5
    ui_update_delay: float = 0.1
    settle_delay: float = 0.01

    # Participant, until the game client reports one
    player_id: Optional[str] = None
    player_name: Optional[str] = None

    # Local state
    state_file: str = "battle_stats_state.json"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
