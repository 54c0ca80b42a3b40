"""Chat sync configuration — loaded from environment / .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CHATSYNC_", extra="ignore")

    env: str = "development"
    database_url: str = "sqlite+aiosqlite:///./chatsync.db"

    # Chat server (the client connects here)
    chat_host: str = "127.0.0.1"
    chat_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # Generation
    default_model: str = "claude-3-5-sonnet-20241022"
    max_agent_steps: int = 10  # tool round-trips per user turn
    tools_requiring_confirmation: list[str] = ["sendEmail"]

    # Client reconnection (exponential backoff, milliseconds)
    auto_reconnect: bool = True
    reconnect_base_delay_ms: int = 1000
    reconnect_max_delay_ms: int = 30000

    # Client-side retention
    max_messages: int = 500
    max_artifacts: int = 50

    @property
    def chat_ws_url(self) -> str:
        # Server binds to 0.0.0.0 but clients connect via localhost
        host = "127.0.0.1" if self.chat_host == "0.0.0.0" else self.chat_host
        return f"ws://{host}:{self.chat_port}/api/chat/ws"


settings = Settings()
