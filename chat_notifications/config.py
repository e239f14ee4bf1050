from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the chat notification functions"""

    # Application settings
    service_name: str = "chat-notifications"
    log_level: str = "INFO"
    environment: str = "dev"

    # Firebase settings
    firebase_secret: Optional[str] = None
    firestore_timeout: float = 10.0  # seconds
    fcm_http_timeout: float = 10.0  # seconds
    fcm_dry_run: bool = False

    # Document layout
    users_collection: str = "users"
    chat_room_separator: str = "-"

    # Notification settings
    notification_sound: str = "default"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# Create settings instance
settings = Settings()
