import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):

    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "screech"
    redis_url: Optional[str] = None

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    message_max_length: int = 1000
    messages_page_size: int = 50
    conversations_page_size: int = 20
    max_page_size: int = 100

    # seconds
    write_timeout: float = 5.0
    push_timeout: float = 1.0

    get_or_create_retries: int = 3

    fcm_service_account_file: Optional[str] = None
    fcm_project_id: Optional[str] = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = {
            "mongodb_uri": os.getenv("MONGODB_URI"),
            "mongodb_db": os.getenv("MONGODB_DB"),
            "redis_url": os.getenv("REDIS_URL"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_algorithm": os.getenv("JWT_ALGORITHM"),
            "message_max_length": os.getenv("MESSAGE_MAX_LENGTH"),
            "messages_page_size": os.getenv("MESSAGES_PAGE_SIZE"),
            "conversations_page_size": os.getenv("CONVERSATIONS_PAGE_SIZE"),
            "max_page_size": os.getenv("MAX_PAGE_SIZE"),
            "write_timeout": os.getenv("WRITE_TIMEOUT_SECONDS"),
            "push_timeout": os.getenv("PUSH_TIMEOUT_SECONDS"),
            "get_or_create_retries": os.getenv("GET_OR_CREATE_RETRIES"),
            "fcm_service_account_file": os.getenv("FCM_SERVICE_ACCOUNT_FILE"),
            "fcm_project_id": os.getenv("FCM_PROJECT_ID"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # unset variables fall back to the field defaults
        return cls(**{k: v for k, v in env.items() if v})

    @property
    def fcm_enabled(self) -> bool:
        return bool(self.fcm_service_account_file and self.fcm_project_id)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
