import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8080",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8080",
]


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    service_version: str = "0.1.0"
    environment: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    reload_ws_url: str = "ws://localhost:3000/ws"
    reload_max_attempts: int = 5
    reload_base_delay: float = 1.0
    reload_notice_delay: float = 1.0
    ws_send_queue_size: int = 100
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def get_settings() -> Settings:
    origins = _split_csv(os.getenv("CORS_ORIGINS")) or list(DEFAULT_CORS_ORIGINS)
    port = int(os.getenv("PORT", "3000"))

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        service_version=os.getenv("SERVICE_VERSION", "0.1.0"),
        environment=os.getenv("APP_ENV", "development"),
        cors_origins=origins,
        # Par défaut le client écoute le /ws du service local
        reload_ws_url=os.getenv("RELOAD_WS_URL", f"ws://localhost:{port}/ws"),
        reload_max_attempts=int(os.getenv("RELOAD_MAX_ATTEMPTS", "5")),
        reload_base_delay=float(os.getenv("RELOAD_BASE_DELAY", "1.0")),
        reload_notice_delay=float(os.getenv("RELOAD_NOTICE_DELAY", "1.0")),
        ws_send_queue_size=int(os.getenv("WS_SEND_QUEUE_SIZE", "100")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
