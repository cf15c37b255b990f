# config.py
import os
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

SERVICE_NAMES = ("user", "restaurant", "order", "payment", "notification")

DEFAULT_SERVICE_URLS = {
    "user": "http://localhost:3001",
    "restaurant": "http://localhost:3002",
    "order": "http://localhost:3003",
    "payment": "http://localhost:3004",
    "notification": "http://localhost:3005",
}


class GatewayConfig(BaseModel):
    """Gateway settings, built once at startup and handed to ``create_app``."""

    port: int = 3000
    jwt_secret: str = Field(..., min_length=1)
    jwt_algorithm: str = "HS256"
    service_urls: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SERVICE_URLS))
    upstream_timeout: float = Field(default=30.0, gt=0, description="Upstream connect/read timeout in seconds")
    rate_limit_max: int = Field(default=100, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Read the gateway settings from the process environment (and ``.env``)."""
        load_dotenv()

        jwt_secret = os.getenv("JWT_SECRET")
        if not jwt_secret:
            raise ValueError("JWT_SECRET environment variable not set")

        service_urls = {
            name: os.getenv(f"{name.upper()}_SERVICE_URL", DEFAULT_SERVICE_URLS[name])
            for name in SERVICE_NAMES
        }
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            port=int(os.getenv("PORT", 3000)),
            jwt_secret=jwt_secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            service_urls=service_urls,
            upstream_timeout=float(os.getenv("UPSTREAM_TIMEOUT", 30)),
            rate_limit_max=int(os.getenv("RATE_LIMIT_MAX", 100)),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 60)),
            cors_origins=origins or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
