"""Server settings, read once from the environment at startup."""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    ollama_host: str = "http://akio-ollama:11434"
    model: str = "qwen3:8b"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    """Build Settings from HOST, PORT, OLLAMA_HOST, OLLAMA_MODEL and CORS_ORIGINS."""
    defaults = Settings()
    origins = os.environ.get("CORS_ORIGINS")

    return Settings(
        host=os.environ.get("HOST", defaults.host),
        port=int(os.environ.get("PORT", defaults.port)),
        ollama_host=os.environ.get("OLLAMA_HOST", defaults.ollama_host).rstrip("/"),
        model=os.environ.get("OLLAMA_MODEL", defaults.model),
        cors_origins=(
            [o.strip() for o in origins.split(",") if o.strip()]
            if origins else defaults.cors_origins
        ),
    )
