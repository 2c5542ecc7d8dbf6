from __future__ import annotations

from pathlib import Path

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    SERVER_URL: str = "ws://localhost:8000/ws/relay"
    IDENTITY_FILE: Path = Path.home() / ".room-relay" / "identity.json"
    DISPLAY_NAME: str = "Anon"
    PLACEHOLDER_TEXT: str = "Encrypted message (unlock to view)"

    model_config = ConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        extra="ignore",
    )


client_settings = ClientSettings()
