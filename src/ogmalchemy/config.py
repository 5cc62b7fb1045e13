# src/ogmalchemy/config.py
"""ogmalchemy configuration via environment variables."""

from __future__ import annotations

from typing import Literal, Tuple

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class OGMSettings(BaseSettings):
    """
    Connection and mapping settings, read from ``OGM_*`` environment variables.

    Example:
        ```python
        settings = OGMSettings()            # OGM_URI, OGM_USER, OGM_PASSWORD, ...
        engine = GraphEngine.from_settings(settings)
        ```
    """

    # Database
    uri: str = "bolt://localhost:7687"
    user: str = "neo4j"
    password: SecretStr = SecretStr("neo4j")
    database: str = "neo4j"

    # Mapping
    default_depth: int = Field(default=1, ge=-1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_prefix="OGM_", env_file=".env", extra="ignore")

    @property
    def auth(self) -> Tuple[str, str]:
        return (self.user, self.password.get_secret_value())
