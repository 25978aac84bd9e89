import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Resource backend: "static" serves a local inventory, "kubernetes" talks to the API server
    resource_backend: Literal["static", "kubernetes"] = "static"
    # YAML inventory of resource instances used by the static backend (optional)
    inventory_path: str = Field(default="", validation_alias="INVENTORY_PATH")

    # Kubernetes API Configuration
    kubernetes_api_url: str = "https://kubernetes.default.svc"
    kubernetes_token_path: str = f"{SERVICE_ACCOUNT_DIR}/token"
    kubernetes_ca_path: str = f"{SERVICE_ACCOUNT_DIR}/ca.crt"
    kubernetes_verify_tls: bool = True
    # Upper bound for a single list call against the resource backend
    resource_list_timeout_seconds: float = 10.0

    # CORS Configuration
    cors_origins: str = "http://localhost:3000"

    # Application Configuration
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def model_post_init(self, __context: object) -> None:
        """Validate the log level early so a typo fails at startup."""
        level = self.log_level.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {self.log_level}")
        self.log_level = level


settings = Settings()
