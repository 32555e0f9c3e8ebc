"""Application configuration."""
from pydantic_settings import BaseSettings
from typing import List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    """Application settings.

    Non-sensitive configuration is defined here with sensible defaults.
    Secrets (token secrets, passwords, keys) are loaded from environment variables.

    Priority: Environment variables > .env file > defaults defined here

    A Settings instance is built once at startup and handed to the service
    container; components never import a module-level settings object.
    """

    # App Configuration
    APP_NAME: str = "Dockyards"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "info"

    # Database Configuration
    # DB_CONF takes precedence and must be a complete SQLAlchemy URL
    USE_INMEM_DB: bool = False
    DB_CONF: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "dockyards"
    DB_PASSWORD: str = ""  # MUST be set via env var
    DB_NAME: str = "dockyards"

    @property
    def DATABASE_URL(self) -> str:
        """Construct database URL from components."""
        if self.USE_INMEM_DB:
            return "sqlite+aiosqlite://"
        if self.DB_CONF:
            return self.DB_CONF
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # JWT Configuration
    ACCESS_TOKEN_NAME: str = "AccessToken"
    REFRESH_TOKEN_NAME: str = "RefreshToken"
    JWT_ACCESS_TOKEN_SECRET: str = ""  # MUST be set via env var
    JWT_REFRESH_TOKEN_SECRET: str = ""  # MUST be set via env var
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRY: int = 900  # 15 minutes
    JWT_REFRESH_TOKEN_EXPIRY: int = 604800  # 7 days

    # Cookie / CORS Configuration
    FLAG_SET_SERVER_COOKIE: bool = False
    FLAG_USE_CORS: bool = False
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # Rancher (cluster manager) Configuration
    CATTLE_URL: str = "https://localhost"
    CATTLE_BEARER_TOKEN: str = ""  # MUST be set via env var
    TRUST_INSECURE: bool = False

    # OpenStack (cloud provider) Configuration
    OPENSTACK_AUTH_URL: str = "http://localhost:5000/v3"
    OPENSTACK_USERNAME: str = "dockyards"
    OPENSTACK_PASSWORD: str = ""  # MUST be set via env var
    OPENSTACK_USER_DOMAIN: str = "Default"
    OPENSTACK_PROJECT_NAME: str = "dockyards"
    OPENSTACK_REGION: str = "RegionOne"

    # Garbage collection
    DEL_GARBAGE_INTERVAL: int = 60  # seconds

    # Kubeconfig issuance
    KUBECONFIG_TTL: int = 3600  # seconds

    # Deployments
    DEPLOYMENT_REPOSITORY_ROOT: str = "/var/lib/dockyards/repositories"

    # Encryption (Secret - MUST be set via env var)
    ENCRYPTION_KEY: str = ""  # MUST be set via env var

    class Config:
        env_file = ".env"
        case_sensitive = True
