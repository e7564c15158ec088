"""
Application configuration.
Secrets are loaded from Azure Key Vault via the host's Managed Identity at
startup, then fallen back to environment variables / .env file so local
development still works without Key Vault access.
"""
import os
import logging
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key Vault → environment variable mapping
# Secret names in Key Vault use lowercase-dashes; env vars use UPPER_SNAKE.
# ---------------------------------------------------------------------------
_KV_TO_ENV: dict[str, str] = {
    "database-url":        "DATABASE_URL",
    "jwt-secret-key":      "JWT_SECRET_KEY",
    "sendgrid-api-key":    "SENDGRID_API_KEY",
    "sendgrid-from-email": "SENDGRID_FROM_EMAIL",
    "sendgrid-from-name":  "SENDGRID_FROM_NAME",
}


def _load_from_key_vault(vault_name: str) -> int:
    """
    Fetch secrets from Azure Key Vault and inject them into os.environ.
    Returns the number of secrets successfully loaded.
    """
    if not vault_name:
        return 0

    try:
        from azure.identity import DefaultAzureCredential
        from azure.keyvault.secrets import SecretClient
        from azure.core.exceptions import ResourceNotFoundError
    except ImportError:
        logger.warning("azure-keyvault-secrets / azure-identity not installed; skipping Key Vault load.")
        return 0

    try:
        client = SecretClient(
            vault_url=f"https://{vault_name}.vault.azure.net/",
            credential=DefaultAzureCredential(),
        )
        loaded = 0

        for kv_name, env_name in _KV_TO_ENV.items():
            # Key Vault wins over env vars
            try:
                secret = client.get_secret(kv_name)
                if secret.value:
                    os.environ[env_name] = secret.value
                    loaded += 1
            except ResourceNotFoundError:
                pass
            except Exception as e:
                logger.warning("KV: could not load '%s': %s", kv_name, e)

        return loaded

    except Exception as e:
        logger.warning("Key Vault load failed (%s); falling back to environment / .env file.", e)
        return 0


# ---------------------------------------------------------------------------
# Load from Key Vault before Pydantic reads env vars. Unset by default so
# tests and local runs never reach out to Azure.
# ---------------------------------------------------------------------------
_kv_name = os.environ.get("KEY_VAULT_NAME", "")
_n = _load_from_key_vault(_kv_name)
if _n:
    logger.info("Loaded %d secrets from Key Vault '%s'", _n, _kv_name)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    APP_BASE_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    KEY_VAULT_NAME: str = ""

    DATABASE_URL: str = "sqlite+aiosqlite:///./scheduling.db"

    # Bearer tokens are issued elsewhere; we only verify them
    JWT_SECRET_KEY: str = os.environ.get("JWT_SECRET_KEY", "")
    JWT_ALGORITHM: str = "HS256"

    # SendGrid Email
    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = "notifications@flintime.com"
    SENDGRID_FROM_NAME: str = "Flintime"

    # Per-caller token bucket for transition requests
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_CAPACITY: int = 10
    RATE_LIMIT_REFILL_PER_SECOND: float = 0.5

    class Config:
        env_file = ".env"


settings = Settings()

if not settings.JWT_SECRET_KEY:
    raise ValueError(
        "JWT_SECRET_KEY is not set. It must exist in Key Vault ('jwt-secret-key') "
        "or as a JWT_SECRET_KEY environment variable."
    )
