"""
Secret Manager with hybrid configuration.

Supports two modes:
- LOCAL: Reads secrets from environment variables (.env file)
- CLOUD: Uses Azure Managed Identity to fetch from Key Vault

The Firebase web API key and service-account credentials are the only
secrets this app needs. Everything else is plain configuration.
"""

import json
import os
from functools import lru_cache
from typing import Any, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment-based configuration.

    In LOCAL mode: reads from .env file
    In CLOUD mode: Key Vault values override the secret fields
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment mode
    env: str = "LOCAL"

    # Backend selection
    # Options: firebase, memory
    backend_provider: str = "memory"

    # Firebase settings (provider: firebase)
    firebase_project_id: str = "crop-view-insights"
    firebase_api_key: str = ""
    firebase_credentials_path: str = ""
    identity_toolkit_url: str = "https://identitytoolkit.googleapis.com/v1"
    secure_token_url: str = "https://securetoken.googleapis.com/v1"
    request_timeout: float = 10.0

    # Collections
    users_collection: str = "users"
    predictions_collection: str = "user_prediction"

    # Dashboard behaviour
    trend_months: int = 6
    recent_predictions_limit: int = 5

    log_level: str = "INFO"

    # Azure Key Vault (for CLOUD mode)
    azure_keyvault_url: str = ""

    @property
    def is_local(self) -> bool:
        return self.env.upper() == "LOCAL"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns cached application settings.

    Uses LRU cache to avoid re-reading env vars on every call.
    """
    return Settings()


def get_secret(secret_name: str) -> Optional[str]:
    """
    Retrieves a secret value based on environment mode.

    Args:
        secret_name: Name of the secret to retrieve

    Returns:
        Secret value or None if not found

    Security Note:
        - LOCAL mode: Returns environment variable (for development only)
        - CLOUD mode: Uses Managed Identity to fetch from Key Vault
    """
    settings = get_settings()

    if settings.is_local:
        return os.environ.get(secret_name)

    from azure.identity import DefaultAzureCredential
    from azure.keyvault.secrets import SecretClient

    if not settings.azure_keyvault_url:
        raise ValueError("AZURE_KEYVAULT_URL must be set in CLOUD mode")

    credential = DefaultAzureCredential()
    client = SecretClient(
        vault_url=settings.azure_keyvault_url,
        credential=credential
    )

    try:
        secret = client.get_secret(secret_name)
        return secret.value
    except Exception as e:
        # Don't expose vault details
        raise RuntimeError(f"Failed to retrieve secret '{secret_name}'") from e


def get_firebase_api_key() -> str:
    """
    Retrieves the Firebase web API key from the appropriate source.

    Returns:
        API key string
    """
    settings = get_settings()

    if settings.is_local:
        return settings.firebase_api_key

    api_key = get_secret("FIREBASE-API-KEY")
    if not api_key:
        raise ValueError("FIREBASE-API-KEY not found in Key Vault")
    return api_key


def get_firebase_credentials_info() -> Optional[dict[str, Any]]:
    """
    Retrieves the Firebase service-account credentials.

    LOCAL mode reads the JSON file at FIREBASE_CREDENTIALS_PATH (None when
    unset, so Application Default Credentials apply). CLOUD mode reads the
    JSON document stored in Key Vault.

    Returns:
        Parsed service-account dict, or None to use default credentials
    """
    settings = get_settings()

    if settings.is_local:
        if not settings.firebase_credentials_path:
            return None
        with open(settings.firebase_credentials_path, "r", encoding="utf-8") as f:
            return json.load(f)

    raw = get_secret("FIREBASE-CREDENTIALS")
    if not raw:
        raise ValueError("FIREBASE-CREDENTIALS not found in Key Vault")
    return json.loads(raw)
