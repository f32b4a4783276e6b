"""
Credential vaults supplying secret values by reference.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from engine.src.config import Settings, get_settings
from engine.src.errors import SecretNotFoundError

logger = logging.getLogger(__name__)

class CredentialVault(ABC):
    @abstractmethod
    async def get_secret_value(self, secret_ref: str) -> str:
        ...

class StaticVault(CredentialVault):
    """Secrets held in memory (development and tests)."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = dict(secrets or {})

    async def get_secret_value(self, secret_ref: str) -> str:
        if secret_ref not in self.secrets:
            raise SecretNotFoundError(f"Secret '{secret_ref}' not found")
        return self.secrets[secret_ref]

class EnvironmentVault(CredentialVault):
    """Secrets read from environment variables, e.g. PIPEWRIGHT_SECRET_API_KEY."""

    def __init__(self, prefix: str = "PIPEWRIGHT_SECRET_"):
        self.prefix = prefix

    def env_name(self, secret_ref: str) -> str:
        return self.prefix + re.sub(r"[^A-Za-z0-9]", "_", secret_ref).upper()

    async def get_secret_value(self, secret_ref: str) -> str:
        name = self.env_name(secret_ref)
        value = os.environ.get(name)
        if value is None:
            raise SecretNotFoundError(f"Secret '{secret_ref}' not found (expected ${name})")
        return value

class HttpVault(CredentialVault):
    """Secrets fetched from an HTTP credential service: GET {base_url}/secrets/{ref}."""

    def __init__(self, base_url: str, token: str = "", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    async def get_secret_value(self, secret_ref: str) -> str:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.base_url}/secrets/{secret_ref}",
                headers=headers,
            )

        if response.status_code == 404:
            raise SecretNotFoundError(f"Secret '{secret_ref}' not found")
        response.raise_for_status()

        return response.json()["value"]

def get_vault(settings: Optional[Settings] = None) -> CredentialVault:
    """Pick the vault configured for this deployment."""
    settings = settings or get_settings()
    if settings.vault_url:
        logger.info(f"Using HTTP vault at {settings.vault_url}")
        return HttpVault(settings.vault_url, settings.vault_token)
    return EnvironmentVault(settings.secret_env_prefix)
