"""Scoped credential retrieval.

Providers resolve secret identifiers to key/value pairs for a single stage
invocation. Nothing is cached or written anywhere by the orchestrator.
"""

import json
import logging
import os
from typing import Iterable, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from infra_orchestrator.config import CredentialBackend, Settings
from infra_orchestrator.core.errors import CredentialError

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    def fetch(self, secret_ids: Iterable[str]) -> dict[str, str]:
        ...


class SecretsManagerCredentialProvider:
    """Reads secrets from AWS Secrets Manager.

    A JSON object secret expands to its key/value pairs; any other secret
    string is exposed under the last path segment of its identifier,
    upper-cased (``infra/dev/git-token`` -> ``GIT_TOKEN``).
    """

    def __init__(self, region: str = "us-east-1"):
        self._region = region
        self._secrets_client = None

    def _client(self):
        """Get the Secrets Manager client, created on first use."""
        if self._secrets_client is None:
            self._secrets_client = boto3.Session(region_name=self._region).client("secretsmanager")
        return self._secrets_client

    def fetch(self, secret_ids: Iterable[str]) -> dict[str, str]:
        values: dict[str, str] = {}
        for secret_id in secret_ids:
            try:
                response = self._client().get_secret_value(SecretId=secret_id)
            except NoCredentialsError as e:
                logger.error(f"Secrets Manager: no AWS credentials for {secret_id}")
                raise CredentialError(f"AWS credentials not configured: {e}") from e
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                logger.error(f"Secrets Manager: {secret_id} - ClientError: {error_code}")
                raise CredentialError(f"Cannot read secret {secret_id}: {error_code}") from e
            except BotoCoreError as e:
                logger.error(f"Secrets Manager: {secret_id} - BotoCoreError: {e}")
                raise CredentialError(f"Cannot read secret {secret_id}: {e}") from e

            values.update(_expand_secret(secret_id, response.get("SecretString") or ""))
        return values


class EnvCredentialProvider:
    """Reads each identifier as an environment variable name."""

    def __init__(self, environ=None):
        self._environ = os.environ if environ is None else environ

    def fetch(self, secret_ids: Iterable[str]) -> dict[str, str]:
        values = {}
        for secret_id in secret_ids:
            if secret_id not in self._environ:
                raise CredentialError(f"Environment variable {secret_id} is not set")
            values[secret_id] = self._environ[secret_id]
        return values


def _expand_secret(secret_id: str, secret: str) -> dict[str, str]:
    try:
        parsed = json.loads(secret)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return {str(k): str(v) for k, v in parsed.items()}
    key = secret_id.rstrip("/").rsplit("/", 1)[-1].replace("-", "_").upper()
    return {key: secret}


def get_credential_provider(settings: Settings) -> CredentialProvider:
    if settings.credential_backend == CredentialBackend.ENV:
        return EnvCredentialProvider()
    return SecretsManagerCredentialProvider(region=settings.aws_region)
