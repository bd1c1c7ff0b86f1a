from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from infra_orchestrator.config import CredentialBackend, Settings
from infra_orchestrator.core.credentials import (
    EnvCredentialProvider,
    SecretsManagerCredentialProvider,
    get_credential_provider,
)
from infra_orchestrator.core.errors import CredentialError


@pytest.fixture
def secrets_client():
    client = MagicMock()
    with patch("infra_orchestrator.core.credentials.boto3.Session") as session:
        session.return_value.client.return_value = client
        yield client


def test_json_secret_expands_to_pairs(secrets_client) -> None:
    secrets_client.get_secret_value.return_value = {
        "SecretString": json.dumps({"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "s3cr3t"})
    }

    values = SecretsManagerCredentialProvider().fetch(["infra/dev/deployer"])

    assert values == {"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "s3cr3t"}
    secrets_client.get_secret_value.assert_called_once_with(SecretId="infra/dev/deployer")


def test_plain_secret_uses_last_path_segment(secrets_client) -> None:
    secrets_client.get_secret_value.return_value = {"SecretString": "ghp_token"}

    assert SecretsManagerCredentialProvider().fetch(["infra/dev/git-token"]) == {"GIT_TOKEN": "ghp_token"}


def test_client_error_becomes_credential_error(secrets_client) -> None:
    secrets_client.get_secret_value.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "no"}}, "GetSecretValue"
    )

    with pytest.raises(CredentialError, match="AccessDeniedException"):
        SecretsManagerCredentialProvider().fetch(["infra/prod/deployer"])


def test_missing_aws_credentials(secrets_client) -> None:
    secrets_client.get_secret_value.side_effect = NoCredentialsError()

    with pytest.raises(CredentialError, match="not configured"):
        SecretsManagerCredentialProvider().fetch(["infra/prod/deployer"])


def test_env_provider() -> None:
    provider = EnvCredentialProvider({"TF_TOKEN": "abc"})

    assert provider.fetch(["TF_TOKEN"]) == {"TF_TOKEN": "abc"}
    with pytest.raises(CredentialError, match="MISSING"):
        provider.fetch(["MISSING"])


def test_backend_selection() -> None:
    env_settings = Settings(_env_file=None, credential_backend=CredentialBackend.ENV)
    aws_settings = Settings(_env_file=None)

    assert isinstance(get_credential_provider(env_settings), EnvCredentialProvider)
    assert isinstance(get_credential_provider(aws_settings), SecretsManagerCredentialProvider)


def test_client_is_created_once_per_provider() -> None:
    with patch("infra_orchestrator.core.credentials.boto3.Session") as session:
        session.return_value.client.return_value.get_secret_value.return_value = {"SecretString": "v"}
        provider = SecretsManagerCredentialProvider(region="eu-west-1")

        provider.fetch(["a/one"])
        provider.fetch(["a/two"])

    session.assert_called_once_with(region_name="eu-west-1")
    session.return_value.client.assert_called_once_with("secretsmanager")
