"""Storage of run records and plan artifacts for audit."""

import logging
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from infra_orchestrator.core.artifacts import PlanArtifactManager
from infra_orchestrator.core.contracts import RunReport

logger = logging.getLogger(__name__)


class RunArchive(Protocol):
    def archive(self, report: RunReport) -> Optional[str]:
        ...


class LocalRunArchive:
    """Keeps run records next to the plan artifacts."""

    def __init__(self, artifacts: PlanArtifactManager):
        self._artifacts = artifacts

    def archive(self, report: RunReport) -> Optional[str]:
        path = self._artifacts.save_run_record(report)
        logger.info(f"Run record written to {path}")
        return str(path)


class S3RunArchive:
    """Writes the local run record, then uploads it and the plan artifact to S3."""

    def __init__(self, artifacts: PlanArtifactManager, bucket: str, region: str = "us-east-1", client=None):
        self._local = LocalRunArchive(artifacts)
        self._bucket = bucket
        self._region = region
        self._client = client

    def archive(self, report: RunReport) -> Optional[str]:
        record = Path(self._local.archive(report))
        if self._client is None:
            self._client = boto3.Session(region_name=self._region).client("s3")

        prefix = "runs"
        if report.request:
            prefix = f"runs/{report.request.environment.value}/{report.request.run_id}"

        uploads = [record]
        if report.plan_artifact and Path(report.plan_artifact.path).is_file():
            uploads.append(Path(report.plan_artifact.path))

        for path in uploads:
            key = f"{prefix}/{path.name}"
            try:
                self._client.upload_file(str(path), self._bucket, key)
                logger.info(f"Archived {path.name} to s3://{self._bucket}/{key}")
            except NoCredentialsError:
                logger.error(f"S3 archive of {path.name} - No credentials")
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                logger.error(f"S3 archive of {path.name} - ClientError: {error_code}")
            except BotoCoreError as e:
                logger.error(f"S3 archive of {path.name} - BotoCoreError: {e}")
        return f"s3://{self._bucket}/{prefix}"
