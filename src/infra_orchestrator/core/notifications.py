"""Fire-and-forget run status notifications.

A notifier must never fail or block a run: delivery errors are logged and
dropped.
"""

import logging
import threading
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from infra_orchestrator.core.contracts import RunReport, RunStatus

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, subject: str, message: str) -> None:
        ...


class LogNotifier:
    """Writes notifications to the log."""

    def notify(self, subject: str, message: str) -> None:
        logger.info(f"{subject}\n{message}")


class SnsNotifier:
    """Publishes notifications to an SNS topic from a background thread."""

    def __init__(self, topic_arn: str, region: str = "us-east-1", client=None):
        self._topic_arn = topic_arn
        self._region = region
        self._client = client
        self._threads: list[threading.Thread] = []

    def notify(self, subject: str, message: str) -> None:
        thread = threading.Thread(target=self._publish, args=(subject, message), daemon=True)
        self._threads.append(thread)
        thread.start()

    def flush(self, timeout: float = 5.0) -> None:
        """Give in-flight publishes a bounded chance to finish."""
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    def _publish(self, subject: str, message: str) -> None:
        try:
            if self._client is None:
                self._client = boto3.Session(region_name=self._region).client("sns")
            # SNS subjects are limited to 100 characters
            self._client.publish(TopicArn=self._topic_arn, Subject=subject[:100], Message=message)
        except NoCredentialsError:
            logger.error(f"SNS notify to {self._topic_arn} - No credentials")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"SNS notify to {self._topic_arn} - ClientError: {error_code}")
        except BotoCoreError as e:
            logger.error(f"SNS notify to {self._topic_arn} - BotoCoreError: {e}")
        except Exception as e:
            logger.error(f"SNS notify to {self._topic_arn} - Error: {e}")


def send_safely(notifier: Optional[Notifier], subject: str, message: str) -> None:
    """Deliver through ``notifier`` without ever raising."""
    if notifier is None:
        return
    try:
        notifier.notify(subject, message)
    except Exception as e:
        logger.error(f"Notification '{subject}' failed: {e}")


def report_subject(report: RunReport) -> str:
    request = report.request
    target = f"{request.action.value} {request.environment.value}" if request else "run"
    if report.status == RunStatus.COMPLETED:
        return f"[infra-orchestrator] {target}: completed"
    failure = report.failure.value if report.failure else report.status.value
    return f"[infra-orchestrator] {target}: {failure}"
