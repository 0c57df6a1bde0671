"""
AWS Secrets Manager client for the secret syncer.

Wraps the boto3 ``secretsmanager`` and ``sts`` clients behind the four
operations the operator needs: listing secrets, listing secret versions,
reading a secret value and assuming an IAM role. Every method is blocking;
async callers run them with ``asyncio.to_thread``.

botocore errors are translated into FetchError so callers only deal with
the operator's error hierarchy.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..constants import (
    ASSUMED_ROLE_REFRESH_MARGIN_SECONDS,
    AWS_CURRENT_STAGE,
    BOTO_MAX_ATTEMPTS,
)
from ..errors import FetchError
from ..models.secrets import SecretDescriptor
from ..observability.metrics import metrics_collector

logger = logging.getLogger(__name__)

BOTO_CONFIG = Config(retries={"mode": "standard", "max_attempts": BOTO_MAX_ATTEMPTS})


@dataclass(frozen=True)
class AssumedRoleCredentials:
    """Temporary credentials returned by sts:AssumeRole."""

    role_arn: str
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime

    def expires_soon(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        margin = timedelta(seconds=ASSUMED_ROLE_REFRESH_MARGIN_SECONDS)
        return self.expiration - margin <= now


def _error_message(error: Exception) -> str:
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        return f"{err.get('Code', 'Unknown')}: {err.get('Message', str(error))}"
    return str(error)


class SecretsManagerClient:
    """Blocking facade over AWS Secrets Manager and STS."""

    def __init__(
        self,
        region: str = "us-east-1",
        session_name: str = "kube-secret-syncer",
        session: boto3.session.Session | None = None,
    ):
        """
        Initialize the client.

        Args:
            region: AWS region of the Secrets Manager endpoint
            session_name: RoleSessionName used for sts:AssumeRole
            session: Optional boto3 session (defaults to a new session)
        """
        self.region = region
        self.session_name = session_name
        self._session = session or boto3.session.Session(region_name=region)
        self._lock = threading.Lock()
        self._secretsmanager: Any = None
        self._sts: Any = None
        self._caller_account: str | None = None
        self._role_credentials: dict[str, AssumedRoleCredentials] = {}
        self._role_clients: dict[str, Any] = {}

    @property
    def secretsmanager(self) -> Any:
        """Secrets Manager client using the operator's own credentials."""
        with self._lock:
            if self._secretsmanager is None:
                self._secretsmanager = self._session.client(
                    "secretsmanager", region_name=self.region, config=BOTO_CONFIG
                )
            return self._secretsmanager

    @property
    def sts(self) -> Any:
        """STS client using the operator's own credentials."""
        with self._lock:
            if self._sts is None:
                self._sts = self._session.client(
                    "sts", region_name=self.region, config=BOTO_CONFIG
                )
            return self._sts

    def list_secrets(self) -> list[SecretDescriptor]:
        """
        List every secret visible to the operator.

        The current version of each secret is taken from the AWSCURRENT
        staging label of the listing; secrets listed without staging
        information are resolved with ListSecretVersionIds. A secret whose
        version listing fails is skipped; the rest of the listing is kept.

        Raises:
            FetchError: If any page of the listing fails
        """
        descriptors: list[SecretDescriptor] = []
        try:
            paginator = self.secretsmanager.get_paginator("list_secrets")
            for page in paginator.paginate():
                for entry in page.get("SecretList", []):
                    name = entry["Name"]
                    tags = {t["Key"]: t.get("Value", "") for t in entry.get("Tags", [])}
                    version_id = self._current_version(
                        entry.get("SecretVersionsToStages")
                    )
                    if version_id is None:
                        try:
                            version_id = self._current_version(
                                self.list_secret_version_ids(name)
                            )
                        except FetchError as e:
                            logger.warning(f"Skipping secret {name}: {e}")
                            continue
                    if version_id is None:
                        logger.debug(f"Secret {name} has no current version, skipping")
                        continue
                    descriptors.append(
                        SecretDescriptor(id=name, version_id=version_id, tags=tags)
                    )
        except (BotoCoreError, ClientError) as e:
            metrics_collector.record_remote_call("ListSecrets", success=False)
            raise FetchError("ListSecrets", _error_message(e), cause=e) from e

        metrics_collector.record_remote_call("ListSecrets", success=True)
        return descriptors

    def list_secret_version_ids(self, secret_id: str) -> dict[str, list[str]]:
        """
        Map each version id of a secret to its staging labels.

        Raises:
            FetchError: If the call fails
        """
        versions: dict[str, list[str]] = {}
        request: dict[str, Any] = {"SecretId": secret_id}
        try:
            # boto3 has no paginator for this operation
            while True:
                page = self.secretsmanager.list_secret_version_ids(**request)
                for version in page.get("Versions", []):
                    versions[version["VersionId"]] = list(
                        version.get("VersionStages", [])
                    )
                if not page.get("NextToken"):
                    break
                request["NextToken"] = page["NextToken"]
        except (BotoCoreError, ClientError) as e:
            metrics_collector.record_remote_call("ListSecretVersionIds", success=False)
            raise FetchError(
                "ListSecretVersionIds", _error_message(e), secret_id=secret_id, cause=e
            ) from e

        metrics_collector.record_remote_call("ListSecretVersionIds", success=True)
        return versions

    @staticmethod
    def _current_version(versions: dict[str, list[str]] | None) -> str | None:
        for version_id, stages in (versions or {}).items():
            if AWS_CURRENT_STAGE in stages:
                return version_id
        return None

    def get_secret_value(self, secret_id: str, role: str = "") -> bytes:
        """
        Read the current value of a secret.

        Args:
            secret_id: Secret name or ARN
            role: IAM role to assume for the read; empty uses the operator's
                own credentials

        Returns:
            SecretString encoded as UTF-8, or SecretBinary as-is

        Raises:
            FetchError: If assuming the role or reading the secret fails
        """
        client = self._client_for_role(role) if role else self.secretsmanager
        try:
            response = client.get_secret_value(
                SecretId=secret_id, VersionStage=AWS_CURRENT_STAGE
            )
        except (BotoCoreError, ClientError) as e:
            metrics_collector.record_remote_call("GetSecretValue", success=False)
            raise FetchError(
                "GetSecretValue", _error_message(e), secret_id=secret_id, cause=e
            ) from e

        metrics_collector.record_remote_call("GetSecretValue", success=True)
        if response.get("SecretString") is not None:
            return response["SecretString"].encode("utf-8")
        return bytes(response.get("SecretBinary", b""))

    def role_arn(self, role: str) -> str:
        """
        Expand a bare role name into a role ARN in the caller's account.

        Raises:
            FetchError: If the caller identity cannot be determined
        """
        if role.startswith("arn:"):
            return role
        if self._caller_account is None:
            try:
                self._caller_account = self.sts.get_caller_identity()["Account"]
            except (BotoCoreError, ClientError) as e:
                metrics_collector.record_remote_call("GetCallerIdentity", success=False)
                raise FetchError("GetCallerIdentity", _error_message(e), cause=e) from e
            metrics_collector.record_remote_call("GetCallerIdentity", success=True)
        return f"arn:aws:iam::{self._caller_account}:role/{role}"

    def assume_role(self, role: str) -> AssumedRoleCredentials:
        """
        Assume an IAM role, reusing credentials until shortly before expiry.

        Raises:
            FetchError: If sts:AssumeRole fails
        """
        cached = self._role_credentials.get(role)
        if cached is not None and not cached.expires_soon():
            return cached

        role_arn = self.role_arn(role)
        try:
            response = self.sts.assume_role(
                RoleArn=role_arn, RoleSessionName=self.session_name
            )
        except (BotoCoreError, ClientError) as e:
            metrics_collector.record_remote_call("AssumeRole", success=False)
            raise FetchError("AssumeRole", f"{role_arn}: {_error_message(e)}", cause=e) from e

        metrics_collector.record_remote_call("AssumeRole", success=True)
        creds = response["Credentials"]
        credentials = AssumedRoleCredentials(
            role_arn=role_arn,
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds["SessionToken"],
            expiration=creds["Expiration"],
        )
        with self._lock:
            self._role_credentials[role] = credentials
            self._role_clients.pop(role, None)
        logger.info(
            f"Assumed role {role_arn} (expires {credentials.expiration.isoformat()})"
        )
        return credentials

    def _client_for_role(self, role: str) -> Any:
        credentials = self.assume_role(role)
        with self._lock:
            client = self._role_clients.get(role)
            if client is None:
                client = self._session.client(
                    "secretsmanager",
                    region_name=self.region,
                    aws_access_key_id=credentials.access_key_id,
                    aws_secret_access_key=credentials.secret_access_key,
                    aws_session_token=credentials.session_token,
                    config=BOTO_CONFIG,
                )
                self._role_clients[role] = client
            return client
