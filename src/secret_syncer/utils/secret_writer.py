"""
Output store for resolved SyncedSecret documents.

Resolved documents are written as Opaque Kubernetes Secrets named after the
SyncedSecret, in its namespace. Secrets are never deleted by the operator.
"""

import base64
import logging
from collections.abc import Mapping
from typing import Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import MANAGED_BY_LABEL_KEY, MANAGED_BY_LABEL_VALUE
from ..errors import KubernetesAPIError

logger = logging.getLogger(__name__)


class OutputStore(Protocol):
    """Destination of resolved documents."""

    def upsert(
        self,
        name: str,
        namespace: str,
        data: Mapping[str, bytes],
        labels: Mapping[str, str] | None = None,
        annotations: Mapping[str, str] | None = None,
    ) -> None: ...


class KubernetesSecretStore:
    """Writes resolved documents as Kubernetes Secrets."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize the store.

        Args:
            k8s_client: Optional Kubernetes API client
        """
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    def build_secret(
        self,
        name: str,
        namespace: str,
        data: Mapping[str, bytes],
        labels: Mapping[str, str] | None = None,
        annotations: Mapping[str, str] | None = None,
    ) -> client.V1Secret:
        """Build the Secret body; the managed-by label always wins."""
        secret_labels = dict(labels or {})
        secret_labels[MANAGED_BY_LABEL_KEY] = MANAGED_BY_LABEL_VALUE

        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=secret_labels,
                annotations=dict(annotations or {}),
            ),
            type="Opaque",
            data={key: base64.b64encode(value).decode() for key, value in data.items()},
        )

    def upsert(
        self,
        name: str,
        namespace: str,
        data: Mapping[str, bytes],
        labels: Mapping[str, str] | None = None,
        annotations: Mapping[str, str] | None = None,
    ) -> None:
        """
        Create the Secret, or replace it if it already exists.

        Raises:
            KubernetesAPIError: If the create or replace fails
        """
        secret = self.build_secret(name, namespace, data, labels, annotations)

        try:
            self.v1.create_namespaced_secret(namespace=namespace, body=secret)
            logger.info(f"Created secret {namespace}/{name}")
            return
        except ApiException as e:
            if e.status != 409:
                raise KubernetesAPIError(
                    f"Failed to create secret {namespace}/{name}", reason=e.reason
                ) from e

        try:
            self.v1.replace_namespaced_secret(name=name, namespace=namespace, body=secret)
            logger.info(f"Replaced secret {namespace}/{name}")
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to replace secret {namespace}/{name}", reason=e.reason
            ) from e
