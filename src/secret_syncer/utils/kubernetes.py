"""
Kubernetes utilities for the secret syncer.

Helpers for client configuration, reading namespace annotations and patching
SyncedSecret status. Calls are blocking; the reconciler runs them in worker
threads.
"""

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from ..errors import KubernetesAPIError

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries in-cluster configuration first and falls back to the local
    kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def read_namespace_annotations(
    namespace: str, k8s_client: client.ApiClient | None = None
) -> dict[str, str]:
    """
    Read the annotations of a namespace.

    Returns:
        The namespace annotations, empty if it has none

    Raises:
        KubernetesAPIError: If the namespace cannot be read
    """
    core_api = client.CoreV1Api(k8s_client)
    try:
        ns = core_api.read_namespace(name=namespace)
    except ApiException as e:
        raise KubernetesAPIError(
            f"Failed to read namespace {namespace}", reason=e.reason
        ) from e
    return dict(ns.metadata.annotations or {})


def patch_synced_secret_status(
    name: str,
    namespace: str,
    status: dict[str, Any],
    k8s_client: client.ApiClient | None = None,
) -> None:
    """
    Patch the status subresource of a SyncedSecret.

    A resource deleted in the meantime is ignored.

    Raises:
        KubernetesAPIError: If the patch fails for reasons other than 404
    """
    custom_api = client.CustomObjectsApi(k8s_client)
    try:
        custom_api.patch_namespaced_custom_object_status(
            group=CRD_GROUP,
            version=CRD_VERSION,
            namespace=namespace,
            plural=CRD_PLURAL,
            name=name,
            body={"status": status},
        )
    except ApiException as e:
        if e.status == 404:
            logger.debug(f"SyncedSecret {namespace}/{name} gone, status not patched")
            return
        raise KubernetesAPIError(
            f"Failed to patch status of SyncedSecret {namespace}/{name}",
            reason=e.reason,
        ) from e
