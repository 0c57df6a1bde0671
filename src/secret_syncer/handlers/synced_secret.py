"""
SyncedSecret handlers - Keep the reconciler's set of tracked resources current.

The handlers never touch AWS or the output Secret themselves. Creation,
updates and operator restarts (resume) hand the parsed resource to the
reconciler; deletion stops tracking it. The periodic sync loop started in
the operator's startup handler does the actual work.

An invalid spec is reported through kopf as a permanent error and the
resource is not tracked until it is fixed.
"""

import logging
from typing import Any

import kopf

from ..constants import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from ..errors import ValidationError
from ..models.synced_secret import SyncedSecretResource
from ..observability.tracing import traced_handler

logger = logging.getLogger(__name__)


@kopf.on.create(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
@kopf.on.update(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
@kopf.on.resume(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
@traced_handler("track_syncedsecret")
async def track_synced_secret(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Start or refresh tracking of a SyncedSecret.

    Args:
        spec: SyncedSecret resource specification
        name: Name of the SyncedSecret resource
        namespace: Namespace where the resource exists
        memo: Operator memo holding the reconciler
    """
    try:
        resource = SyncedSecretResource.from_kopf(spec, name=name, namespace=namespace)
    except ValidationError as e:
        # A previously valid resource edited into an invalid one
        memo.reconciler.remove(f"{namespace}/{name}")
        logger.warning(str(e))
        raise e.as_kopf_error() from e

    memo.reconciler.track(resource)


@kopf.on.delete(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
@traced_handler("untrack_syncedsecret")
async def untrack_synced_secret(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Stop tracking a deleted SyncedSecret; the written Secret is kept."""
    memo.reconciler.remove(f"{namespace}/{name}")
