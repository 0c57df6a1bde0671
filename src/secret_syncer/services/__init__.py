"""
Service layer for the secret syncer.

The secret cache, access policy, resolver and reconciler hold the business
logic, separated from the kopf handler layer.
"""

from .resolver import MappingResolver
from .secret_cache import SecretCache
from .sync_reconciler import SyncedSecretReconciler

__all__ = [
    "MappingResolver",
    "SecretCache",
    "SyncedSecretReconciler",
]
