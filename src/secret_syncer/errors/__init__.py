"""
Error handling module for the secret syncer.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    FetchError,
    KeyNotFoundError,
    KubernetesAPIError,
    NotAMapError,
    NotFoundError,
    OperatorError,
    PolicyDeniedError,
    SyncError,
    TemplateError,
    TypeMismatchError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "KubernetesAPIError",
    "SyncError",
    "FetchError",
    "NotFoundError",
    "KeyNotFoundError",
    "TypeMismatchError",
    "NotAMapError",
    "PolicyDeniedError",
    "TemplateError",
]
