"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the secret syncer,
providing clear categorization and integration with kopf's retry mechanisms.
Synchronization errors carry a short ``reason`` that is reported as the
resource's failure reason.
"""

import kopf

from ..constants import ERROR_SECRET_NOT_FOUND, REASON_POLICY_DENIED


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, sync, external)
            retryable: Whether the operation is retried on the next tick
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        action = user_action or "Check resource specification and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message, category="validation", retryable=False, user_action=action
        )


class KubernetesAPIError(OperatorError):
    """Error communicating with Kubernetes API."""

    def __init__(self, message: str, reason: str | None = None, retryable: bool = True):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            message=f"Kubernetes API error: {message}",
            category="external",
            retryable=retryable,
            delay=60,
            user_action="Check RBAC permissions and cluster connectivity",
        )


class SyncError(OperatorError):
    """
    Base class for errors that fail a single resource synchronization.

    None of these are fatal: the resource enters the Failed phase for the
    current tick and is synchronized again on the next one.
    """

    reason = "sync-error"

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="sync",
            retryable=True,
            user_action=user_action,
        )


class FetchError(SyncError):
    """A call to AWS Secrets Manager or STS failed."""

    reason = "fetch-error"

    def __init__(
        self,
        operation: str,
        message: str,
        secret_id: str | None = None,
        cause: Exception | None = None,
    ):
        target = f" for secret '{secret_id}'" if secret_id else ""
        super().__init__(
            message=f"AWS {operation} failed{target}: {message}",
            user_action="Check AWS connectivity, throttling and IAM permissions",
        )
        self.operation = operation
        self.secret_id = secret_id
        self.cause = cause


class NotFoundError(SyncError):
    """A referenced secret id has no descriptor in the cache."""

    reason = "secret-not-found"

    def __init__(self, secret_id: str):
        super().__init__(
            message=ERROR_SECRET_NOT_FOUND.format(secret_id),
            user_action="Check the secret name; new secrets appear after the next list refresh",
        )
        self.secret_id = secret_id


class KeyNotFoundError(SyncError):
    """A referenced key is absent from a secret's parsed value."""

    reason = "key-not-found"

    def __init__(self, secret_id: str, key: str):
        super().__init__(
            message=f"Key '{key}' not found in secret '{secret_id}'",
            user_action="Check secretKeyRef.key against the keys stored in the secret",
        )
        self.secret_id = secret_id
        self.key = key


class TypeMismatchError(SyncError):
    """A key reference targets a secret whose value is not a JSON object."""

    reason = "type-mismatch"

    def __init__(self, secret_id: str):
        super().__init__(
            message=f"Secret '{secret_id}' is not a JSON object of strings; cannot reference a key",
            user_action="Use valueFrom.secretRef to copy the whole value instead",
        )
        self.secret_id = secret_id


class NotAMapError(SyncError):
    """A whole-secret import targets a secret whose value is not a JSON object."""

    reason = "not-a-map"

    def __init__(self, secret_id: str):
        super().__init__(
            message=f"Secret '{secret_id}' is not a JSON object of strings; dataFrom requires one",
            user_action="Store the secret as a JSON object or use data entries",
        )
        self.secret_id = secret_id


class PolicyDeniedError(SyncError):
    """The namespace allow-list does not permit the requested IAM role."""

    reason = REASON_POLICY_DENIED

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_action="Update the namespace annotation or the resource's IAMRole",
        )


class TemplateError(SyncError):
    """A template failed to parse or render."""

    reason = "template-error"

    def __init__(self, entry_name: str, message: str):
        super().__init__(
            message=f"Template for '{entry_name}' failed: {message}",
            user_action="Fix the template in valueFrom.template",
        )
        self.entry_name = entry_name
