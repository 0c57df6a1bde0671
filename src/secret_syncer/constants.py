"""
Constants used throughout the secret syncer.

This module defines all constant values used by the operator including:
- Custom resource coordinates
- Resource labels and annotations
- Reconciliation phases
- Error message templates
"""

# Custom resource coordinates
CRD_GROUP = "secrets.contentful.com"
CRD_VERSION = "v1"
CRD_PLURAL = "syncedsecrets"

# Label constants for resource identification and management
MANAGED_BY_LABEL_KEY = "app.kubernetes.io/managed-by"
MANAGED_BY_LABEL_VALUE = "kube-secret-syncer"

# Annotation constants
DEFAULT_NAMESPACE_ROLE_ANNOTATION = "iam.amazonaws.com/allowed-roles"

# Reconciliation phases (per tracked resource)
PHASE_PENDING = "Pending"
PHASE_AUTHORIZING = "Authorizing"
PHASE_RESOLVING = "Resolving"
PHASE_WRITING = "Writing"
PHASE_IDLE = "Idle"
PHASE_FAILED = "Failed"

# Failure reasons reported on the resource
REASON_POLICY_DENIED = "policy-denied"

# AWS
AWS_CURRENT_STAGE = "AWSCURRENT"
ASSUMED_ROLE_REFRESH_MARGIN_SECONDS = 300
BOTO_MAX_ATTEMPTS = 3

# Error message templates
ERROR_POLICY_DENIED = (
    "IAM role '{}' is not allowed in namespace '{}' "
    "(allowed roles are listed in annotation '{}')"
)
ERROR_POLICY_ROLE_REQUIRED = (
    "Namespace '{}' restricts IAM roles via annotation '{}'; "
    "the resource must declare an allowed IAMRole"
)
ERROR_SECRET_NOT_FOUND = "Secret '{}' is not known to the secret cache"
