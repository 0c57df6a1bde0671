"""
kube-secret-syncer - A Kubernetes operator that synchronizes AWS Secrets
Manager secrets into Kubernetes Secrets.

SyncedSecret resources declare which secrets, keys or templates make up an
output Secret; namespaces restrict the IAM roles their resources may use.
"""

__version__ = "0.1.0"
