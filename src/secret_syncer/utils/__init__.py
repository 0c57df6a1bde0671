"""
Utils package - Clients and helpers for the systems the operator talks to.

Contains helper modules for:
- AWS Secrets Manager and STS access
- Kubernetes client setup, namespace annotations and status patching
- Writing output Secrets
- Rate limiting of Secret writes
"""
