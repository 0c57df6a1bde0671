"""
Handlers package - Contains the Kopf event handlers.

- synced_secret.py: SyncedSecret tracking (create, update, resume, delete)
"""
