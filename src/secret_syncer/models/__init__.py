"""
Data models for the secret syncer.

Contains the SyncedSecret resource models and the value types exchanged
between the secret cache, the access policy and the resolver.
"""
