"""Data access layer: credential store interface and its failure types."""

from accounts.dal.credential_store import CredentialStore, PurgeCounts, RecordNotFound

__all__ = [
    "CredentialStore",
    "PurgeCounts",
    "RecordNotFound",
]
