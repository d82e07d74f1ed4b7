"""
directory.py — Read-only access to the user directory.

The notifier only needs one query: "fetch all user records". Filtering
happens in geo_fence, so any backend that can enumerate users works.

Implementations:
    InMemoryUserDirectory  — fixed list (tests, local development)
    FirestoreUserDirectory — the ``users`` collection in Cloud Firestore

A failure to enumerate raises DirectoryUnavailableError. A single
unparseable document is logged and skipped, never fatal.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Protocol, runtime_checkable

from backend.app.core.errors import DirectoryUnavailableError
from backend.app.notifications.models import UserDirectoryEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class UserDirectory(Protocol):
    """Capability: enumerate every user record."""

    def fetch_all(self) -> Iterable[UserDirectoryEntry]:
        ...


class InMemoryUserDirectory:
    """Directory backed by a list of entries."""

    def __init__(self, entries: Optional[Iterable[UserDirectoryEntry]] = None):
        self._entries: List[UserDirectoryEntry] = list(entries or [])

    def add(self, entry: UserDirectoryEntry) -> None:
        self._entries.append(entry)

    def fetch_all(self) -> List[UserDirectoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class FirestoreUserDirectory:
    """
    Directory backed by a Firestore collection.

    Parameters
    ----------
    app : firebase_admin.App
        Explicit Firebase app handle (see core.firebase).
    collection : str
        Collection holding user documents.
    client : optional
        Pre-built Firestore client; overrides ``app``.
    """

    def __init__(self, app: Any = None, collection: str = "users", *, client: Any = None):
        if client is None:
            from firebase_admin import firestore
            client = firestore.client(app)
        self._client = client
        self.collection = collection

    def fetch_all(self) -> List[UserDirectoryEntry]:
        try:
            snapshots = list(self._client.collection(self.collection).stream())
        except Exception as exc:
            logger.error(
                "Failed to read collection '%s': %s", self.collection, exc,
            )
            raise DirectoryUnavailableError(
                str(exc), collection=self.collection,
            ) from exc

        entries: List[UserDirectoryEntry] = []
        for snap in snapshots:
            try:
                entries.append(
                    UserDirectoryEntry.from_document(snap.id, snap.to_dict() or {})
                )
            except Exception as exc:
                logger.warning("Error processing user %s: %s", snap.id, exc)

        logger.debug(
            "Loaded %d/%d user documents from '%s'",
            len(entries), len(snapshots), self.collection,
        )
        return entries
