"""Keyed document store over SQLAlchemy.

Paths look like ``collection/key``; ``push`` appends child entries under a path the way a
realtime-database push does. Each call is its own unit of work (commit or rollback), so the
store behaves like a remote service: there are no cross-document transactions.
"""
from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple
import copy
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from groomery import get_db
from groomery.errors import RemoteUnavailable
from groomery.models.store import Document, LogEntry, utcnow

logger = logging.getLogger(__name__)


def split_path(path: str) -> Tuple[str, str]:
    path = path.strip('/')
    if '/' not in path:
        raise ValueError(f"Document path must be 'collection/key': {path!r}")
    collection, key = path.split('/', 1)
    if not collection or not key:
        raise ValueError(f"Document path must be 'collection/key': {path!r}")
    return collection, key


def _deep_merge(base: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for k, v in fields.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = copy.deepcopy(v)
    return merged


class DocumentStore:

    @contextmanager
    def _session(self, write: bool = False) -> Iterator[Any]:
        session = get_db()
        try:
            yield session
            if write:
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error('Document store call failed: %s', e)
            raise RemoteUnavailable('Document store unavailable') from e
        except Exception:
            session.rollback()
            raise

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        path = path.strip('/')
        with self._session() as session:
            doc = session.get(Document, path)
            return copy.deepcopy(doc.value) if doc is not None else None

    def set(self, path: str, value: Dict[str, Any], merge: bool = False) -> Dict[str, Any]:
        path = path.strip('/')
        collection, _ = split_path(path)
        with self._session(write=True) as session:
            doc = session.get(Document, path)
            if doc is None:
                doc = Document(path=path, collection=collection, value=copy.deepcopy(value))
                session.add(doc)
            else:
                doc.value = _deep_merge(doc.value or {}, value) if merge else copy.deepcopy(value)
            return copy.deepcopy(doc.value)

    def update(self, path: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow field update of an existing document; missing documents are created."""
        path = path.strip('/')
        collection, _ = split_path(path)
        with self._session(write=True) as session:
            doc = session.get(Document, path)
            if doc is None:
                doc = Document(path=path, collection=collection, value=copy.deepcopy(fields))
                session.add(doc)
            else:
                value = dict(doc.value or {})
                value.update(copy.deepcopy(fields))
                doc.value = value
            return copy.deepcopy(doc.value)

    def delete(self, path: str) -> bool:
        path = path.strip('/')
        with self._session(write=True) as session:
            doc = session.get(Document, path)
            if doc is None:
                return False
            session.delete(doc)
            return True

    def list(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Return ``{key: value}`` for every document in a collection, ordered by key."""
        collection = collection.strip('/')
        with self._session() as session:
            rows = session.execute(
                select(Document).where(Document.collection == collection).order_by(Document.path.asc())
            ).scalars().all()
            prefix = f"{collection}/"
            return {r.path[len(prefix):]: copy.deepcopy(r.value) for r in rows}

    def push(self, path: str, entry: Dict[str, Any]) -> str:
        """Append an entry under ``path`` and return its generated id."""
        path = path.strip('/')
        # time-ordered prefix keeps ids sortable in push order
        entry_id = f"{utcnow().strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:8]}"
        with self._session(write=True) as session:
            session.add(LogEntry(path=path, entry_id=entry_id, value=copy.deepcopy(entry)))
        return entry_id

    def entries(self, path: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Read back the entries pushed under ``path`` in push order."""
        path = path.strip('/')
        with self._session() as session:
            rows = session.execute(
                select(LogEntry).where(LogEntry.path == path).order_by(LogEntry.id.asc())
            ).scalars().all()
            return [(r.entry_id, copy.deepcopy(r.value)) for r in rows]


__all__ = ['DocumentStore', 'split_path']
