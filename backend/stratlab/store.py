"""
Document Store
One document per id inside a named collection. The store handle is passed to
the services that need it; nothing in stratlab holds a global client.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional

from stratlab.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Minimal key/document interface used by StrategyService"""

    @abstractmethod
    def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def scan(self, collection: str) -> Iterator[Dict[str, Any]]:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-process store; documents are copied on the way in and out"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _documents(self, collection: str) -> Dict[str, Dict[str, Any]]:
        if self._closed:
            raise StoreUnavailableError("Document store is closed")
        return self._collections.setdefault(collection, {})

    def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._documents(collection)[doc_id] = copy.deepcopy(document)
        logger.debug("Stored %s/%s", collection, doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._documents(collection).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._documents(collection).pop(doc_id, None) is not None
        if removed:
            logger.debug("Deleted %s/%s", collection, doc_id)
        return removed

    def scan(self, collection: str) -> Iterator[Dict[str, Any]]:
        with self._lock:
            documents = [copy.deepcopy(d) for d in self._documents(collection).values()]
        return iter(documents)

    def close(self) -> None:
        with self._lock:
            self._closed = True
