"""
This module provides the document database used by every MindCare page.

`DocumentStore` keeps named collections of JSON-like documents, persisted to an
encrypted file (`records.json` by default) after every write. Its query surface
mirrors the hosted document databases the portal was designed for:

- equality, inequality, `in` and range filters on dotted field paths,
- ordering and limits, with ties broken by document id,
- aggregate counts,
- merge upserts (`set(..., merge=True)`) and `SERVER_TIMESTAMP`,
- live subscriptions (`on_snapshot`) re-delivered after every write.

Queries that need a composite index which has not been declared with
`create_index` fail with `MissingIndexError`, exactly like the hosted service, so
callers must decide explicitly what to do when an ordered query is unavailable.
"""
# mindcare/store.py

from __future__ import annotations

import copy
import datetime
import inspect
import json
import logging
import threading
import uuid
import weakref
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from cryptography.fernet import InvalidToken

from mindcare import timestamps

logger = logging.getLogger(__name__)

ASCENDING = 'asc'
DESCENDING = 'desc'

EQUALITY_OPS = ('==', 'in')
RANGE_OPS = ('<', '<=', '>', '>=', '!=')

_MISSING = object()


class StoreError(Exception):
    """Base class for document store failures."""


class MissingIndexError(StoreError):
    """Raised when a query needs a composite index that is not declared."""

    def __init__(self, collection: str, fields: Tuple[str, ...]):
        self.collection = collection
        self.fields = fields
        super().__init__(f"The query requires a composite index on {collection} ({', '.join(fields)}).")


class InvalidQueryError(StoreError):
    """Raised for queries the store cannot serve with any index."""


class DocumentNotFoundError(StoreError):
    """Raised when updating a document that does not exist."""


class StoreUnavailableError(StoreError):
    """Raised when the store file cannot be written."""


class _ServerTimestamp:
    """Singleton marker; copies of a document must keep the same instance."""

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __repr__(self):
        return 'SERVER_TIMESTAMP'


# Replaced by the current UTC time when a document is written.
SERVER_TIMESTAMP = _ServerTimestamp()


def get_path(data: Dict, path: str, default=_MISSING):
    """Reads a dotted field path (e.g. "appointmentDetails.date") from a document."""
    current = data
    for part in path.split('.'):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _set_path(data: Dict, path: str, value) -> None:
    parts = path.split('.')
    current = data
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value


def _deep_merge(target: Dict, source: Dict) -> Dict:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def _resolve_sentinels(value, now):
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: _resolve_sentinels(item, now) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_sentinels(item, now) for item in value]
    return value


def _json_default(value):
    if isinstance(value, datetime.datetime):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, datetime.date):
        return {"__date__": value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_object_hook(obj):
    if len(obj) == 1:
        if "__datetime__" in obj:
            return datetime.datetime.fromisoformat(obj["__datetime__"])
        if "__date__" in obj:
            return datetime.date.fromisoformat(obj["__date__"])
    return obj


def _range_key(value):
    """Comparable key for range filters; values of different kinds never compare."""
    if isinstance(value, (datetime.datetime, datetime.date)) or (isinstance(value, dict) and 'seconds' in value):
        return ('time', timestamps.to_epoch(value))
    if isinstance(value, bool):
        return ('bool', value)
    if isinstance(value, (int, float)):
        return ('number', value)
    if isinstance(value, str):
        return ('string', value)
    return None


def _matches(value, op: str, target) -> bool:
    if value is _MISSING:
        return False
    if op == '==':
        return value == target
    if op == 'in':
        return value in target
    if op == '!=':
        return value != target
    left, right = _range_key(value), _range_key(target)
    if left is None or right is None or left[0] != right[0]:
        return False
    if op == '<':
        return left[1] < right[1]
    if op == '<=':
        return left[1] <= right[1]
    if op == '>':
        return left[1] > right[1]
    return left[1] >= right[1]


def order_key(value):
    """Sort key shared by ordered queries and the in-memory fallback sort.

    Instants in any supported encoding order chronologically. Missing and
    unparseable values count as the epoch, so they sort last in descending
    order, and among themselves order lexically.
    """
    if value is _MISSING or value is None:
        return (0.0, '')
    instant = timestamps.to_datetime(value)
    if instant is not None:
        return (instant.timestamp(), '')
    return (0.0, str(value))


class Snapshot:
    """A read-only copy of a document as it was when the query ran."""

    def __init__(self, doc_id: str, data: Optional[Dict], collection: str = ''):
        self.id = doc_id
        self.collection = collection
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict:
        return copy.deepcopy(self._data) if self._data is not None else {}

    def get(self, path: str, default=None):
        if self._data is None:
            return default
        value = get_path(self._data, path)
        return default if value is _MISSING else value

    def __repr__(self):
        return f"Snapshot({self.collection}/{self.id})"


class Query:
    """An immutable query over one collection."""

    def __init__(self, store: 'DocumentStore', collection: str, filters=(), orders=(), limit_count=None):
        self._store = store
        self._collection = collection
        self._filters = tuple(filters)
        self._orders = tuple(orders)
        self._limit = limit_count

    @property
    def store(self) -> 'DocumentStore':
        return self._store

    @property
    def collection_name(self) -> str:
        return self._collection

    def where(self, field: str, op: str, value) -> 'Query':
        if op not in EQUALITY_OPS + RANGE_OPS:
            raise InvalidQueryError(f"Unsupported operator {op!r}.")
        return Query(self._store, self._collection, self._filters + ((field, op, value),), self._orders, self._limit)

    def order_by(self, field: str, direction: str = ASCENDING) -> 'Query':
        if direction not in (ASCENDING, DESCENDING):
            raise InvalidQueryError(f"Unsupported direction {direction!r}.")
        return Query(self._store, self._collection, self._filters, self._orders + ((field, direction),), self._limit)

    def limit(self, count: int) -> 'Query':
        return Query(self._store, self._collection, self._filters, self._orders, count)

    def unordered(self) -> 'Query':
        """The same filters without ordering or limit."""
        return Query(self._store, self._collection, self._filters)

    def required_index(self) -> Optional[Tuple[str, ...]]:
        """Returns the composite index fields this query needs, or None.

        The index key lists equality fields (sorted), then the range field,
        then the order fields, without duplicates.

        Raises:
            InvalidQueryError: If range filters target more than one field, or
                the first ordering is not on the range field.
        """
        equality = sorted({field for field, op, _ in self._filters if op in EQUALITY_OPS})
        ranges = sorted({field for field, op, _ in self._filters if op in RANGE_OPS})
        order_fields = [field for field, _ in self._orders]
        if len(ranges) > 1:
            raise InvalidQueryError("Range filters are only supported on a single field.")
        if ranges and order_fields and order_fields[0] != ranges[0]:
            raise InvalidQueryError("The first ordering must be on the range filter field.")

        fields = []
        for field in equality + ranges + order_fields:
            if field not in fields:
                fields.append(field)

        needs_index = False
        if order_fields and (len(order_fields) > 1 or any(field != order_fields[0] for field in equality + ranges)):
            needs_index = True
        if equality and ranges:
            needs_index = True
        return tuple(fields) if needs_index else None

    def get(self) -> List[Snapshot]:
        """Runs the query and returns matching snapshots."""
        index = self.required_index()
        if index is not None and not self._store.has_index(self._collection, index):
            raise MissingIndexError(self._collection, index)

        documents = self._store._documents(self._collection)
        matched = [
            (doc_id, data) for doc_id, data in documents
            if all(_matches(get_path(data, field), op, value) for field, op, value in self._filters)
        ]
        if self._orders:
            last_direction = self._orders[-1][1]
            matched.sort(key=lambda item: item[0], reverse=last_direction == DESCENDING)
            for field, direction in reversed(self._orders):
                matched.sort(key=lambda item: order_key(get_path(item[1], field)), reverse=direction == DESCENDING)
        else:
            matched.sort(key=lambda item: item[0])
        if self._limit is not None:
            matched = matched[:self._limit]
        return [Snapshot(doc_id, data, self._collection) for doc_id, data in matched]

    def count(self) -> int:
        """Aggregate count of matching documents."""
        return len(self.get())

    def on_snapshot(self, on_next: Callable[[List[Snapshot]], None], on_error: Optional[Callable[[StoreError], None]] = None) -> Callable[[], None]:
        """Subscribes to this query's results.

        `on_next` is called immediately and again after every write to the
        collection. Query failures go to `on_error` (or are raised when no error
        callback is given).

        Returns:
            A callable that cancels the subscription.
        """
        return self._store._subscribe(self, on_next, on_error)


class DocumentRef:
    """A reference to a single document by id."""

    def __init__(self, store: 'DocumentStore', collection: str, doc_id: str):
        self._store = store
        self.collection = collection
        self.id = doc_id

    def get(self) -> Snapshot:
        return Snapshot(self.id, self._store._document(self.collection, self.id), self.collection)

    def set(self, data: Dict, merge: bool = False) -> None:
        """Writes the document; with `merge=True` only the given fields change."""
        self._store._write(self.collection, self.id, data, merge=merge)

    def update(self, fields: Dict) -> None:
        """Updates dotted field paths of an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        self._store._update(self.collection, self.id, fields)


class CollectionRef(Query):
    """A collection; also the unfiltered query over it."""

    def __init__(self, store: 'DocumentStore', name: str):
        super().__init__(store, name)
        self.name = name

    def document(self, doc_id: Optional[str] = None) -> DocumentRef:
        return DocumentRef(self._store, self.name, doc_id or self._store.new_id())

    def add(self, data: Dict) -> DocumentRef:
        ref = self.document()
        ref.set(data)
        return ref


class DocumentStore:
    """Encrypted, file-backed document database."""

    def __init__(self, path: Optional[str], encryptor=None, indexes: Iterable = ()):
        """Loads the store.

        Args:
            path: The store file, or None for an in-memory store.
            encryptor: A Fernet-compatible object with `encrypt`/`decrypt`;
                the file is written in plain JSON when omitted.
            indexes: (collection, fields) pairs to declare as composite indexes.
        """
        self._path = path
        self._encryptor = encryptor
        self._lock = threading.RLock()
        self._indexes = set()
        self._subscriptions: Dict[str, List] = {}
        self._data = self._load_data()
        for collection, fields in indexes:
            self.create_index(collection, fields)

    def _load_data(self) -> Dict[str, Dict[str, Dict]]:
        """Loads and decrypts the store file.

        Returns:
            dict: The collections, or an empty dataset if the file is missing or unreadable.
        """
        if not self._path:
            return {}
        try:
            with open(self._path, 'r') as f:
                raw = f.read()
            if not raw:
                return {}
            if self._encryptor is not None:
                raw = self._encryptor.decrypt(raw.encode()).decode()
            data = json.loads(raw, object_hook=_json_object_hook)
            return data.get('collections', {})
        except FileNotFoundError:
            return {}
        except (InvalidToken, json.JSONDecodeError, ValueError) as e:
            logger.warning("Could not load data file %s (%s). Starting with a new dataset.", self._path, e)
            return {}

    def _save_data(self, data: Optional[Dict] = None) -> None:
        if not self._path:
            return
        data = self._data if data is None else data
        payload = json.dumps({'collections': data}, default=_json_default, indent=2)
        if self._encryptor is not None:
            payload = self._encryptor.encrypt(payload.encode()).decode()
        try:
            with open(self._path, 'w') as f:
                f.write(payload)
        except OSError as e:
            logger.error("Failed to write data file %s: %s", self._path, e)
            raise StoreUnavailableError(str(e)) from e

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex[:20]

    def create_index(self, collection: str, fields: Iterable[str]) -> None:
        """Declares a composite index (see `Query.required_index` for the field order)."""
        self._indexes.add((collection, tuple(fields)))

    def has_index(self, collection: str, fields: Tuple[str, ...]) -> bool:
        return (collection, tuple(fields)) in self._indexes

    def collection(self, name: str) -> CollectionRef:
        return CollectionRef(self, name)

    def collection_names(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def listener_count(self, collection: str) -> int:
        """Number of live `on_snapshot` subscriptions on a collection."""
        with self._lock:
            return len(self._subscriptions.get(collection, []))

    def _documents(self, collection: str):
        with self._lock:
            return [(doc_id, copy.deepcopy(data)) for doc_id, data in self._data.get(collection, {}).items()]

    def _document(self, collection: str, doc_id: str) -> Optional[Dict]:
        with self._lock:
            data = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def _write(self, collection: str, doc_id: str, data: Dict, merge: bool = False) -> None:
        resolved = copy.deepcopy(_resolve_sentinels(data, timestamps.utcnow()))
        with self._lock:
            current = self._data.get(collection, {}).get(doc_id)
            if merge and current is not None:
                resolved = _deep_merge(copy.deepcopy(current), resolved)
            self._commit(collection, doc_id, resolved)
        self._notify(collection)

    def _update(self, collection: str, doc_id: str, fields: Dict) -> None:
        now = timestamps.utcnow()
        with self._lock:
            current = self._data.get(collection, {}).get(doc_id)
            if current is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist.")
            document = copy.deepcopy(current)
            for path, value in fields.items():
                _set_path(document, path, copy.deepcopy(_resolve_sentinels(value, now)))
            self._commit(collection, doc_id, document)
        self._notify(collection)

    def _commit(self, collection: str, doc_id: str, document: Dict) -> None:
        """Saves the dataset with `document` in place, then makes it current."""
        documents = dict(self._data.get(collection, {}))
        documents[doc_id] = document
        data = dict(self._data)
        data[collection] = documents
        self._save_data(data)
        self._data = data

    def _subscribe(self, query: Query, on_next, on_error) -> Callable[[], None]:
        def unsubscribe():
            with self._lock:
                listeners = self._subscriptions.get(query.collection_name, [])
                if subscription in listeners:
                    listeners.remove(subscription)

        subscription = _Subscription(query, on_next, on_error, unsubscribe)
        with self._lock:
            self._subscriptions.setdefault(query.collection_name, []).append(subscription)
        self._deliver(subscription)
        return unsubscribe

    def _deliver(self, subscription: '_Subscription') -> None:
        on_next, on_error = subscription.callbacks()
        if on_next is None:
            return
        try:
            results = subscription.query.get()
        except StoreError as e:
            if on_error is None:
                raise
            on_error(e)
            return
        on_next(results)

    def _notify(self, collection: str) -> None:
        with self._lock:
            listeners = list(self._subscriptions.get(collection, []))
        for subscription in listeners:
            self._deliver(subscription)


def _callback_ref(callback, on_dead):
    if inspect.ismethod(callback):
        return weakref.WeakMethod(callback, lambda _ref: on_dead())
    return lambda: callback


class _Subscription:
    """A listener registered through `Query.on_snapshot`.

    Bound-method callbacks are held weakly: once their owner is garbage
    collected the subscription removes itself.
    """

    def __init__(self, query: Query, on_next, on_error, on_dead):
        self.query = query
        self._on_next = _callback_ref(on_next, on_dead)
        self._on_error = _callback_ref(on_error, on_dead) if on_error is not None else None

    def callbacks(self):
        """Returns (on_next, on_error); on_next is None once its owner is gone."""
        on_error = self._on_error() if self._on_error is not None else None
        return self._on_next(), on_error
