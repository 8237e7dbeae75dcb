"""
Query helpers that keep pages working when the store cannot serve an ordered query.

An ordered query over a filtered collection needs a composite index. When the index
is missing the page still needs its rows in order, so `fetch_sorted` re-issues the
query without ordering and sorts in memory by the normalized timestamp. Some pages
go one step further and scan the whole collection when even the unordered query
fails; that path is O(collection size) and only suitable at clinic scale.
"""
# mindcare/queries.py

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from mindcare.store import ASCENDING, DESCENDING, MissingIndexError, Query, Snapshot, StoreError, order_key

logger = logging.getLogger(__name__)


def sort_snapshots(snapshots: List[Snapshot], field: str, descending: bool = True) -> List[Snapshot]:
    """Sorts snapshots by a timestamp field in memory, in the order an indexed query returns.

    Unparseable or missing timestamps count as the epoch, so they sort last in
    descending order. Ties are broken by document id.
    """
    return sorted(
        snapshots,
        key=lambda snap: (order_key(snap.get(field)), snap.id),
        reverse=descending,
    )


def scan_collection(query: Query, equals: Dict[str, object]) -> List[Snapshot]:
    """Fetches a whole collection and keeps documents whose fields equal `equals`."""
    collection = query.store.collection(query.collection_name)
    return [
        snap for snap in collection.get()
        if all(snap.get(field) == value for field, value in equals.items())
    ]


def fetch_sorted(
    query: Query,
    order_field: str,
    descending: bool = True,
    limit: Optional[int] = None,
    scan: Optional[Dict[str, object]] = None,
) -> List[Snapshot]:
    """Runs `query` ordered by `order_field`, falling back when the index is missing.

    Args:
        query: The filtered, unordered query.
        order_field: The timestamp field to order by.
        descending: Newest first when True.
        limit: Optional maximum number of results.
        scan: Equality filters to apply to a whole-collection scan if the
            unordered query also fails. Without it that failure propagates.

    Returns:
        list: The matching snapshots in the requested order.

    Raises:
        StoreError: If the ordered query fails for a reason other than a
            missing index, or every fallback fails.
    """
    ordered = query.order_by(order_field, DESCENDING if descending else ASCENDING)
    if limit is not None:
        ordered = ordered.limit(limit)
    try:
        return ordered.get()
    except MissingIndexError as e:
        logger.warning("%s; sorting %s in memory.", e, query.collection_name)

    try:
        rows = query.unordered().get()
    except StoreError as e:
        if scan is None:
            raise
        logger.warning("Unordered query on %s failed (%s); scanning the collection.", query.collection_name, e)
        rows = scan_collection(query, scan)

    rows = sort_snapshots(rows, order_field, descending)
    if limit is not None:
        rows = rows[:limit]
    return rows


def count_with_fallback(query: Query, predicate: Callable[[Snapshot], bool]) -> int:
    """Aggregate count, or a client-side count over the whole collection when the query fails."""
    try:
        return query.count()
    except StoreError as e:
        logger.warning("Count on %s failed (%s); counting in memory.", query.collection_name, e)
        collection = query.store.collection(query.collection_name)
        return sum(1 for snap in collection.get() if predicate(snap))


def rows_from(snapshots: List[Snapshot]) -> List[Dict]:
    """Flattens snapshots into dictionaries with their id under "id"."""
    rows = []
    for snap in snapshots:
        row = snap.to_dict()
        row['id'] = snap.id
        rows.append(row)
    return rows
