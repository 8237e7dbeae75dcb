"""
Aggregate counts used by the dashboard cards.

Each helper issues a server-side count so document bodies are never transferred.
"""
# mindcare/stats.py

import datetime

from mindcare import timestamps
from mindcare.store import DocumentStore


def count_patients(store: DocumentStore) -> int:
    """Counts patients across both patient collections."""
    return store.collection('patients').count() + store.collection('patientProfiles').count()


def count_appointments_on_date(store: DocumentStore, day=None) -> int:
    """Counts appointments whose slot falls on `day` (today by default)."""
    start, end = timestamps.day_bounds(day or datetime.date.today())
    query = (
        store.collection('appointments')
        .where('appointmentDetails.date', '>=', start)
        .where('appointmentDetails.date', '<', end)
    )
    return query.count()


def count_treatments_by_status(store: DocumentStore, status: str) -> int:
    return store.collection('treatments').where('status', '==', status).count()


def count_pending_feedback(store: DocumentStore, statuses=('pending',)) -> int:
    """Counts feedback awaiting review.

    Only 'pending' counts by default; newly submitted feedback is stored as 'new'.
    """
    query = store.collection('patientFeedback')
    if len(statuses) == 1:
        return query.where('status', '==', statuses[0]).count()
    return query.where('status', 'in', list(statuses)).count()


def count_doctors(store: DocumentStore) -> int:
    return store.collection('doctorProfiles').count()


def count_appointments(store: DocumentStore) -> int:
    return store.collection('appointments').count()


def average_rating(store: DocumentStore):
    """Mean rating over rated feedback, or None when nothing is rated."""
    ratings = [
        snap.get('rating') for snap in store.collection('patientFeedback').where('rating', '>=', 1).get()
        if isinstance(snap.get('rating'), (int, float))
    ]
    if not ratings:
        return None
    return round(sum(ratings) / len(ratings), 1)
