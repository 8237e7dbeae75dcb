"""
Patient feedback: submission, review lists and the patient's live history.
"""
# mindcare/feedback.py

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from mindcare import config, gemini
from mindcare.models import FEEDBACK_STATUSES, Feedback, parse_records
from mindcare.queries import fetch_sorted, sort_snapshots
from mindcare.store import DESCENDING, SERVER_TIMESTAMP, StoreError

logger = logging.getLogger(__name__)

FEEDBACK = 'patientFeedback'
ORDER_FIELD = 'createdAt'


def filter_feedback(records: List[Feedback], text: str = '', status: str = 'all') -> List[Feedback]:
    """Filters by status and by a case-insensitive substring.

    An unset status reads as 'new'. The text is matched against the doctor,
    subject, review, message and patient uid.
    """
    needle = (text or '').strip().lower()
    results = []
    for record in records:
        if status != 'all' and (record.status or 'new') != status:
            continue
        haystack = (record.doctor, record.subject, record.review, record.message, record.uid)
        if needle and not any(needle in value.lower() for value in haystack if value):
            continue
        results.append(record)
    return results


class FeedbackHistory:
    """A patient's feedback history kept current by a live subscription.

    If the subscription fails, `error` holds the message and the history is
    refreshed by polling: each `refresh()` re-runs the query without ordering
    and sorts in memory.
    """

    def __init__(self, query, on_change: Optional[Callable[[List[Feedback]], None]] = None):
        self._query = query
        self._on_change = on_change
        self._unsubscribe = None
        self.records: List[Feedback] = []
        self.error: Optional[str] = None
        self.live = False

    def start(self) -> 'FeedbackHistory':
        self._unsubscribe = self._query.order_by(ORDER_FIELD, DESCENDING).on_snapshot(self._on_next, self._on_error)
        if not self.live:
            self.stop()
        return self

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.live = False

    def _publish(self, records: List[Feedback]) -> None:
        self.records = records
        if self._on_change is not None:
            self._on_change(records)

    def _on_next(self, snapshots) -> None:
        self.live = True
        self._publish(parse_records(snapshots, Feedback))

    def _on_error(self, error: StoreError) -> None:
        logger.warning("Feedback subscription failed (%s); polling instead.", error)
        self.error = str(error)
        self.stop()
        self.refresh()

    def refresh(self) -> List[Feedback]:
        """Re-fetches the history when polling. Returns the current records."""
        if self.live:
            return self.records
        try:
            snapshots = sort_snapshots(self._query.unordered().get(), ORDER_FIELD)
        except StoreError as e:
            logger.warning("Could not poll feedback history: %s", e)
            self.error = str(e)
            return self.records
        self._publish(parse_records(snapshots, Feedback))
        return self.records


class FeedbackService:
    """Stores and lists patient reviews of doctors."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    @property
    def _collection(self):
        return self._service.store.collection(FEEDBACK)

    def submit(self, user, doctor: str, review: str, rating) -> str:
        """Saves a patient's review with status 'new'.

        Raises:
            ValueError: If the doctor or review is missing, or the rating is not 1 to 5.
        """
        doctor = (doctor or '').strip()
        review = (review or '').strip()
        if not doctor or not review:
            raise ValueError("Choose a doctor and write a review.")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5.")
        ref = self._collection.add({
            'uid': user.uid,
            'patientName': user.name,
            'doctor': doctor,
            'review': review,
            'rating': rating,
            'status': 'new',
            'createdAt': SERVER_TIMESTAMP,
        })
        self._service.memo.invalidate()
        return ref.id

    def list_all(self) -> List[Feedback]:
        return parse_records(fetch_sorted(self._collection, ORDER_FIELD), Feedback)

    def list_for_user(self, uid: str, limit: Optional[int] = None) -> List[Feedback]:
        query = self._collection.where('uid', '==', uid)
        return parse_records(fetch_sorted(query, ORDER_FIELD, limit=limit), Feedback)

    def subscribe_history(self, uid: str, on_change: Optional[Callable[[List[Feedback]], None]] = None) -> FeedbackHistory:
        """Starts a live view of one patient's feedback, newest first."""
        return FeedbackHistory(self._collection.where('uid', '==', uid), on_change).start()

    def set_status(self, feedback_id: str, status: str) -> None:
        if status not in FEEDBACK_STATUSES:
            raise ValueError(f"Unknown feedback status {status!r}.")
        self._collection.document(feedback_id).update({'status': status, 'updatedAt': SERVER_TIMESTAMP})
        self._service.memo.invalidate()

    def doctor_names(self) -> List[str]:
        """Doctor names for the review form, or the default names when none are stored."""
        try:
            names = [snap.get('name') for snap in self._service.store.collection('doctors').get()]
        except StoreError as e:
            logger.warning("Could not load doctors: %s", e)
            names = []
        names = [name for name in names if isinstance(name, str) and name.strip()]
        return names or [doctor['name'] for doctor in config.FALLBACK_DOCTORS]

    def digest(self, records: List[Feedback]) -> Optional[str]:
        return gemini.summarize_feedback(records)
