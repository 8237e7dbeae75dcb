"""
Dashboard summary cards and the recent-activity feed.

There is no unified activity log. The feed fetches the few most recent documents of
each source independently, maps them to `Activity` lines, then merges and truncates.
Every source is capped before merging, so a recent event from a busy source can be
missing from the feed.

Card values are computed independently: a value whose query fails becomes None and the
page shows a dash for it while the other cards still render.
"""
# mindcare/dashboard.py

from __future__ import annotations

import datetime
import logging
from typing import Callable, Dict, List, Optional

from mindcare import config, stats, timestamps
from mindcare.models import Activity, Appointment, Feedback, Treatment, parse_records
from mindcare.queries import count_with_fallback, fetch_sorted
from mindcare.store import StoreError

logger = logging.getLogger(__name__)


def merge_activity(*groups: List[Activity], limit: int = config.ACTIVITY_DISPLAY_LIMIT) -> List[Activity]:
    """Concatenates activity groups, newest first, items without a timestamp last."""
    merged = [item for group in groups for item in group]
    merged.sort(
        key=lambda item: (item.timestamp is not None, timestamps.to_epoch(item.timestamp)),
        reverse=True,
    )
    return merged[:limit]


def appointment_activity(record: Appointment) -> Activity:
    text = f"Appointment with {record.doctor or 'a doctor'} for {record.patient_label()} ({record.status})"
    return Activity(f"appointment-{record.id}", text, record.when)


def treatment_activity(record: Treatment) -> Activity:
    text = f"Treatment recorded for {record.patient_label()}: {record.problem or 'no problem noted'}"
    return Activity(f"treatment-{record.id}", text, record.date)


def feedback_activity(record: Feedback) -> Activity:
    stars = f"{record.rating}-star " if record.rating else ""
    text = f"New {stars}feedback for {record.doctor or 'the clinic'}"
    return Activity(f"feedback-{record.id}", text, record.created_at)


def _safe(fetch: Callable[[], object], label: str):
    try:
        return fetch()
    except StoreError as e:
        logger.warning("Dashboard value %r failed: %s", label, e)
        return None


class DashboardService:
    """Builds the per-role dashboard cards, memoized between refreshes."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    @property
    def _store(self):
        return self._service.store

    def _source(self, name: str, order_field: str, record_class, to_activity, limit: int,
                keep: Optional[Callable] = None) -> List[Activity]:
        try:
            snaps = fetch_sorted(self._store.collection(name), order_field, limit=limit)
        except StoreError as e:
            logger.warning("Could not load recent %s: %s", name, e)
            return []
        records = parse_records(snaps, record_class)
        if keep is not None:
            records = [record for record in records if keep(record)]
        return [to_activity(record) for record in records]

    def _recent_activity(self, doctor_uid: Optional[str]) -> List[Activity]:
        if doctor_uid is None:
            limit = config.ACTIVITY_FETCH_LIMIT
            return merge_activity(
                self._source('appointments', 'appointmentDetails.date', Appointment, appointment_activity, limit),
                self._source('treatments', 'date', Treatment, treatment_activity, limit),
                self._source('patientFeedback', 'createdAt', Feedback, feedback_activity, limit),
            )
        limit = config.DOCTOR_ACTIVITY_FETCH_LIMIT
        return merge_activity(
            self._source('appointments', 'appointmentDetails.date', Appointment, appointment_activity, limit,
                         keep=lambda record: record.doctor_id == doctor_uid),
            self._source('treatments', 'date', Treatment, treatment_activity, limit,
                         keep=lambda record: record.created_by_uid == doctor_uid),
        )

    def recent_activity(self, doctor_uid: Optional[str] = None) -> List[Activity]:
        """The merged feed; a doctor's feed covers only their appointments and treatments."""
        return self._service.memo.get_or_fetch(
            ('activity', doctor_uid),
            lambda: self._recent_activity(doctor_uid),
            ttl_seconds=config.ACTIVITY_REFRESH_SECONDS,
        )

    def _memoized(self, key, build: Callable[[], Dict]) -> Dict:
        return self._service.memo.get_or_fetch(key, build, ttl_seconds=config.DASHBOARD_REFRESH_SECONDS)

    def admin_summary(self, day: Optional[datetime.date] = None) -> Dict[str, Optional[int]]:
        store = self._store

        def build():
            return {
                'patients': _safe(lambda: stats.count_patients(store), 'patients'),
                'appointments_today': _safe(lambda: stats.count_appointments_on_date(store, day), 'appointments_today'),
                'ongoing_treatments': _safe(lambda: stats.count_treatments_by_status(store, 'ongoing'), 'ongoing_treatments'),
                'pending_feedback': _safe(lambda: stats.count_pending_feedback(store), 'pending_feedback'),
            }

        return self._memoized(('summary', 'admin', day), build)

    def doctor_summary(self, uid: str, day: Optional[datetime.date] = None) -> Dict[str, Optional[int]]:
        store = self._store
        start, end = timestamps.day_bounds(day or datetime.date.today())

        def today_count():
            query = (
                store.collection('appointments')
                .where('doctorId', '==', uid)
                .where('appointmentDetails.date', '>=', start)
                .where('appointmentDetails.date', '<', end)
            )

            def on_day(snap):
                when = timestamps.to_datetime(snap.get('appointmentDetails.date'))
                return snap.get('doctorId') == uid and when is not None and start <= when < end

            return count_with_fallback(query, on_day)

        def patient_count():
            records = self._service.appointments.list_for_doctor(uid)
            return len({record.patient_uid or record.details.patient_id or record.patient_name for record in records})

        def total_count():
            query = store.collection('appointments').where('doctorId', '==', uid)
            return count_with_fallback(query, lambda snap: snap.get('doctorId') == uid)

        def ongoing_count():
            query = store.collection('treatments').where('createdByUid', '==', uid).where('status', '==', 'ongoing')
            return count_with_fallback(
                query, lambda snap: snap.get('createdByUid') == uid and snap.get('status') == 'ongoing',
            )

        def completed_count():
            query = store.collection('appointments').where('doctorId', '==', uid).where('status', '==', 'completed')
            return query.count()

        def build():
            return {
                'appointments_today': _safe(today_count, 'appointments_today'),
                'total_appointments': _safe(total_count, 'total_appointments'),
                'patients': _safe(patient_count, 'patients'),
                'ongoing_treatments': _safe(ongoing_count, 'ongoing_treatments'),
                'completed_appointments': _safe(completed_count, 'completed_appointments'),
            }

        return self._memoized(('summary', 'doctor', uid, day), build)

    def manager_summary(self) -> Dict[str, Optional[float]]:
        store = self._store

        def revenue():
            return stats.count_appointments(store) * config.REVENUE_PER_APPOINTMENT

        def build():
            return {
                'doctors': _safe(lambda: stats.count_doctors(store), 'doctors'),
                'staff': _safe(self._service.staff.count_staff, 'staff'),
                'patients': _safe(lambda: stats.count_patients(store), 'patients'),
                'appointments': _safe(lambda: stats.count_appointments(store), 'appointments'),
                'revenue': _safe(revenue, 'revenue'),
                'average_rating': _safe(lambda: stats.average_rating(store), 'average_rating'),
                'pending_feedback': _safe(lambda: stats.count_pending_feedback(store), 'pending_feedback'),
            }

        return self._memoized(('summary', 'generalmanager'), build)

    def patient_highlights(self, uid: str) -> Dict:
        """Upcoming appointments, treatment history and feedback count for a patient."""
        service = self._service

        def treatments():
            return service.treatments.list_for_user(uid)[1]

        def build():
            history = _safe(treatments, 'treatments')
            return {
                'upcoming': _safe(lambda: service.appointments.upcoming_for_patient(uid, limit=3), 'upcoming'),
                'treatment_count': len(history) if history is not None else None,
                'latest_treatment': history[0] if history else None,
                'feedback_count': _safe(
                    lambda: service.store.collection('patientFeedback').where('uid', '==', uid).count(),
                    'feedback_count',
                ),
            }

        return self._memoized(('summary', 'patient', uid), build)
