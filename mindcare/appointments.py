"""
Appointment booking and appointment lists.

Booking is not transactional: two patients can both see a doctor as free for a slot
and both book it. Availability is only a read of the slot's current bookings.
"""
# mindcare/appointments.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from mindcare import config, timestamps
from mindcare.models import APPOINTMENT_STATUSES, Appointment, parse_records
from mindcare.queries import fetch_sorted
from mindcare.store import SERVER_TIMESTAMP, StoreError

logger = logging.getLogger(__name__)

APPOINTMENTS = 'appointments'
DATE_FIELD = 'appointmentDetails.date'


def filter_appointments(records: List[Appointment], text: str = '', status: str = 'all') -> List[Appointment]:
    """Client-side search over doctor, patient, slot and status, plus an optional status filter."""
    needle = (text or '').strip().lower()
    results = []
    for record in records:
        if status != 'all' and record.status != status:
            continue
        if needle:
            haystack = ' '.join(
                value.lower() for value in (
                    record.doctor,
                    record.patient_name,
                    record.details.patient_id,
                    record.details.date_string,
                    record.details.time,
                    record.status,
                ) if value
            )
            if needle not in haystack:
                continue
        results.append(record)
    return results


class AppointmentService:
    """Appointment queries, availability and booking."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    @property
    def _collection(self):
        return self._service.store.collection(APPOINTMENTS)

    def list_all(self) -> List[Appointment]:
        """Every appointment, most recent slot first."""
        return parse_records(fetch_sorted(self._collection, DATE_FIELD), Appointment)

    def list_for_patient(self, patient_uid: str) -> List[Appointment]:
        """A patient's appointments, most recent slot first."""
        query = self._collection.where('patientUid', '==', patient_uid)
        return parse_records(fetch_sorted(query, DATE_FIELD), Appointment)

    def list_for_record(self, record) -> List[Appointment]:
        """Appointments of a patient record, matched by account uid or by the slot's patient ID."""
        records = self.list_for_patient(record.doc_id)
        if record.patient_id:
            query = self._collection.where('appointmentDetails.patientId', '==', record.patient_id)
            known = {appointment.id for appointment in records}
            records += [
                appointment for appointment in parse_records(fetch_sorted(query, DATE_FIELD), Appointment)
                if appointment.id not in known
            ]
            records.sort(key=lambda appointment: timestamps.to_epoch(appointment.when), reverse=True)
        return records

    def list_for_doctor(self, doctor_uid: str) -> List[Appointment]:
        """A doctor's appointments, most recent slot first.

        Falls back to an unordered query, then to a scan of the whole collection.
        """
        query = self._collection.where('doctorId', '==', doctor_uid)
        return parse_records(fetch_sorted(query, DATE_FIELD, scan={'doctorId': doctor_uid}), Appointment)

    def upcoming_for_patient(self, patient_uid: str, limit: int = 5, now=None) -> List[Appointment]:
        """A patient's non-cancelled future appointments, soonest first."""
        now = now or timestamps.utcnow()
        query = self._collection.where('patientUid', '==', patient_uid)
        records = parse_records(fetch_sorted(query, DATE_FIELD, descending=False), Appointment)
        upcoming = [
            record for record in records
            if record.status != 'cancelled' and record.when is not None and record.when >= now
        ]
        return upcoming[:limit]

    def doctor_roster(self) -> List[Dict]:
        """Bookable doctors: the `doctors` collection plus registered doctor profiles.

        The built-in default doctors are used when neither has entries or the
        store cannot be read.
        """
        store = self._service.store
        try:
            roster = [dict(snap.to_dict(), id=snap.id) for snap in store.collection('doctors').get()]
            known = {doctor['id'] for doctor in roster}
            for snap in store.collection('doctorProfiles').get():
                if snap.id not in known:
                    roster.append({
                        'id': snap.id,
                        'name': snap.get('name') or 'Unknown Doctor',
                        'specialty': snap.get('specialization') or snap.get('degree') or '',
                    })
        except StoreError as e:
            logger.warning("Could not load doctors: %s", e)
            roster = []
        if not roster:
            return [dict(doctor) for doctor in config.FALLBACK_DOCTORS]
        return roster

    def booked_doctor_ids(self, date_string: str, time: str) -> set:
        """Doctor ids holding a non-cancelled appointment at exactly this slot."""
        snaps = (
            self._collection
            .where('appointmentDetails.dateString', '==', date_string)
            .where('appointmentDetails.time', '==', time)
            .get()
        )
        return {
            snap.get('doctorId') for snap in snaps
            if (snap.get('status') or 'scheduled') != 'cancelled' and snap.get('doctorId')
        }

    def available_doctors(self, date_string: str, time: str, roster: Optional[List[Dict]] = None) -> List[Dict]:
        """Doctors free at a slot.

        Without a complete slot, or when the slot cannot be checked, every
        doctor on the roster is returned.
        """
        roster = self.doctor_roster() if roster is None else roster
        if not date_string or not time:
            return list(roster)
        try:
            booked = self.booked_doctor_ids(date_string, time)
        except StoreError as e:
            logger.warning("Could not check availability for %s %s: %s", date_string, time, e)
            return list(roster)
        return [doctor for doctor in roster if doctor['id'] not in booked]

    def book(self, user, doctor_id: str, date_string: str, time: str, roster: Optional[List[Dict]] = None,
             patient=None) -> str:
        """Books a slot with a doctor for the signed-in patient.

        Args:
            user (User): The booking patient.
            doctor_id (str): The chosen doctor's id.
            date_string (str): The slot date as "YYYY-MM-DD".
            time (str): The slot label, e.g. "10:00 AM".
            roster (list, optional): The roster the doctor was picked from.
            patient (PatientRecord, optional): The patient's profile, used to
                label the appointment.

        Returns:
            str: The new appointment's id.

        Raises:
            ValueError: If the user, doctor or slot is missing or malformed.
        """
        if user is None or not doctor_id or not date_string or not time:
            raise ValueError("A signed-in patient, doctor, date and time are required.")
        when = timestamps.combine_slot(date_string, time)
        roster = self.doctor_roster() if roster is None else roster
        doctor = next((entry for entry in roster if entry['id'] == doctor_id), None)

        details = {'date': when, 'time': time, 'dateString': date_string}
        payload = {
            'patientUid': user.uid,
            'doctor': (doctor or {}).get('name') or 'Unknown Doctor',
            'doctorId': doctor_id,
            'appointmentDetails': details,
            'status': 'scheduled',
            'createdAt': SERVER_TIMESTAMP,
        }
        if patient is not None:
            if patient.name:
                payload['patientName'] = patient.name
            if patient.patient_id:
                details['patientId'] = patient.patient_id

        ref = self._collection.add(payload)
        self._service.memo.invalidate()
        logger.info("Booked appointment %s with %s at %s %s", ref.id, doctor_id, date_string, time)
        return ref.id

    def set_status(self, appointment_id: str, status: str) -> None:
        """Changes an appointment's status.

        Raises:
            ValueError: If the status is not one of APPOINTMENT_STATUSES.
            DocumentNotFoundError: If the appointment does not exist.
        """
        if status not in APPOINTMENT_STATUSES:
            raise ValueError(f"Unknown appointment status {status!r}.")
        self._collection.document(appointment_id).update({'status': status, 'updatedAt': SERVER_TIMESTAMP})
        self._service.memo.invalidate()

    def cancel(self, appointment_id: str) -> None:
        self.set_status(appointment_id, 'cancelled')
