"""
Patient lookups for the MindCare portal.

Patients live in two parallel collections: `patients` (records entered by the clinic,
carrying a clinic-issued `patientId`) and `patientProfiles` (self-registered profiles
keyed by the patient's account uid). Every lookup here probes both.
"""
# mindcare/patients.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from mindcare import config
from mindcare.models import InvalidRecordError, PatientRecord, parse_records
from mindcare.store import StoreError

logger = logging.getLogger(__name__)

PATIENTS = 'patients'
PROFILES = 'patientProfiles'


def filter_patients(records: List[PatientRecord], text: str) -> List[PatientRecord]:
    """Keeps patients whose name, patient ID, phone or address contains `text` (case-insensitive)."""
    needle = (text or '').strip().lower()
    if not needle:
        return list(records)
    return [
        record for record in records
        if any(needle in value.lower() for value in (record.name, record.patient_id, record.phone, record.address) if value)
    ]


class PatientService:
    """Patient directory, profile lookups and identity resolution."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    @property
    def _store(self):
        return self._service.store

    def _first_match(self, collection: str, field: str, value: str):
        matches = self._store.collection(collection).where(field, '==', value).limit(1).get()
        return matches[0] if matches else None

    def _exact_match(self, collection: str, field: str, value: str) -> Optional[PatientRecord]:
        """The first well-formed document whose `field` equals `value`."""
        records = parse_records(self._store.collection(collection).where(field, '==', value).get(), PatientRecord)
        return records[0] if records else None

    def resolve_patient(self, name: str = '', patient_id: str = '') -> Optional[PatientRecord]:
        """Finds at most one patient matching a typed name and/or patient ID.

        The first match wins, in this order:
        1. exact patient ID in `patients`, 2. exact name in `patients`,
        3. the same two lookups in `patientProfiles`,
        4. case-insensitive substring of the patient ID, then of the name,
           across every document of both collections.

        Malformed documents are skipped and logged.

        Args:
            name (str): The typed patient name.
            patient_id (str): The typed patient ID.

        Returns:
            PatientRecord or None: The matched patient, or None when nothing matches.
        """
        name = (name or '').strip()
        patient_id = (patient_id or '').strip()
        if not name and not patient_id:
            return None

        for collection in (PATIENTS, PROFILES):
            if patient_id:
                record = self._exact_match(collection, 'patientId', patient_id)
                if record is not None:
                    return record
            if name:
                record = self._exact_match(collection, 'name', name)
                if record is not None:
                    return record

        everyone = self._store.collection(PATIENTS).get() + self._store.collection(PROFILES).get()
        for field, needle in (('patientId', patient_id), ('name', name)):
            if not needle:
                continue
            needle = needle.lower()
            candidates = [
                snap for snap in everyone
                if isinstance(snap.get(field), str) and needle in snap.get(field).lower()
            ]
            records = parse_records(candidates, PatientRecord)
            if records:
                return records[0]
        return None

    def list_patients(self) -> List[PatientRecord]:
        """Lists clinic patients, or self-registered profiles when there are none.

        Returns an empty list if the store cannot be read.
        """
        try:
            snaps = self._store.collection(PATIENTS).get()
            if not snaps:
                snaps = self._store.collection(PROFILES).get()
        except StoreError as e:
            logger.warning("Could not list patients: %s", e)
            return []
        return parse_records(snaps, PatientRecord)

    def patient_summaries(self, records: List[PatientRecord], limit: Optional[int] = None) -> Dict[str, Dict]:
        """Appointment counts and profile presence for the first `limit` patients.

        Appointments are counted by `patientUid` first, then by the slot's patient ID.
        A lookup that fails leaves its default (0 appointments, no profile).
        """
        limit = config.PATIENT_SUMMARY_LIMIT if limit is None else limit
        appointments = self._store.collection('appointments')
        summaries = {}
        for record in records[:limit]:
            count = 0
            try:
                count = appointments.where('patientUid', '==', record.doc_id).count()
                if count == 0 and record.patient_id:
                    count = appointments.where('appointmentDetails.patientId', '==', record.patient_id).count()
            except StoreError as e:
                logger.warning("Could not count appointments for %s: %s", record.doc_id, e)
            has_profile = False
            try:
                has_profile = self._store.collection(PROFILES).document(record.doc_id).get().exists
            except StoreError as e:
                logger.warning("Could not check profile for %s: %s", record.doc_id, e)
            summaries[record.doc_id] = {'appointments': count, 'has_profile': has_profile}
        return summaries

    def _record_at(self, collection: str, doc_id: str) -> Optional[PatientRecord]:
        if not doc_id:
            return None
        snap = self._store.collection(collection).document(doc_id).get()
        if not snap.exists:
            return None
        try:
            return PatientRecord.from_snapshot(snap)
        except InvalidRecordError as e:
            logger.warning("Unreadable patient document %s/%s: %s", collection, doc_id, e)
            return None

    def get_profile(self, doc_id: str) -> Optional[PatientRecord]:
        """Loads a patient by document id, preferring the self-registered profile."""
        return self._record_at(PROFILES, doc_id) or self._record_at(PATIENTS, doc_id)

    def profile_for_appointment(self, patient_uid: str = '', patient_id: str = '') -> Optional[PatientRecord]:
        """Loads the patient behind an appointment: the uid's profile, then `patients/{patient_id}`."""
        return self._record_at(PROFILES, patient_uid) or self._record_at(PATIENTS, patient_id)

    def resolve_own_patient_id(self, uid: str) -> str:
        """Finds a signed-in patient's clinic patient ID.

        Uses the ID on their profile, or the ID of the clinic record whose name
        exactly matches the profile name. Returns '' when neither resolves.
        """
        try:
            profile = self._store.collection(PROFILES).document(uid).get()
            if not profile.exists:
                return ''
            patient_id = str(profile.get('patientId') or '').strip()
            name = profile.get('name')
            if not patient_id and name:
                snap = self._first_match(PATIENTS, 'name', str(name))
                if snap is not None:
                    patient_id = str(snap.get('patientId') or '').strip()
            return patient_id
        except StoreError as e:
            logger.warning("Could not resolve patient ID for %s: %s", uid, e)
            return ''
