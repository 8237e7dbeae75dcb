"""
Treatment questionnaires and treatment history.
"""
# mindcare/treatments.py

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from mindcare import timestamps
from mindcare.models import TREATMENT_STATUSES, PatientRecord, Treatment, parse_records
from mindcare.queries import fetch_sorted
from mindcare.store import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)

TREATMENTS = 'treatments'
QUESTIONNAIRE_FIELDS = ('patientName', 'patientId', 'problem', 'duration', 'pastHistory', 'medications', 'prescription')
REQUIRED_FIELDS = ('patientName', 'problem', 'duration')


class TreatmentService:
    """Records treatments and loads treatment history."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    @property
    def _collection(self):
        return self._service.store.collection(TREATMENTS)

    def record(self, user, questionnaire: Dict) -> str:
        """Saves a completed questionnaire as an ongoing treatment.

        Args:
            user (User): The recording doctor or clinic admin.
            questionnaire (dict): Values keyed by QUESTIONNAIRE_FIELDS.

        Returns:
            str: The new treatment's id.

        Raises:
            ValueError: If the patient name, problem or duration is missing.
        """
        values = {field: str(questionnaire.get(field) or '').strip() for field in QUESTIONNAIRE_FIELDS}
        missing = [field for field in REQUIRED_FIELDS if not values[field]]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        payload = dict(values)
        payload.update({
            'status': 'ongoing',
            'date': SERVER_TIMESTAMP,
            'createdByUid': user.uid if user else '',
            'createdByName': user.name if user else '',
        })
        ref = self._collection.add(payload)
        self._service.memo.invalidate()
        return ref.id

    def list_all(self) -> List[Treatment]:
        """Every treatment, newest first."""
        return parse_records(fetch_sorted(self._collection, 'date'), Treatment)

    def list_for_patient(self, patient_id: str) -> List[Treatment]:
        """A patient's treatments, newest first."""
        if not patient_id:
            return []
        query = self._collection.where('patientId', '==', patient_id)
        return parse_records(fetch_sorted(query, 'date'), Treatment)

    def list_for_creator(self, uid: str) -> List[Treatment]:
        """Treatments recorded by one doctor, newest first."""
        query = self._collection.where('createdByUid', '==', uid)
        return parse_records(fetch_sorted(query, 'date', scan={'createdByUid': uid}), Treatment)

    def list_for_user(self, uid: str) -> Tuple[str, List[Treatment]]:
        """A signed-in patient's own treatments.

        Returns:
            tuple: The resolved patient ID ('' if it cannot be resolved) and the treatments.
        """
        patient_id = self._service.patients.resolve_own_patient_id(uid)
        if not patient_id:
            return '', []
        return patient_id, self.list_for_patient(patient_id)

    def set_status(self, treatment_id: str, status: str) -> None:
        if status not in TREATMENT_STATUSES:
            raise ValueError(f"Unknown treatment status {status!r}.")
        self._collection.document(treatment_id).update({'status': status})
        self._service.memo.invalidate()

    def import_patient(self, name: str = '', patient_id: str = '') -> Tuple[Optional[PatientRecord], List[Treatment]]:
        """Resolves a patient from typed details and loads their past treatments."""
        patient = self._service.patients.resolve_patient(name, patient_id)
        if patient is None:
            return None, []
        return patient, self.list_for_patient(patient.patient_id or (patient_id or '').strip())


def render_report(questionnaire: Dict, patient: Optional[PatientRecord] = None, past: Iterable[Treatment] = ()) -> str:
    """Builds the plain-text treatment report offered for download."""
    lines = ["Treatment Report", "=" * 16, ""]
    lines.append(f"Patient: {questionnaire.get('patientName', '')}")
    if questionnaire.get('patientId'):
        lines.append(f"Patient ID: {questionnaire['patientId']}")
    if patient is not None:
        for label, value in (("Age", patient.age), ("Gender", patient.gender), ("Phone", patient.phone),
                             ("Allergies", patient.allergies), ("Current medications", patient.current_medications)):
            if value:
                lines.append(f"{label}: {value}")
    lines.append("")
    for label, field in (("Problem", 'problem'), ("Duration", 'duration'), ("Past history", 'pastHistory'),
                         ("Medications", 'medications'), ("Prescription", 'prescription')):
        lines.append(f"{label}: {questionnaire.get(field) or '-'}")

    past = list(past)
    if past:
        lines.extend(["", "Past treatments", "-" * 15])
        for treatment in past:
            when = timestamps.format_timestamp(treatment.date, fallback="Unknown date")
            lines.append(f"{when}: {treatment.problem or '-'} ({treatment.status})")
    return "\n".join(lines) + "\n"
