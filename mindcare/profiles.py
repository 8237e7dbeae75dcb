"""
Profile registration for patients, doctors and general managers.

Each profile is a single document keyed by its owner's uid and written as a merge
upsert, so saving a partial form never erases fields saved earlier.
"""
# mindcare/profiles.py

from __future__ import annotations

import logging
from typing import Dict, MutableMapping, Optional, Tuple

from mindcare.models import DoctorProfile, GeneralManagerProfile, InvalidRecordError, PatientRecord
from mindcare.store import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)

PATIENT_PROFILES = 'patientProfiles'
DOCTOR_PROFILES = 'doctorProfiles'
MANAGER_PROFILES = 'generalManagerProfiles'

PATIENT_FIELDS = ('name', 'patientId', 'age', 'gender', 'phone', 'email', 'address', 'allergies', 'currentMedications')
DOCTOR_FIELDS = ('name', 'age', 'degree', 'specialization', 'phone', 'email', 'experience', 'licenseNumber')
MANAGER_FIELDS = ('name', 'age', 'phone', 'email', 'position')

REQUIRED = {
    PATIENT_PROFILES: ('name', 'age', 'gender'),
    DOCTOR_PROFILES: ('name', 'age', 'degree'),
    MANAGER_PROFILES: ('name',),
}
ROLE_COLLECTIONS = {
    'patient': PATIENT_PROFILES,
    'doctor': DOCTOR_PROFILES,
    'generalmanager': MANAGER_PROFILES,
}

DRAFT_KEY = 'patient_registration_draft'


class DraftStore:
    """The latest patient registration draft, held in browser-session state.

    `mapping` is any mutable mapping; the app passes `st.session_state`.
    """

    def __init__(self, mapping: MutableMapping):
        self._mapping = mapping

    def load(self) -> Optional[Dict]:
        draft = self._mapping.get(DRAFT_KEY)
        return dict(draft) if draft else None

    def save(self, form: Dict) -> None:
        self._mapping[DRAFT_KEY] = dict(form)

    def clear(self) -> None:
        if DRAFT_KEY in self._mapping:
            del self._mapping[DRAFT_KEY]


def clean_form(form: Dict, fields: Tuple[str, ...]) -> Dict[str, str]:
    """Keeps known fields, stripping text and dropping empty values."""
    cleaned = {}
    for field in fields:
        value = form.get(field)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            cleaned[field] = value
    return cleaned


def missing_fields(form: Dict, collection: str):
    return [field for field in REQUIRED[collection] if not str(form.get(field) or '').strip()]


class ProfileService:
    """Reads and upserts per-role profile documents."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    def _upsert(self, user, collection: str, form: Dict, fields: Tuple[str, ...]) -> Dict[str, str]:
        missing = missing_fields(form, collection)
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        payload = clean_form(form, fields)
        payload.setdefault('email', user.email)
        payload['uid'] = user.uid
        payload['updatedAt'] = SERVER_TIMESTAMP
        self._service.store.collection(collection).document(user.uid).set(payload, merge=True)
        self._service.memo.invalidate()
        logger.info("Saved %s profile for %s", collection, user.uid)
        return payload

    def save_patient_profile(self, user, form: Dict, drafts: Optional[DraftStore] = None) -> bool:
        """Saves a patient's registration form.

        Without a signed-in user the form is only kept as a draft.

        Returns:
            bool: True if the profile was written to the store, False if only the draft was saved.

        Raises:
            ValueError: If name, age or gender is missing.
        """
        missing = missing_fields(form, PATIENT_PROFILES)
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        if user is None:
            if drafts is None:
                raise ValueError("Sign in to save your profile.")
            drafts.save(clean_form(form, PATIENT_FIELDS))
            return False
        self._upsert(user, PATIENT_PROFILES, form, PATIENT_FIELDS)
        if drafts is not None:
            drafts.clear()
        return True

    def save_doctor_profile(self, user, form: Dict) -> Dict[str, str]:
        return self._upsert(user, DOCTOR_PROFILES, form, DOCTOR_FIELDS)

    def save_manager_profile(self, user, form: Dict) -> Dict[str, str]:
        return self._upsert(user, MANAGER_PROFILES, form, MANAGER_FIELDS)

    def _read(self, collection: str, uid: str):
        if not uid:
            return None
        snap = self._service.store.collection(collection).document(uid).get()
        return snap if snap.exists else None

    def get_patient_form(self, user, drafts: Optional[DraftStore] = None) -> Optional[Dict]:
        """Raw form values for prefilling: the stored profile, else the draft."""
        snap = self._read(PATIENT_PROFILES, user.uid) if user is not None else None
        if snap is not None:
            return snap.to_dict()
        return drafts.load() if drafts is not None else None

    def load_patient_profile(self, user, drafts: Optional[DraftStore] = None) -> Optional[PatientRecord]:
        """The stored profile, else the registration draft, else None."""
        snap = self._read(PATIENT_PROFILES, user.uid) if user is not None else None
        if snap is not None:
            try:
                return PatientRecord.from_snapshot(snap)
            except InvalidRecordError as e:
                logger.warning("Unreadable patient profile %s: %s", user.uid, e)
        draft = drafts.load() if drafts is not None else None
        if not draft:
            return None
        return PatientRecord(
            doc_id=user.uid if user is not None else '',
            source='draft',
            name=draft.get('name', ''),
            patient_id=draft.get('patientId', ''),
            age=draft.get('age', ''),
            gender=draft.get('gender', ''),
            phone=draft.get('phone', ''),
            address=draft.get('address', ''),
            allergies=draft.get('allergies', ''),
            current_medications=draft.get('currentMedications', ''),
        )

    def get_doctor_profile(self, uid: str) -> Optional[DoctorProfile]:
        snap = self._read(DOCTOR_PROFILES, uid)
        if snap is None:
            return None
        try:
            return DoctorProfile.from_snapshot(snap)
        except InvalidRecordError as e:
            logger.warning("Unreadable doctor profile %s: %s", uid, e)
            return None

    def get_manager_profile(self, uid: str) -> Optional[GeneralManagerProfile]:
        snap = self._read(MANAGER_PROFILES, uid)
        if snap is None:
            return None
        try:
            return GeneralManagerProfile.from_snapshot(snap)
        except InvalidRecordError as e:
            logger.warning("Unreadable manager profile %s: %s", uid, e)
            return None

    def has_profile(self, role: str, uid: str) -> bool:
        """Whether a user of `role` has saved a profile. Admins have none."""
        collection = ROLE_COLLECTIONS.get(role)
        return collection is not None and self._read(collection, uid) is not None
