"""
This module defines the record types read from and written to the MindCare store.

Stored documents have no enforced schema, so every record is built through
`from_snapshot`, which validates the shape it depends on and normalizes timestamps.
Documents that cannot be read raise `InvalidRecordError`; `parse_records` logs and
quarantines them instead of letting missing fields leak into the pages.
"""
# mindcare/models.py

import logging

from mindcare import timestamps

logger = logging.getLogger(__name__)

ROLES = ('admin', 'doctor', 'generalmanager', 'patient')
ROLE_LABELS = {
    'admin': 'Clinic Admin',
    'doctor': 'Doctor',
    'generalmanager': 'General Manager',
    'patient': 'Patient',
}

APPOINTMENT_STATUSES = ('scheduled', 'completed', 'cancelled')
TREATMENT_STATUSES = ('ongoing', 'completed', 'discontinued')
FEEDBACK_STATUSES = ('new', 'pending', 'reviewed', 'resolved')


class InvalidRecordError(ValueError):
    """Raised when a stored document does not have the shape of its record type."""


def _text(data, key, default=''):
    """Reads a scalar field as stripped text."""
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidRecordError(f"Field {key!r} must be text, got {type(value).__name__}.")
    return str(value).strip()


def _mapping(data, key):
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidRecordError(f"Field {key!r} must be a mapping.")
    return value


class User:
    """The signed-in identity carried by a session.

    Attributes:
        uid (str): The account's unique identifier; profile documents are keyed by it.
        email (str): The account email.
        role (str): One of `ROLES`.
        display_name (str): Optional display name.
        provider (str): 'password' or the federated provider name.
    """
    def __init__(self, uid, email, role, display_name=None, provider='password'):
        self.uid = uid
        self.email = email
        self.role = role
        self.display_name = display_name
        self.provider = provider

    @property
    def name(self):
        return self.display_name or self.email

    def __eq__(self, other):
        return isinstance(other, User) and (self.uid, self.role) == (other.uid, other.role)

    def __repr__(self):
        return f"User({self.uid!r}, {self.email!r}, {self.role!r})"


class PatientRecord:
    """A patient document from either `patients` or `patientProfiles`.

    `doc_id` is the document id; for `patientProfiles` it is the owner's uid.
    """
    FIELDS = ('name', 'patientId', 'age', 'gender', 'phone', 'address', 'allergies', 'currentMedications')

    def __init__(self, doc_id, source, name='', patient_id='', age='', gender='', phone='', address='',
                 allergies='', current_medications='', updated_at=None):
        self.doc_id = doc_id
        self.source = source
        self.name = name
        self.patient_id = patient_id
        self.age = age
        self.gender = gender
        self.phone = phone
        self.address = address
        self.allergies = allergies
        self.current_medications = current_medications
        self.updated_at = updated_at

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        record = cls(
            doc_id=snap.id,
            source=snap.collection,
            name=_text(data, 'name'),
            patient_id=_text(data, 'patientId'),
            age=_text(data, 'age'),
            gender=_text(data, 'gender'),
            phone=_text(data, 'phone'),
            address=_text(data, 'address'),
            allergies=_text(data, 'allergies'),
            current_medications=_text(data, 'currentMedications'),
            updated_at=timestamps.to_datetime(data.get('updatedAt')),
        )
        if not record.name and not record.patient_id:
            raise InvalidRecordError(f"Patient {snap.id} has neither a name nor a patient ID.")
        return record

    def as_row(self):
        return {
            "Name": self.name,
            "Patient ID": self.patient_id,
            "Age": self.age,
            "Gender": self.gender,
            "Phone": self.phone,
            "Address": self.address,
        }


class AppointmentDetails:
    """The slot of an appointment: instant, date string, time label and patient ID."""
    def __init__(self, date=None, date_string='', time='', patient_id=''):
        self.date = date
        self.date_string = date_string
        self.time = time
        self.patient_id = patient_id


class Appointment:
    """An appointment between a patient and a doctor.

    `status` is free text in stored data; an unset status reads as 'scheduled'.
    """
    def __init__(self, id, patient_uid='', doctor_id='', doctor='', patient_name='', details=None,
                 status='', created_at=None):
        self.id = id
        self.patient_uid = patient_uid
        self.doctor_id = doctor_id
        self.doctor = doctor
        self.patient_name = patient_name
        self.details = details or AppointmentDetails()
        self.status = status or 'scheduled'
        self.created_at = created_at

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        raw_details = _mapping(data, 'appointmentDetails')
        details = AppointmentDetails(
            date=timestamps.to_datetime(raw_details.get('date')),
            date_string=_text(raw_details, 'dateString'),
            time=_text(raw_details, 'time'),
            patient_id=_text(raw_details, 'patientId'),
        )
        record = cls(
            id=snap.id,
            patient_uid=_text(data, 'patientUid'),
            doctor_id=_text(data, 'doctorId'),
            doctor=_text(data, 'doctor') or _text(data, 'doctorName'),
            patient_name=_text(data, 'patientName'),
            details=details,
            status=_text(data, 'status'),
            created_at=timestamps.to_datetime(data.get('createdAt')),
        )
        if not record.patient_uid and not details.patient_id and not record.patient_name:
            raise InvalidRecordError(f"Appointment {snap.id} is not linked to a patient.")
        return record

    @property
    def when(self):
        """The appointment instant, derived from the slot strings when the date is missing."""
        if self.details.date is not None:
            return self.details.date
        if self.details.date_string and self.details.time:
            try:
                return timestamps.combine_slot(self.details.date_string, self.details.time)
            except ValueError:
                return None
        return None

    def when_label(self):
        if self.details.date is not None:
            return timestamps.format_timestamp(self.details.date)
        return ' '.join(part for part in (self.details.date_string, self.details.time) if part)

    def patient_label(self):
        return self.patient_name or self.details.patient_id or self.patient_uid or 'Patient'

    def as_row(self):
        return {
            "When": self.when_label(),
            "Doctor": self.doctor,
            "Patient": self.patient_label(),
            "Status": self.status,
        }


class Treatment:
    """A treatment questionnaire recorded by a doctor or clinic admin."""
    def __init__(self, id, patient_id='', patient_name='', problem='', duration='', past_history='',
                 medications='', prescription='', status='ongoing', date=None, created_by_uid='',
                 created_by_name=''):
        self.id = id
        self.patient_id = patient_id
        self.patient_name = patient_name
        self.problem = problem
        self.duration = duration
        self.past_history = past_history
        self.medications = medications
        self.prescription = prescription
        self.status = status or 'ongoing'
        self.date = date
        self.created_by_uid = created_by_uid
        self.created_by_name = created_by_name

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        record = cls(
            id=snap.id,
            patient_id=_text(data, 'patientId'),
            patient_name=_text(data, 'patientName'),
            problem=_text(data, 'problem'),
            duration=_text(data, 'duration'),
            past_history=_text(data, 'pastHistory'),
            medications=_text(data, 'medications'),
            prescription=_text(data, 'prescription'),
            status=_text(data, 'status'),
            date=timestamps.to_datetime(data.get('date')),
            created_by_uid=_text(data, 'createdByUid'),
            created_by_name=_text(data, 'createdByName'),
        )
        if not record.patient_id and not record.patient_name:
            raise InvalidRecordError(f"Treatment {snap.id} is not linked to a patient.")
        return record

    def patient_label(self):
        return self.patient_name or self.patient_id or 'Patient'

    def as_row(self):
        return {
            "Date": timestamps.format_timestamp(self.date),
            "Patient": self.patient_label(),
            "Problem": self.problem,
            "Duration": self.duration,
            "Status": self.status,
            "Recorded by": self.created_by_name,
        }


class Feedback:
    """A patient's review of a doctor.

    An unset status reads as 'new'. Ratings run from 1 to 5; 0 means unrated.
    """
    def __init__(self, id, uid='', doctor='', review='', subject='', message='', rating=0, status='',
                 created_at=None):
        self.id = id
        self.uid = uid
        self.doctor = doctor
        self.review = review
        self.subject = subject
        self.message = message
        self.rating = rating
        self.status = status or 'new'
        self.created_at = created_at

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        rating = data.get('rating', 0)
        if rating is None:
            rating = 0
        if isinstance(rating, bool) or not isinstance(rating, (int, float)):
            raise InvalidRecordError(f"Feedback {snap.id} has a non-numeric rating.")
        if not 0 <= rating <= 5:
            raise InvalidRecordError(f"Feedback {snap.id} has a rating outside 1-5.")
        return cls(
            id=snap.id,
            uid=_text(data, 'uid'),
            doctor=_text(data, 'doctor'),
            review=_text(data, 'review'),
            subject=_text(data, 'subject'),
            message=_text(data, 'message'),
            rating=int(rating),
            status=_text(data, 'status'),
            created_at=timestamps.to_datetime(data.get('createdAt')),
        )

    @property
    def text(self):
        return self.review or self.message or self.subject

    def as_row(self):
        return {
            "Submitted": timestamps.format_timestamp(self.created_at),
            "Doctor": self.doctor,
            "Rating": "★" * self.rating,
            "Feedback": self.text,
            "Status": self.status,
        }


class DoctorProfile:
    """A doctor's self-registered profile, keyed by the doctor's uid."""
    def __init__(self, uid, name, age='', degree='', specialization='', phone='', email='', experience='',
                 license_number=''):
        self.uid = uid
        self.name = name
        self.age = age
        self.degree = degree
        self.specialization = specialization
        self.phone = phone
        self.email = email
        self.experience = experience
        self.license_number = license_number

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        return cls(
            uid=snap.id,
            name=_text(data, 'name') or 'Unknown Doctor',
            age=_text(data, 'age'),
            degree=_text(data, 'degree'),
            specialization=_text(data, 'specialization'),
            phone=_text(data, 'phone'),
            email=_text(data, 'email'),
            experience=_text(data, 'experience'),
            license_number=_text(data, 'licenseNumber'),
        )


class GeneralManagerProfile:
    def __init__(self, uid, name, age='', phone='', email='', position='General Manager'):
        self.uid = uid
        self.name = name
        self.age = age
        self.phone = phone
        self.email = email
        self.position = position

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        name = _text(data, 'name')
        if not name:
            raise InvalidRecordError(f"Manager profile {snap.id} has no name.")
        return cls(
            uid=snap.id,
            name=name,
            age=_text(data, 'age'),
            phone=_text(data, 'phone'),
            email=_text(data, 'email'),
            position=_text(data, 'position') or 'General Manager',
        )


class StaffMember:
    def __init__(self, id, name, phone, role, email='', specialization=''):
        self.id = id
        self.name = name
        self.phone = phone
        self.role = role
        self.email = email
        self.specialization = specialization

    @classmethod
    def from_snapshot(cls, snap):
        data = snap.to_dict()
        name = _text(data, 'name')
        if not name:
            raise InvalidRecordError(f"Staff member {snap.id} has no name.")
        return cls(
            id=snap.id,
            name=name,
            phone=_text(data, 'phone') or '-',
            role=_text(data, 'role') or 'Support Staff',
            email=_text(data, 'email'),
            specialization=_text(data, 'specialization'),
        )

    @classmethod
    def from_doctor(cls, profile):
        return cls(
            id=profile.uid,
            name=profile.name,
            phone=profile.phone or '-',
            role='Doctor',
            email=profile.email,
            specialization=profile.specialization or profile.degree,
        )


class Activity:
    """One line of a dashboard's recent-activity feed."""
    def __init__(self, id, text, timestamp=None):
        self.id = id
        self.text = text
        self.timestamp = timestamp

    def time_label(self):
        return timestamps.format_timestamp(self.timestamp, fallback="Unknown time")

    def __repr__(self):
        return f"Activity({self.id!r}, {self.text!r})"


def parse_records(snapshots, record_class, quarantine=None):
    """Builds records from snapshots, skipping malformed documents.

    Args:
        snapshots (list): Snapshots to convert.
        record_class: A record type with a `from_snapshot` classmethod.
        quarantine (list, optional): Receives (snapshot, error) pairs for skipped documents.

    Returns:
        list: The successfully built records, in input order.
    """
    records = []
    for snap in snapshots:
        try:
            records.append(record_class.from_snapshot(snap))
        except InvalidRecordError as e:
            logger.warning("Skipping malformed %s document %s: %s", snap.collection, snap.id, e)
            if quarantine is not None:
                quarantine.append((snap, e))
    return records
