"""
The general manager's staff directory.

The directory combines the clinic's permanent staff list, members added by a manager
(stored in `staff`) and every doctor who has registered a profile.
"""
# mindcare/staff.py

from __future__ import annotations

import logging
from typing import List

from mindcare import config
from mindcare.models import DoctorProfile, StaffMember, parse_records
from mindcare.store import SERVER_TIMESTAMP, StoreError

logger = logging.getLogger(__name__)

STAFF = 'staff'


def filter_staff(members: List[StaffMember], role: str = 'all', text: str = '') -> List[StaffMember]:
    needle = (text or '').strip().lower()
    return [
        member for member in members
        if (role == 'all' or member.role == role)
        and (not needle or any(needle in value.lower() for value in (member.name, member.phone, member.email) if value))
    ]


def count_by_role(members: List[StaffMember]):
    counts = {role: 0 for role in config.STAFF_ROLES}
    for member in members:
        counts[member.role] = counts.get(member.role, 0) + 1
    return counts


class StaffService:
    """Lists and adds staff members."""

    def __init__(self, hospital_service) -> None:
        """Initializes the service with a reference to the main HospitalService."""
        self._service = hospital_service

    def list_members(self) -> List[StaffMember]:
        """Permanent staff, then manager-added members, then registered doctors.

        A collection that cannot be read is skipped.
        """
        members = [
            StaffMember(entry['id'], entry['name'], entry['phone'], entry['role'])
            for entry in config.HARDCODED_STAFF
        ]
        store = self._service.store
        try:
            members.extend(parse_records(store.collection(STAFF).get(), StaffMember))
        except StoreError as e:
            logger.warning("Could not load staff: %s", e)
        try:
            doctors = parse_records(store.collection('doctorProfiles').get(), DoctorProfile)
            members.extend(StaffMember.from_doctor(profile) for profile in doctors)
        except StoreError as e:
            logger.warning("Could not load doctor profiles: %s", e)
        return members

    def add_member(self, name: str, phone: str, role: str, email: str = '', specialization: str = '') -> str:
        """Adds a staff member.

        Raises:
            ValueError: If the name or phone is missing, or the role is unknown.
        """
        name = (name or '').strip()
        phone = (phone or '').strip()
        if not name or not phone:
            raise ValueError("Name and phone are required.")
        if role not in config.STAFF_ROLES:
            raise ValueError(f"Unknown staff role {role!r}.")
        payload = {'name': name, 'phone': phone, 'role': role, 'createdAt': SERVER_TIMESTAMP}
        if email and email.strip():
            payload['email'] = email.strip()
        if specialization and specialization.strip():
            payload['specialization'] = specialization.strip()
        ref = self._service.store.collection(STAFF).add(payload)
        self._service.memo.invalidate()
        return ref.id

    def count_staff(self) -> int:
        return len(self.list_members())
