"""
Application settings for the MindCare portal.

Values are module-level constants so they can be monkeypatched in tests. File
locations can be overridden with environment variables, and API keys are read
from Streamlit secrets (`.streamlit/secrets.toml`).
"""
# mindcare/config.py

import os

import streamlit as st

DATA_FILE = os.getenv("MINDCARE_DATA_FILE", "records.json")
KEY_FILE = os.getenv("MINDCARE_KEY_FILE", "secret.key")

# Refresh cadence for dashboard widgets.
DASHBOARD_REFRESH_SECONDS = 300
ACTIVITY_REFRESH_SECONDS = 120
FEEDBACK_POLL_SECONDS = 30

ACTIVITY_FETCH_LIMIT = 5
DOCTOR_ACTIVITY_FETCH_LIMIT = 10
ACTIVITY_DISPLAY_LIMIT = 10
PATIENT_SUMMARY_LIMIT = 24

REVENUE_PER_APPOINTMENT = 500

TIME_SLOTS = [
    "09:00 AM", "10:00 AM", "11:00 AM", "12:00 PM",
    "02:00 PM", "03:00 PM", "04:00 PM", "05:00 PM",
]

# Used when the doctors collection is empty or cannot be read.
FALLBACK_DOCTORS = [
    {"id": "1", "name": "Dr. Smith", "specialty": "General Medicine"},
    {"id": "2", "name": "Dr. Johnson", "specialty": "Cardiology"},
    {"id": "3", "name": "Dr. Williams", "specialty": "Dermatology"},
    {"id": "4", "name": "Dr. Brown", "specialty": "Pediatrics"},
    {"id": "5", "name": "Dr. Davis", "specialty": "Orthopedics"},
]

HARDCODED_STAFF = [
    {"id": "nurse-1", "name": "Priya Sharma", "phone": "+91 98765 43210", "role": "Nurse"},
    {"id": "nurse-2", "name": "Anjali Verma", "phone": "+91 87654 32109", "role": "Nurse"},
    {"id": "nurse-3", "name": "Sunita Patel", "phone": "+91 76543 21098", "role": "Nurse"},
    {"id": "support-1", "name": "Rajesh Kumar", "phone": "+91 99887 76655", "role": "Support Staff"},
    {"id": "support-2", "name": "Amit Singh", "phone": "+91 88776 65544", "role": "Support Staff"},
    {"id": "support-3", "name": "Deepak Yadav", "phone": "+91 77665 54433", "role": "Support Staff"},
    {"id": "psychiatrist-1", "name": "Dr. Meera Reddy", "phone": "+91 96543 21098", "role": "Psychiatrist"},
    {"id": "psychiatrist-2", "name": "Dr. Arun Gupta", "phone": "+91 95432 10987", "role": "Psychiatrist"},
]
STAFF_ROLES = ["Nurse", "Support Staff", "Psychiatrist", "Doctor"]

# Composite indexes declared on the store, as (collection, (field, ...)) pairs.
# Queries that need an undeclared index fail with MissingIndexError.
COMPOSITE_INDEXES = []

GEMINI_MODEL = "gemma-3-27b-it"


def get_secret(name, default=None):
    """Reads a value from Streamlit secrets.

    Args:
        name (str): The secret's key.
        default: Returned when the key or the secrets file is missing.

    Returns:
        The secret value, or `default`.
    """
    try:
        return st.secrets.get(name, default)
    except FileNotFoundError:
        return default
