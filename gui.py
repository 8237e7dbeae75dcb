"""
This module defines the graphical user interface (GUI) for the MindCare portal using Streamlit.

It includes functions for rendering the public pages (welcome, sign-in, sign-up and the
public patient registration form), the route guard, and the role-specific portals for
clinic admins, doctors, general managers and patients.

The main entry point for the portal is `show_main_app`, which only renders for a signed-in
session and routes the user to the menu and pages of their role.
"""
# gui.py

import datetime

import pandas as pd
import streamlit as st
from streamlit_autorefresh import st_autorefresh

from mindcare import config
from mindcare.appointments import filter_appointments
from mindcare.auth import AccountExistsError, AuthError, InvalidCredentialsError, validate_credentials
from mindcare.feedback import filter_feedback
from mindcare.models import (
    APPOINTMENT_STATUSES,
    FEEDBACK_STATUSES,
    ROLE_LABELS,
    ROLES,
    TREATMENT_STATUSES,
)
from mindcare.patients import filter_patients
from mindcare.profiles import DraftStore
from mindcare.staff import count_by_role, filter_staff
from mindcare.store import StoreError
from mindcare.treatments import render_report

LOAD_ERROR = "Failed to load"
GENERIC_ERROR = "Something went wrong. Please try again."
GENDERS = ["Male", "Female", "Other", "Prefer not to say"]


def _display(value):
    """Renders a card value, showing a dash for values that failed to load."""
    return "-" if value is None else value


def _table(rows, empty_message):
    if not rows:
        st.info(empty_message)
        return
    st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)


def _schedule_auto_refresh(key, interval_seconds):
    """Schedules a periodic rerun so dashboard cards re-query on a fixed interval."""
    st_autorefresh(interval=int(interval_seconds * 1000), key=key)


def _drafts():
    return DraftStore(st.session_state)


# Page navigation helpers
def set_page_welcome():
    """Sets the session state to display the welcome page."""
    st.session_state.auth_page = 'welcome'

def set_page_login():
    """Sets the session state to display the sign-in page."""
    st.session_state.auth_page = 'login'

def set_page_register():
    """Sets the session state to display the sign-up page."""
    st.session_state.auth_page = 'register'

def set_page_patient_registration():
    """Sets the session state to display the public patient registration page."""
    st.session_state.auth_page = 'patient_registration'


# Public pages
def show_welcome_page():
    """Displays the welcome screen with sign-in, sign-up and patient registration options."""
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.markdown("<h1 style='text-align: center;'>Welcome to MindCare</h1>", unsafe_allow_html=True)
        st.markdown("<p style='text-align: center;'>Hospital management for clinics, doctors, managers and patients.</p>", unsafe_allow_html=True)

        st.button("Sign In", on_click=set_page_login, use_container_width=True, type="primary")
        st.button("Create an Account", on_click=set_page_register, use_container_width=True)
        st.button("Register as a Patient", on_click=set_page_patient_registration, use_container_width=True)


def _show_federated_sign_in(session):
    """Offers Google sign-in when an OIDC provider is configured in secrets.

    After the provider redirects back, the verified identity is linked to a portal account.
    """
    if not config.get_secret("auth"):
        return
    if st.user.is_logged_in:
        try:
            session.sign_in_federated(
                "google", st.user.get("sub", ""), st.user.get("email", ""), st.user.get("name"),
            )
        except (AuthError, ValueError, StoreError):
            st.error(GENERIC_ERROR)
            return
        st.session_state.auth_page = 'welcome'
        st.rerun()
    st.button("Continue with Google", on_click=st.login, args=("google",), use_container_width=True)


def show_login_form(service, session):
    """Displays the sign-in form and handles password authentication.

    Args:
        service: The main HospitalService instance.
        session: The browser session's `Session`.
    """
    st.button("← Back to Welcome", on_click=set_page_welcome)
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.markdown("<h2 style='text-align: center;'>Sign In</h2>", unsafe_allow_html=True)
        with st.form("login_form"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign In", use_container_width=True)

            if submitted:
                errors = validate_credentials(email, password)
                if errors:
                    for message in errors.values():
                        st.error(message)
                else:
                    try:
                        session.sign_in(email, password)
                    except InvalidCredentialsError:
                        st.error("Invalid email or password.")
                    except StoreError:
                        st.error(GENERIC_ERROR)
                    else:
                        st.session_state.auth_page = 'welcome'
                        st.session_state.page = None
                        st.rerun()
        _show_federated_sign_in(session)


def show_register_form(service, session):
    """Displays the sign-up form and creates a password account.

    Args:
        service: The main HospitalService instance.
        session: The browser session's `Session`.
    """
    st.button("← Back to Welcome", on_click=set_page_welcome)
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.markdown("<h2 style='text-align: center;'>Create an Account</h2>", unsafe_allow_html=True)
        with st.form("register_form"):
            display_name = st.text_input("Full Name")
            email = st.text_input("Email")
            password = st.text_input("Password", type="password", help="Use at least 8 characters.")
            confirm = st.text_input("Confirm Password", type="password")
            role = st.selectbox("I am a", ROLES, format_func=ROLE_LABELS.get)
            submitted = st.form_submit_button("Create Account", use_container_width=True)

            if submitted:
                errors = validate_credentials(email, password, confirm, signup=True)
                if errors:
                    for message in errors.values():
                        st.error(message)
                else:
                    try:
                        session.sign_up(email, password, display_name, role)
                    except AccountExistsError:
                        st.error("An account with this email already exists.")
                    except (ValueError, StoreError):
                        st.error(GENERIC_ERROR)
                    else:
                        st.session_state.auth_page = 'welcome'
                        st.session_state.page = None
                        st.rerun()


def _patient_profile_form(service, user, key, submit_label="Save Profile"):
    """Renders the patient registration form. Without a user the form is saved as a draft only."""
    drafts = _drafts()
    try:
        current = service.profiles.get_patient_form(user, drafts) or {}
    except StoreError:
        st.error(LOAD_ERROR)
        current = {}

    with st.form(key):
        name = st.text_input("Full Name", value=current.get('name', ''))
        patient_id = st.text_input("Patient ID (if issued by the clinic)", value=current.get('patientId', ''))
        age = st.text_input("Age", value=str(current.get('age', '')))
        gender_value = current.get('gender')
        gender = st.selectbox("Gender", GENDERS, index=GENDERS.index(gender_value) if gender_value in GENDERS else 0)
        phone = st.text_input("Phone", value=current.get('phone', ''))
        email = st.text_input("Email", value=current.get('email', '') or (user.email if user else ''))
        address = st.text_area("Address", value=current.get('address', ''))
        allergies = st.text_input("Allergies", value=current.get('allergies', ''))
        medications = st.text_input("Current Medications", value=current.get('currentMedications', ''))
        submitted = st.form_submit_button(submit_label)

    if submitted:
        form = {
            'name': name, 'patientId': patient_id, 'age': age, 'gender': gender, 'phone': phone,
            'email': email, 'address': address, 'allergies': allergies, 'currentMedications': medications,
        }
        try:
            saved = service.profiles.save_patient_profile(user, form, drafts)
        except ValueError as e:
            st.error(str(e))
            return
        except StoreError:
            st.error(GENERIC_ERROR)
            return
        if saved:
            st.success("Profile saved.")
        else:
            st.info("Saved as a draft in this browser. Sign in to finish your registration.")


def show_patient_registration(service, session):
    """The public patient registration page, the only form available without signing in."""
    st.button("← Back to Welcome", on_click=set_page_welcome)
    st.markdown("<h2 style='text-align: center;'>Patient Registration</h2>", unsafe_allow_html=True)
    if session.user is None:
        st.caption("Your details are kept in this browser until you sign in.")
    _patient_profile_form(service, session.user, "public_patient_registration_form", "Save Registration")


# Route guard
def require_user(service, session):
    """Returns the signed-in user, or renders the sign-in page and returns None."""
    if session.user is None:
        show_login_form(service, session)
        return None
    return session.user


def _stop_feedback_histories():
    for key in list(st.session_state.keys()):
        if str(key).startswith("feedback_history_"):
            st.session_state[key].stop()
            del st.session_state[key]


def _sign_out(session):
    _stop_feedback_histories()
    session.sign_out()
    st.session_state.page = None
    st.session_state.pop('current_role', None)
    st.session_state.auth_page = 'welcome'


# Doctors and managers without a profile start on their registration form.
REGISTRATION_PAGES = {'doctor': 'doctor_profile', 'generalmanager': 'manager_profile'}


def _landing_page(service, user):
    page = REGISTRATION_PAGES.get(user.role)
    if page is None:
        return None
    try:
        return None if service.profiles.has_profile(user.role, user.uid) else page
    except StoreError:
        return None


# Main Application UI
def show_main_app(service, session):
    """
    The portal router that displays the menu and pages of the signed-in user's role.

    Args:
        service: The main HospitalService instance.
        session: The browser session's `Session`.
    """
    user = require_user(service, session)
    if user is None:
        return

    if 'page' not in st.session_state:
        st.session_state.page = None

    # Reset page state if the user's role changes or on the first load.
    if st.session_state.get('current_role') != user.role:
        st.session_state.page = _landing_page(service, user)
        st.session_state.current_role = user.role

    def _show_main_menu(options, title):
        st.markdown(f"## {title} · {user.name}")
        st.caption(ROLE_LABELS.get(user.role, user.role))
        cols = st.columns(len(options) + 1)
        for idx, (label, value) in enumerate(options):
            if cols[idx].button(label, key=f"{user.role}_menu_btn_{idx}", use_container_width=True):
                st.session_state.page = value
                st.rerun()
        if cols[-1].button("Sign Out", key=f"{user.role}_logout_btn", use_container_width=True):
            _sign_out(session)
            st.rerun()
        st.divider()

    def _show_back_button():
        if st.button("← Back to Dashboard"):
            st.session_state.page = None
            st.rerun()

    if user.role == 'admin':
        menu_items = [
            ("Patients", "admin_patients"),
            ("Appointments", "admin_appointments"),
            ("Treatments", "admin_treatments"),
            ("Feedback", "admin_feedback"),
            ("Reports", "admin_reports"),
        ]
        pages = {
            "admin_patients": lambda: _render_admin_patients_page(service),
            "admin_appointments": lambda: _render_appointments_page(service, user),
            "admin_treatments": lambda: _render_treatments_page(service, user),
            "admin_feedback": lambda: _render_feedback_review_page(service, user),
            "admin_reports": lambda: _render_reports_page(service),
        }
        title, dashboard = "Clinic Admin Dashboard", lambda: _render_admin_dashboard(service)
    elif user.role == 'doctor':
        menu_items = [
            ("My Appointments", "doctor_appointments"),
            ("Treatments", "doctor_treatments"),
            ("My Profile", "doctor_profile"),
        ]
        pages = {
            "doctor_appointments": lambda: _render_doctor_appointments_page(service, user),
            "doctor_treatments": lambda: _render_treatments_page(service, user),
            "doctor_profile": lambda: _render_doctor_profile_page(service, user),
        }
        title, dashboard = "Doctor Dashboard", lambda: _render_doctor_dashboard(service, user)
    elif user.role == 'generalmanager':
        menu_items = [
            ("Patients", "manager_patients"),
            ("Appointments", "manager_appointments"),
            ("Feedback", "manager_feedback"),
            ("Staff", "manager_staff"),
            ("My Profile", "manager_profile"),
        ]
        pages = {
            "manager_patients": lambda: _render_manager_patients_page(service),
            "manager_appointments": lambda: _render_appointments_page(service, user),
            "manager_feedback": lambda: _render_feedback_review_page(service, user),
            "manager_staff": lambda: _render_staff_page(service),
            "manager_profile": lambda: _render_manager_profile_page(service, user),
        }
        title, dashboard = "General Manager Dashboard", lambda: _render_manager_dashboard(service)
    else:
        menu_items = [
            ("My Profile", "patient_profile"),
            ("Appointments", "patient_appointments"),
            ("Treatments", "patient_treatments"),
            ("Feedback", "patient_feedback"),
        ]
        pages = {
            "patient_profile": lambda: _render_patient_profile_page(service, user),
            "patient_appointments": lambda: _render_patient_appointments_page(service, user),
            "patient_treatments": lambda: _render_patient_treatments_page(service, user),
            "patient_feedback": lambda: _render_patient_feedback_page(service, user),
        }
        title, dashboard = "Patient Dashboard", lambda: _render_patient_dashboard(service, user)

    _show_main_menu(menu_items, title)
    page = st.session_state.page
    if page != 'patient_feedback':
        _stop_feedback_histories()
    if page is None:
        dashboard()
    elif page in pages:
        _show_back_button()
        pages[page]()
    else:
        st.session_state.page = None
        st.rerun()


# Dashboards
def _render_activity(service, doctor_uid=None):
    st.subheader("Recent Activity")
    activity = service.dashboards.recent_activity(doctor_uid)
    if not activity:
        st.info("No recent activity.")
        return
    for item in activity:
        st.markdown(f"- {item.text}  \n  <small>{item.time_label()}</small>", unsafe_allow_html=True)


def _render_admin_dashboard(service):
    _schedule_auto_refresh("admin_dashboard_refresh", config.DASHBOARD_REFRESH_SECONDS)
    summary = service.dashboards.admin_summary()
    cols = st.columns(4)
    cols[0].metric("Total Patients", _display(summary['patients']))
    cols[1].metric("Today's Appointments", _display(summary['appointments_today']))
    cols[2].metric("Ongoing Treatments", _display(summary['ongoing_treatments']))
    cols[3].metric("Pending Feedback", _display(summary['pending_feedback']))
    _render_activity(service)


def _render_doctor_dashboard(service, user):
    _schedule_auto_refresh("doctor_dashboard_refresh", config.DASHBOARD_REFRESH_SECONDS)
    try:
        if not service.profiles.has_profile('doctor', user.uid):
            st.warning("Complete your doctor profile so patients can book appointments with you.")
    except StoreError:
        st.error(LOAD_ERROR)
    summary = service.dashboards.doctor_summary(user.uid)
    cols = st.columns(5)
    cols[0].metric("Today's Appointments", _display(summary['appointments_today']))
    cols[1].metric("My Patients", _display(summary['patients']))
    cols[2].metric("Total Appointments", _display(summary['total_appointments']))
    cols[3].metric("Ongoing Treatments", _display(summary['ongoing_treatments']))
    cols[4].metric("Completed Appointments", _display(summary['completed_appointments']))
    _render_activity(service, doctor_uid=user.uid)


def _render_manager_dashboard(service):
    _schedule_auto_refresh("manager_dashboard_refresh", config.DASHBOARD_REFRESH_SECONDS)
    summary = service.dashboards.manager_summary()
    cols = st.columns(4)
    cols[0].metric("Doctors", _display(summary['doctors']))
    cols[1].metric("Staff", _display(summary['staff']))
    cols[2].metric("Patients", _display(summary['patients']))
    cols[3].metric("Appointments", _display(summary['appointments']))
    cols = st.columns(3)
    revenue = summary['revenue']
    cols[0].metric("Estimated Revenue", "-" if revenue is None else f"₹{revenue:,}")
    cols[1].metric("Average Rating", _display(summary['average_rating']))
    cols[2].metric("Pending Feedback", _display(summary['pending_feedback']))
    _render_activity(service)


def _render_patient_dashboard(service, user):
    _schedule_auto_refresh("patient_dashboard_refresh", config.DASHBOARD_REFRESH_SECONDS)
    try:
        has_profile = service.profiles.has_profile('patient', user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    if not has_profile:
        st.subheader("Complete Your Profile")
        st.write("Tell us a little about yourself before booking your first appointment.")
        _patient_profile_form(service, user, "dashboard_patient_profile_form")
        return

    highlights = service.dashboards.patient_highlights(user.uid)
    cols = st.columns(2)
    cols[0].metric("Treatments", _display(highlights['treatment_count']))
    cols[1].metric("Feedback Given", _display(highlights['feedback_count']))

    st.subheader("Upcoming Appointments")
    upcoming = highlights['upcoming']
    if upcoming is None:
        st.error(LOAD_ERROR)
    else:
        _table([record.as_row() for record in upcoming], "No upcoming appointments.")

    latest = highlights['latest_treatment']
    if latest is not None:
        st.subheader("Latest Treatment")
        st.write(f"**{latest.problem or 'Treatment'}** ({latest.status})")
        if latest.prescription:
            st.write(f"Prescription: {latest.prescription}")


# Patients
def _render_patient_details(record):
    st.write(f"**Name:** {record.name or 'N/A'}")
    st.write(f"**Patient ID:** {record.patient_id or 'N/A'}")
    st.write(f"**Age:** {record.age or 'N/A'} | **Gender:** {record.gender or 'N/A'}")
    st.write(f"**Phone:** {record.phone or 'N/A'}")
    st.write(f"**Address:** {record.address or 'N/A'}")
    st.write(f"**Allergies:** {record.allergies or 'None recorded'}")
    st.write(f"**Current Medications:** {record.current_medications or 'None recorded'}")


def _render_admin_patients_page(service):
    """Patient directory with a profile and appointment view for the selected patient."""
    st.markdown("<h2 style='text-align: center;'>Patients</h2>", unsafe_allow_html=True)
    records = service.patients.list_patients()
    search = st.text_input("Search patients", key="admin_patient_search")
    records = filter_patients(records, search)
    _table([record.as_row() for record in records], "No patients found.")
    if not records:
        return

    st.divider()
    labels = {record.doc_id: f"{record.name or 'Unnamed'} ({record.patient_id or record.doc_id})" for record in records}
    selected = st.selectbox("View patient", list(labels), format_func=labels.get, key="admin_patient_select")
    try:
        record = service.patients.get_profile(selected)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    if record is None:
        st.warning("Patient not found.")
        return
    profile_tab, appointments_tab = st.tabs(["Profile", "Appointments"])
    with profile_tab:
        _render_patient_details(record)
    with appointments_tab:
        try:
            appointments = service.appointments.list_for_record(record)
        except StoreError:
            st.error(LOAD_ERROR)
            return
        _table([appointment.as_row() for appointment in appointments], "No appointments for this patient.")


def _render_manager_patients_page(service):
    st.markdown("<h2 style='text-align: center;'>Patients</h2>", unsafe_allow_html=True)
    records = filter_patients(service.patients.list_patients(), st.text_input("Search patients", key="manager_patient_search"))
    summaries = service.patients.patient_summaries(records)
    rows = []
    for record in records:
        row = record.as_row()
        summary = summaries.get(record.doc_id)
        row["Appointments"] = summary['appointments'] if summary else None
        row["Profile"] = ("Yes" if summary['has_profile'] else "No") if summary else None
        rows.append(row)
    _table(rows, "No patients found.")


# Appointments
def _render_appointments_page(service, user):
    """All appointments, with patient import and status updates for clinic admins."""
    st.markdown("<h2 style='text-align: center;'>Appointments</h2>", unsafe_allow_html=True)
    if user.role == 'admin':
        _render_appointment_patient_import(service)

    try:
        records = service.appointments.list_all()
    except StoreError:
        st.error(LOAD_ERROR)
        return
    col1, col2 = st.columns([3, 1])
    search = col1.text_input("Search appointments", key="appointments_search")
    status = col2.selectbox("Status", ["all", *APPOINTMENT_STATUSES], key="appointments_status_filter")
    records = filter_appointments(records, search, status)
    _table([record.as_row() for record in records], "No appointments found.")

    if user.role == 'admin' and records:
        _render_status_update(
            "admin_appointment_status",
            {record.id: f"{record.when_label()} · {record.patient_label()} with {record.doctor}" for record in records},
            APPOINTMENT_STATUSES,
            service.appointments.set_status,
        )


def _render_appointment_patient_import(service):
    """Looks up a patient by name or ID and shows their details."""
    st.subheader("Import Patient Details")
    col1, col2 = st.columns(2)
    name = col1.text_input("Patient name", key="appointment_import_name")
    patient_id = col2.text_input("Patient ID", key="appointment_import_id")
    if st.button("Import Details", key="appointment_import_btn"):
        if not name.strip() and not patient_id.strip():
            st.session_state.pop('appointment_import', None)
        else:
            try:
                st.session_state.appointment_import = {'patient': service.patients.resolve_patient(name, patient_id)}
            except StoreError:
                st.session_state.appointment_import = {'patient': None}

    result = st.session_state.get('appointment_import')
    if result is None:
        return
    patient = result['patient']
    if patient is None:
        st.error("No patient found with the provided details.")
        return
    st.markdown("**Patient Found**")
    details = [
        ("Name", patient.name), ("ID", patient.patient_id), ("Age", patient.age),
        ("Gender", patient.gender), ("Phone", patient.phone), ("Address", patient.address),
    ]
    cols = st.columns(3)
    for idx, (label, value) in enumerate(details):
        cols[idx % 3].markdown(f"{label}: {value or '-'}")
    st.divider()


def _render_status_update(key, labels, statuses, update):
    """A picker to change the status of one listed record."""
    with st.form(key):
        selected = st.selectbox("Record", list(labels), format_func=labels.get)
        status = st.selectbox("New status", statuses)
        submitted = st.form_submit_button("Update Status")
    if submitted:
        try:
            update(selected, status)
        except (ValueError, StoreError):
            st.error(GENERIC_ERROR)
            return
        st.success("Status updated.")
        st.rerun()


def _render_doctor_appointments_page(service, user):
    st.markdown("<h2 style='text-align: center;'>My Appointments</h2>", unsafe_allow_html=True)
    try:
        records = service.appointments.list_for_doctor(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    status = st.selectbox("Status", ["all", *APPOINTMENT_STATUSES], key="doctor_appointments_status")
    records = filter_appointments(records, '', status)
    if not records:
        st.info("No appointments found.")
        return
    for record in records:
        with st.expander(f"{record.when_label()} · {record.patient_label()} ({record.status})"):
            if st.button("View Patient Profile", key=f"doctor_view_profile_{record.id}"):
                try:
                    profile = service.patients.profile_for_appointment(record.patient_uid, record.details.patient_id)
                except StoreError:
                    st.error(LOAD_ERROR)
                    profile = None
                if profile is not None:
                    _render_patient_details(profile)
                else:
                    st.info("This patient has not registered a profile.")
            cols = st.columns(len(APPOINTMENT_STATUSES))
            for idx, new_status in enumerate(APPOINTMENT_STATUSES):
                if new_status == record.status:
                    continue
                if cols[idx].button(f"Mark {new_status}", key=f"doctor_status_{record.id}_{new_status}"):
                    try:
                        service.appointments.set_status(record.id, new_status)
                    except StoreError:
                        st.error(GENERIC_ERROR)
                    else:
                        st.rerun()


def _render_patient_appointments_page(service, user):
    """Slot booking with live availability, plus the patient's own appointments."""
    st.markdown("<h2 style='text-align: center;'>Book an Appointment</h2>", unsafe_allow_html=True)
    if st.session_state.get('appointment_booked'):
        st.success("Your appointment has been booked.")
        del st.session_state['appointment_booked']

    col1, col2 = st.columns(2)
    day = col1.date_input("Date", min_value=datetime.date.today(), key="booking_date")
    slot = col2.selectbox("Time", config.TIME_SLOTS, key="booking_time")
    date_string = day.isoformat() if day else ''

    roster = service.appointments.doctor_roster()
    available = service.appointments.available_doctors(date_string, slot, roster)
    if not available:
        st.warning("No doctors are available at this time. Please choose another slot.")
    else:
        labels = {
            doctor['id']: f"{doctor.get('name', 'Unknown Doctor')} · {doctor['specialty']}" if doctor.get('specialty') else doctor.get('name', 'Unknown Doctor')
            for doctor in available
        }
        doctor_id = st.selectbox("Doctor", list(labels), format_func=labels.get, key="booking_doctor")
        if st.button("Book Appointment", type="primary"):
            try:
                patient = service.profiles.load_patient_profile(user, _drafts())
                service.appointments.book(user, doctor_id, date_string, slot, roster, patient=patient)
            except ValueError as e:
                st.error(str(e))
            except StoreError:
                st.error(GENERIC_ERROR)
            else:
                st.session_state.appointment_booked = True
                st.rerun()

    st.divider()
    st.subheader("My Appointments")
    try:
        records = service.appointments.list_for_patient(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    if not records:
        st.info("You have no appointments yet.")
        return
    for record in records:
        cols = st.columns([3, 2, 1, 1])
        cols[0].write(record.when_label())
        cols[1].write(record.doctor)
        cols[2].write(record.status)
        if record.status == 'scheduled' and cols[3].button("Cancel", key=f"cancel_{record.id}"):
            try:
                service.appointments.cancel(record.id)
            except StoreError:
                st.error(GENERIC_ERROR)
            else:
                st.rerun()


# Treatments
def _render_treatments_page(service, user):
    """Treatment questionnaire with patient import, report download and the treatment list."""
    st.markdown("<h2 style='text-align: center;'>Treatments</h2>", unsafe_allow_html=True)

    st.subheader("Import Patient")
    col1, col2 = st.columns(2)
    import_name = col1.text_input("Patient name", key="import_patient_name")
    import_id = col2.text_input("Patient ID", key="import_patient_id")
    if st.button("Import Patient"):
        try:
            patient, history = service.treatments.import_patient(import_name, import_id)
        except StoreError:
            st.error(GENERIC_ERROR)
        else:
            if patient is None:
                st.warning("No matching patient found.")
            st.session_state.imported_patient = patient
            st.session_state.imported_history = history

    patient = st.session_state.get('imported_patient')
    history = st.session_state.get('imported_history') or []
    if patient is not None:
        st.success(f"Imported {patient.name or patient.patient_id}.")
        if history:
            _table([treatment.as_row() for treatment in history], "")

    with st.form("treatment_questionnaire_form"):
        st.subheader("Questionnaire")
        patient_name = st.text_input("Patient Name", value=patient.name if patient else '')
        patient_id = st.text_input("Patient ID", value=patient.patient_id if patient else '')
        problem = st.text_area("Presenting Problem")
        duration = st.text_input("Duration")
        past_history = st.text_area("Past History")
        medications = st.text_area("Medications")
        prescription = st.text_area("Prescription")
        submitted = st.form_submit_button("Save Treatment")

    if submitted:
        questionnaire = {
            'patientName': patient_name, 'patientId': patient_id, 'problem': problem, 'duration': duration,
            'pastHistory': past_history, 'medications': medications, 'prescription': prescription,
        }
        try:
            service.treatments.record(user, questionnaire)
        except ValueError as e:
            st.error(str(e))
        except StoreError:
            st.error(GENERIC_ERROR)
        else:
            st.success("Treatment saved.")
            st.download_button(
                label="Download Treatment Report (.txt)",
                data=render_report(questionnaire, patient, history).encode('utf-8'),
                file_name=f"treatment_{patient_id or patient_name}_{datetime.date.today()}.txt",
                mime="text/plain",
            )

    st.divider()
    st.subheader("Recorded Treatments")
    try:
        records = service.treatments.list_all() if user.role == 'admin' else service.treatments.list_for_creator(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    _table([record.as_row() for record in records], "No treatments recorded yet.")
    if records:
        _render_status_update(
            "treatment_status",
            {record.id: f"{record.patient_label()} · {record.problem}" for record in records},
            TREATMENT_STATUSES,
            service.treatments.set_status,
        )


def _render_patient_treatments_page(service, user):
    st.markdown("<h2 style='text-align: center;'>My Treatments</h2>", unsafe_allow_html=True)
    try:
        patient_id, records = service.treatments.list_for_user(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        return
    if not patient_id:
        st.info("Your treatments will appear here once the clinic links your profile to a patient ID.")
        return
    if not records:
        st.info("No treatments recorded yet.")
        return
    for record in records:
        with st.expander(f"{record.as_row()['Date']} · {record.problem or 'Treatment'} ({record.status})"):
            st.write(f"**Duration:** {record.duration or 'N/A'}")
            st.write(f"**Medications:** {record.medications or 'N/A'}")
            st.write(f"**Prescription:** {record.prescription or 'N/A'}")
            st.caption(f"Recorded by {record.created_by_name or 'the clinic'}")


# Feedback
def _render_feedback_review_page(service, user):
    """Feedback list with filters and status updates; managers can request an AI digest."""
    st.markdown("<h2 style='text-align: center;'>Patient Feedback</h2>", unsafe_allow_html=True)
    try:
        records = service.feedback.list_all()
    except StoreError:
        st.error(LOAD_ERROR)
        return
    col1, col2 = st.columns([3, 1])
    search = col1.text_input("Search feedback", key="feedback_search")
    status = col2.selectbox("Status", ["all", *FEEDBACK_STATUSES], key="feedback_status_filter")
    records = filter_feedback(records, search, status)
    _table([record.as_row() for record in records], "No feedback found.")
    if not records:
        return

    _render_status_update(
        f"{user.role}_feedback_status",
        {record.id: f"{record.doctor} · {record.text[:40]}" for record in records},
        FEEDBACK_STATUSES,
        service.feedback.set_status,
    )
    if user.role == 'generalmanager' and st.button("Summarize Feedback"):
        with st.spinner("Summarizing feedback..."):
            digest = service.feedback.digest(records)
        if digest:
            st.info(digest)
        else:
            st.warning("A summary is not available right now.")


def _render_patient_feedback_page(service, user):
    """Review form plus the patient's feedback history, kept live by a subscription."""
    st.markdown("<h2 style='text-align: center;'>Share Your Feedback</h2>", unsafe_allow_html=True)
    with st.form("patient_feedback_form", clear_on_submit=True):
        doctor = st.selectbox("Doctor", service.feedback.doctor_names())
        rating = st.slider("Rating", 1, 5, 5)
        review = st.text_area("Your review")
        submitted = st.form_submit_button("Submit Feedback")
    if submitted:
        try:
            service.feedback.submit(user, doctor, review, rating)
        except ValueError as e:
            st.error(str(e))
        except StoreError:
            st.error(GENERIC_ERROR)
        else:
            st.success("Thank you for your feedback!")

    st.divider()
    st.subheader("My Feedback")
    key = f"feedback_history_{user.uid}"
    history = st.session_state.get(key)
    if history is None:
        history = service.feedback.subscribe_history(user.uid)
        st.session_state[key] = history
    records = history.refresh()
    if history.error:
        st.caption(f"Live updates are unavailable; refreshing every {config.FEEDBACK_POLL_SECONDS} seconds.")
        _schedule_auto_refresh("feedback_history_poll", config.FEEDBACK_POLL_SECONDS)
    _table([record.as_row() for record in records], "You have not submitted any feedback yet.")


# Staff
def _render_staff_page(service):
    st.markdown("<h2 style='text-align: center;'>Staff</h2>", unsafe_allow_html=True)
    members = service.staff.list_members()
    counts = count_by_role(members)
    cols = st.columns(len(counts))
    for col, (role, count) in zip(cols, counts.items()):
        col.metric(role, count)

    col1, col2 = st.columns([1, 3])
    role = col1.selectbox("Role", ["all", *config.STAFF_ROLES], key="staff_role_filter")
    search = col2.text_input("Search staff", key="staff_search")
    rows = [
        {"Name": member.name, "Role": member.role, "Phone": member.phone, "Email": member.email,
         "Specialization": member.specialization}
        for member in filter_staff(members, role, search)
    ]
    _table(rows, "No staff members found.")

    with st.expander("Add Staff Member"):
        with st.form("add_staff_form", clear_on_submit=True):
            name = st.text_input("Name")
            phone = st.text_input("Phone")
            new_role = st.selectbox("Role", config.STAFF_ROLES)
            email = st.text_input("Email (optional)")
            specialization = st.text_input("Specialization (optional)")
            submitted = st.form_submit_button("Add Member")
        if submitted:
            try:
                service.staff.add_member(name, phone, new_role, email, specialization)
            except ValueError as e:
                st.error(str(e))
            except StoreError:
                st.error(GENERIC_ERROR)
            else:
                st.success(f"{name} added.")
                st.rerun()


# Profiles
def _render_patient_profile_page(service, user):
    st.markdown("<h2 style='text-align: center;'>My Profile</h2>", unsafe_allow_html=True)
    _patient_profile_form(service, user, "patient_profile_form")


def _render_doctor_profile_page(service, user):
    st.markdown("<h2 style='text-align: center;'>Doctor Registration</h2>", unsafe_allow_html=True)
    try:
        profile = service.profiles.get_doctor_profile(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        profile = None
    with st.form("doctor_profile_form"):
        name = st.text_input("Full Name", value=profile.name if profile else (user.display_name or ''))
        age = st.text_input("Age", value=profile.age if profile else '')
        degree = st.text_input("Degree", value=profile.degree if profile else '')
        specialization = st.text_input("Specialization", value=profile.specialization if profile else '')
        experience = st.text_input("Years of Experience", value=profile.experience if profile else '')
        license_number = st.text_input("License Number", value=profile.license_number if profile else '')
        phone = st.text_input("Phone", value=profile.phone if profile else '')
        email = st.text_input("Email", value=profile.email if profile else user.email)
        submitted = st.form_submit_button("Save Profile")
    if submitted:
        form = {
            'name': name, 'age': age, 'degree': degree, 'specialization': specialization,
            'experience': experience, 'licenseNumber': license_number, 'phone': phone, 'email': email,
        }
        try:
            service.profiles.save_doctor_profile(user, form)
        except ValueError as e:
            st.error(str(e))
        except StoreError:
            st.error(GENERIC_ERROR)
        else:
            st.success("Profile saved.")


def _render_manager_profile_page(service, user):
    st.markdown("<h2 style='text-align: center;'>General Manager Registration</h2>", unsafe_allow_html=True)
    try:
        profile = service.profiles.get_manager_profile(user.uid)
    except StoreError:
        st.error(LOAD_ERROR)
        profile = None
    with st.form("manager_profile_form"):
        name = st.text_input("Full Name", value=profile.name if profile else (user.display_name or ''))
        age = st.text_input("Age", value=profile.age if profile else '')
        phone = st.text_input("Phone", value=profile.phone if profile else '')
        email = st.text_input("Email", value=profile.email if profile else user.email)
        position = st.text_input("Position", value=profile.position if profile else 'General Manager')
        submitted = st.form_submit_button("Save Profile")
    if submitted:
        try:
            service.profiles.save_manager_profile(
                user, {'name': name, 'age': age, 'phone': phone, 'email': email, 'position': position},
            )
        except ValueError as e:
            st.error(str(e))
        except StoreError:
            st.error(GENERIC_ERROR)
        else:
            st.success("Profile saved.")


# Reports
def _render_reports_page(service):
    """CSV exports of the clinic's records."""
    st.markdown("<h2 style='text-align: center;'>Reports</h2>", unsafe_allow_html=True)
    try:
        exports = [
            ("Patients", [record.as_row() for record in service.patients.list_patients()]),
            ("Appointments", [record.as_row() for record in service.appointments.list_all()]),
            ("Treatments", [record.as_row() for record in service.treatments.list_all()]),
            ("Feedback", [record.as_row() for record in service.feedback.list_all()]),
        ]
    except StoreError:
        st.error(LOAD_ERROR)
        return

    today = datetime.date.today()
    cols = st.columns(len(exports))
    for col, (label, rows) in zip(cols, exports):
        with col:
            st.metric(label, len(rows))
            if rows:
                st.download_button(
                    f"Download {label} (CSV)", pd.DataFrame(rows).to_csv(index=False).encode('utf-8'),
                    f"mindcare_{label.lower()}_{today}.csv", "text/csv",
                )
            else:
                st.caption("Nothing to export.")
