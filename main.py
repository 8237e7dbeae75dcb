"""
This is the main entry point for the MindCare Streamlit application.

This script handles the following key responsibilities:
- Sets the overall page configuration and logging for the app.
- Initializes the main `HospitalService`, which owns the store and all feature services.
- Gives each browser session its own `Session` object holding the signed-in user.
- Routes the visitor to the public pages or, once signed in, to their role's portal.
"""
# main.py

import logging

import streamlit as st

import gui
from mindcare.service import HospitalService

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Set the basic configuration for the Streamlit page.
st.set_page_config(
    page_title="MindCare",
    layout="wide"
)

# Service Initialization
@st.cache_resource
def get_hospital_service():
    """
    Initializes and returns the main HospitalService instance.

    This function is decorated with `@st.cache_resource` so the store is opened
    once per server process and shared by every browser session.

    Returns:
        HospitalService: The shared instance of the main application service.
    """
    return HospitalService()

# Get the shared service instance.
service = get_hospital_service()

# Session State Management
if 'session' not in st.session_state:
    st.session_state.session = service.new_session()
if 'auth_page' not in st.session_state:
    st.session_state.auth_page = 'welcome'

session = st.session_state.session

# Main App Router
if session.is_authenticated:
    gui.show_main_app(service, session)
elif st.session_state.auth_page == 'login':
    gui.show_login_form(service, session)
elif st.session_state.auth_page == 'register':
    gui.show_register_form(service, session)
elif st.session_state.auth_page == 'patient_registration':
    gui.show_patient_registration(service, session)
else:
    gui.show_welcome_page()
