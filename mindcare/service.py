"""
This module provides `HospitalService`, the single entry point the pages use.

It is responsible for:
- Opening the encrypted document store (`records.json` by default) with its key file.
- Owning the account service and the request memo shared by the dashboards.
- Composing the feature services (`patients`, `appointments`, `treatments`, `feedback`,
  `profiles`, `staff` and `dashboards`), each of which keeps a back-reference to this
  service to reach the store and the memo.
- Creating a `Session` for each browser session.
"""
# mindcare/service.py

from __future__ import annotations

import logging
from typing import Iterable, Optional

from mindcare import config
from mindcare.appointments import AppointmentService
from mindcare.auth import AuthService, Session
from mindcare.dashboard import DashboardService
from mindcare.encryption import build_encryptor
from mindcare.feedback import FeedbackService
from mindcare.memo import RequestMemo
from mindcare.patients import PatientService
from mindcare.profiles import ProfileService
from mindcare.staff import StaffService
from mindcare.store import DocumentStore
from mindcare.treatments import TreatmentService

logger = logging.getLogger(__name__)


class HospitalService:
    """Owns the store and the feature services of the MindCare portal."""

    def __init__(self, store: Optional[DocumentStore] = None, data_file: Optional[str] = None,
                 key_file: Optional[str] = None, indexes: Optional[Iterable] = None):
        """Opens the store and sets up sub-services.

        Args:
            store: An already opened store. When omitted, the encrypted store at
                `data_file` (default `config.DATA_FILE`) is opened with the key at
                `key_file` (default `config.KEY_FILE`).
            indexes: Composite indexes to declare; defaults to `config.COMPOSITE_INDEXES`.
        """
        if store is None:
            indexes = config.COMPOSITE_INDEXES if indexes is None else indexes
            store = DocumentStore(
                data_file or config.DATA_FILE,
                encryptor=build_encryptor(key_file or config.KEY_FILE),
                indexes=indexes,
            )
        self.store = store
        self.auth = AuthService(store)
        self.memo = RequestMemo(config.DASHBOARD_REFRESH_SECONDS)
        self.patients = PatientService(self)
        self.appointments = AppointmentService(self)
        self.treatments = TreatmentService(self)
        self.feedback = FeedbackService(self)
        self.profiles = ProfileService(self)
        self.staff = StaffService(self)
        self.dashboards = DashboardService(self)
        logger.info("Hospital service ready with collections: %s", ", ".join(store.collection_names()) or "none")

    def new_session(self) -> Session:
        """A signed-out session for a new browser session."""
        return Session(self.auth)
