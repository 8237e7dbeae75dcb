"""
Unit tests for the MindCare application.

These tests focus on individual functions and services in isolation: timestamp
normalization, the document store, the resilient query helpers, record parsing,
patient resolution, availability, activity merging, authentication, profiles,
request memoization and the Gemini digest.
"""
import copy
import datetime
import gc

import pytest

from mindcare import gemini as gemini_module
from mindcare import stats, timestamps
from mindcare.auth import AccountExistsError, InvalidCredentialsError, Session, validate_credentials
from mindcare.dashboard import merge_activity
from mindcare.feedback import filter_feedback
from mindcare.memo import RequestMemo
from mindcare.models import (
    Activity,
    Appointment,
    Feedback,
    InvalidRecordError,
    PatientRecord,
    Treatment,
    parse_records,
)
from mindcare.profiles import DraftStore
from mindcare.queries import count_with_fallback, fetch_sorted, sort_snapshots
from mindcare.store import (
    DESCENDING,
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    InvalidQueryError,
    MissingIndexError,
    Snapshot,
    StoreUnavailableError,
)
from mindcare.treatments import render_report

from conftest import PASSWORD

UTC = datetime.timezone.utc


def _at(year, month, day, hour=0):
    return datetime.datetime(year, month, day, hour, tzinfo=UTC)


# Timestamps

def test_to_datetime_accepts_every_encoding():
    """Native, epoch-seconds and ISO encodings of one instant normalize to the same value."""
    instant = _at(2024, 1, 10, 10)
    seconds = int(instant.timestamp())
    assert timestamps.to_datetime(instant) == instant
    assert timestamps.to_datetime({"seconds": seconds, "nanoseconds": 0}) == instant
    assert timestamps.to_datetime("2024-01-10T10:00:00Z") == instant
    assert timestamps.to_datetime("2024-01-10T10:00:00") == instant
    assert timestamps.to_datetime(seconds * 1000) == instant
    assert timestamps.to_datetime(datetime.date(2024, 1, 10)) == _at(2024, 1, 10)


def test_to_datetime_rejects_unparseable_values():
    for value in (None, "", "not a date", {"nanoseconds": 5}, True, [1, 2]):
        assert timestamps.to_datetime(value) is None
    assert timestamps.to_epoch("garbage") == 0.0


def test_combine_slot_and_day_bounds():
    assert timestamps.parse_slot_time("10:00 AM") == (10, 0)
    assert timestamps.parse_slot_time("12:00 PM") == (12, 0)
    assert timestamps.parse_slot_time("02:00 PM") == (14, 0)
    assert timestamps.combine_slot("2024-01-10", "03:00 PM") == _at(2024, 1, 10, 15)

    start, end = timestamps.day_bounds(datetime.date(2024, 1, 10))
    assert start == _at(2024, 1, 10)
    assert end == _at(2024, 1, 11)


def test_format_timestamp_fallback():
    assert timestamps.format_timestamp(None, fallback="Unknown time") == "Unknown time"
    assert "2024" in timestamps.format_timestamp("2024-06-01T12:00:00Z")


# Document store

def test_merge_upsert_keeps_unwritten_fields(store):
    """A merge write changes only the given fields, including nested ones."""
    ref = store.collection("patientProfiles").document("u1")
    ref.set({"name": "Pat", "phone": "123", "details": {"a": 1, "b": 2}})
    ref.set({"phone": "456", "details": {"b": 3}}, merge=True)
    assert ref.get().to_dict() == {"name": "Pat", "phone": "456", "details": {"a": 1, "b": 3}}

    ref.set({"name": "Replaced"})
    assert ref.get().to_dict() == {"name": "Replaced"}


def test_server_timestamp_is_resolved_on_write(store):
    ref = store.collection("treatments").add({"date": SERVER_TIMESTAMP, "nested": {"at": SERVER_TIMESTAMP}})
    data = ref.get().to_dict()
    assert isinstance(data["date"], datetime.datetime)
    assert data["date"].tzinfo is not None
    assert data["nested"]["at"] == data["date"]


def test_update_requires_existing_document(store):
    with pytest.raises(DocumentNotFoundError):
        store.collection("appointments").document("missing").update({"status": "cancelled"})

    ref = store.collection("appointments").add({"appointmentDetails": {"time": "10:00 AM"}})
    ref.update({"appointmentDetails.dateString": "2024-01-10", "status": "completed"})
    snap = ref.get()
    assert snap.get("appointmentDetails.time") == "10:00 AM"
    assert snap.get("appointmentDetails.dateString") == "2024-01-10"
    assert snap.get("status") == "completed"


def test_store_is_encrypted_and_persists(data_file, encryptor, store):
    store.collection("patients").document("p1").set({"name": "Secret Name", "when": _at(2024, 1, 1)})
    with open(data_file) as f:
        assert "Secret Name" not in f.read()

    reopened = DocumentStore(data_file, encryptor=encryptor)
    snap = reopened.collection("patients").document("p1").get()
    assert snap.get("name") == "Secret Name"
    assert snap.get("when") == _at(2024, 1, 1)


def test_corrupt_store_file_starts_fresh(tmp_path, encryptor):
    data_file = tmp_path / "bad.json"
    data_file.write_text("invalid-data", encoding="utf-8")
    fresh = DocumentStore(str(data_file), encryptor=encryptor)
    assert fresh.collection_names() == []


def test_filters_on_dotted_paths_and_operators(store):
    appointments = store.collection("appointments")
    appointments.document("a").set({"status": "scheduled", "appointmentDetails": {"date": _at(2024, 1, 1)}})
    appointments.document("b").set({"status": "cancelled", "appointmentDetails": {"date": _at(2024, 1, 2)}})
    appointments.document("c").set({"status": "completed", "appointmentDetails": {"date": _at(2024, 1, 3)}})

    ids = lambda query: [snap.id for snap in query.get()]
    assert ids(appointments.where("appointmentDetails.date", ">=", _at(2024, 1, 2))) == ["b", "c"]
    assert ids(appointments.where("appointmentDetails.date", "<", _at(2024, 1, 2))) == ["a"]
    assert ids(appointments.where("status", "in", ["scheduled", "completed"])) == ["a", "c"]
    assert ids(appointments.where("status", "!=", "cancelled")) == ["a", "c"]
    assert appointments.where("status", "==", "scheduled").count() == 1


def test_filtered_order_requires_declared_index(store):
    """Ordering a filtered query on another field fails until the composite index exists."""
    treatments = store.collection("treatments")
    treatments.add({"patientId": "P1", "date": _at(2024, 1, 1)})
    query = treatments.where("patientId", "==", "P1").order_by("date", DESCENDING)

    with pytest.raises(MissingIndexError) as excinfo:
        query.get()
    assert excinfo.value.fields == ("patientId", "date")

    store.create_index("treatments", ("patientId", "date"))
    assert len(query.get()) == 1


def test_queries_that_never_need_an_index(store):
    collection = store.collection("appointments")
    collection.add({"doctorId": "d1", "status": "completed", "createdAt": _at(2024, 1, 1)})
    assert len(collection.order_by("createdAt", DESCENDING).get()) == 1
    assert len(collection.where("doctorId", "==", "d1").where("status", "==", "completed").get()) == 1
    assert len(collection.where("createdAt", ">", _at(2023, 1, 1)).order_by("createdAt").get()) == 1


def test_range_on_two_fields_is_invalid(store):
    query = store.collection("x").where("a", ">", 1).where("b", "<", 2)
    with pytest.raises(InvalidQueryError):
        query.get()


def test_ordering_breaks_ties_by_document_id(store):
    collection = store.collection("patientFeedback")
    same = _at(2024, 1, 1)
    for doc_id in ("b", "a", "c"):
        collection.document(doc_id).set({"createdAt": same})
    collection.document("z").set({})
    assert [snap.id for snap in collection.order_by("createdAt", DESCENDING).get()] == ["c", "b", "a", "z"]
    assert [snap.id for snap in collection.order_by("createdAt").limit(2).get()] == ["z", "a"]


def test_on_snapshot_redelivers_until_unsubscribed(store):
    deliveries = []
    collection = store.collection("patientFeedback")
    unsubscribe = collection.where("uid", "==", "u1").on_snapshot(lambda snaps: deliveries.append(len(snaps)))
    collection.add({"uid": "u1"})
    collection.add({"uid": "u2"})
    unsubscribe()
    collection.add({"uid": "u1"})
    assert deliveries == [0, 1, 1]


def test_on_snapshot_reports_query_errors(store):
    errors = []
    store.collection("patientFeedback").where("uid", "==", "u1").order_by("createdAt").on_snapshot(
        lambda snaps: None, errors.append,
    )
    assert len(errors) == 1
    assert isinstance(errors[0], MissingIndexError)


def test_server_timestamp_survives_document_copies():
    assert copy.deepcopy(SERVER_TIMESTAMP) is SERVER_TIMESTAMP
    memory = DocumentStore(None)
    ref = memory.collection("treatments").add({"date": SERVER_TIMESTAMP})
    ref.update({"updatedAt": SERVER_TIMESTAMP})
    snap = ref.get()
    assert isinstance(snap.get("date"), datetime.datetime)
    assert isinstance(snap.get("updatedAt"), datetime.datetime)


def test_failed_save_is_not_served(tmp_path):
    """A write the store file cannot take leaves the previous state in place."""
    broken = DocumentStore(str(tmp_path / "missing-dir" / "records.json"))
    ref = broken.collection("patients").document("p1")
    with pytest.raises(StoreUnavailableError):
        ref.set({"name": "Unsaved"})
    assert not ref.get().exists
    assert broken.collection_names() == []


class _Listener:
    def __init__(self):
        self.deliveries = []

    def on_next(self, snaps):
        self.deliveries.append(len(snaps))


def test_subscription_is_dropped_with_its_listener(store):
    listener = _Listener()
    feedback = store.collection("patientFeedback")
    feedback.on_snapshot(listener.on_next)
    feedback.add({"uid": "u1"})
    assert listener.deliveries == [0, 1]
    assert store.listener_count("patientFeedback") == 1

    del listener
    gc.collect()
    assert store.listener_count("patientFeedback") == 0
    feedback.add({"uid": "u2"})


# Resilient queries

def _seed_mixed_timestamps(store):
    treatments = store.collection("treatments")
    treatments.document("native").set({"patientId": "P1", "date": _at(2024, 3, 1)})
    treatments.document("seconds").set({"patientId": "P1", "date": {"seconds": int(_at(2024, 1, 1).timestamp())}})
    treatments.document("iso").set({"patientId": "P1", "date": "2024-02-01T00:00:00Z"})
    treatments.document("missing").set({"patientId": "P1"})
    treatments.document("other").set({"patientId": "P2", "date": _at(2025, 1, 1)})


@pytest.mark.parametrize("descending", [True, False])
def test_fallback_matches_indexed_order(store, descending):
    """Without an index the fallback returns the same documents in the same order as the indexed query."""
    _seed_mixed_timestamps(store)
    indexed = DocumentStore(None, indexes=[("treatments", ("patientId", "date"))])
    _seed_mixed_timestamps(indexed)

    direction = DESCENDING if descending else "asc"
    expected = [
        snap.id for snap in
        indexed.collection("treatments").where("patientId", "==", "P1").order_by("date", direction).get()
    ]
    fallback = fetch_sorted(store.collection("treatments").where("patientId", "==", "P1"), "date", descending=descending)
    assert [snap.id for snap in fallback] == expected
    if descending:
        assert expected == ["native", "iso", "seconds", "missing"]


def test_fetch_sorted_applies_limit_after_sorting(store):
    _seed_mixed_timestamps(store)
    rows = fetch_sorted(store.collection("treatments").where("patientId", "==", "P1"), "date", limit=2)
    assert [snap.id for snap in rows] == ["native", "iso"]


def test_fetch_sorted_scans_when_unordered_query_also_fails(store):
    appointments = store.collection("appointments")
    appointments.document("mine").set({"doctorId": "d1", "appointmentDetails": {"date": _at(2024, 1, 1)}})
    appointments.document("theirs").set({"doctorId": "d2", "appointmentDetails": {"date": _at(2024, 1, 2)}})
    query = appointments.where("doctorId", "==", "d1").where("appointmentDetails.date", ">=", _at(2020, 1, 1))

    with pytest.raises(MissingIndexError):
        fetch_sorted(query, "appointmentDetails.date")
    rows = fetch_sorted(query, "appointmentDetails.date", scan={"doctorId": "d1"})
    assert [snap.id for snap in rows] == ["mine"]


def test_fallback_orders_pre_epoch_and_unparseable_dates_like_the_index(store):
    indexed = DocumentStore(None, indexes=[("treatments", ("patientId", "date"))])
    for target in (store, indexed):
        treatments = target.collection("treatments")
        treatments.document("old").set({"patientId": "P1", "date": _at(1965, 6, 1)})
        treatments.document("bad").set({"patientId": "P1", "date": "unknown"})
        treatments.document("new").set({"patientId": "P1", "date": _at(2024, 1, 1)})

    expected = [
        snap.id for snap in
        indexed.collection("treatments").where("patientId", "==", "P1").order_by("date", DESCENDING).get()
    ]
    fallback = fetch_sorted(store.collection("treatments").where("patientId", "==", "P1"), "date")
    assert [snap.id for snap in fallback] == expected == ["new", "bad", "old"]


def test_sort_snapshots_puts_unparseable_last():
    snaps = [
        Snapshot("bad", {"createdAt": "whenever"}),
        Snapshot("new", {"createdAt": _at(2024, 5, 1)}),
        Snapshot("old", {"createdAt": _at(2023, 5, 1)}),
    ]
    assert [snap.id for snap in sort_snapshots(snaps, "createdAt")] == ["new", "old", "bad"]


def test_count_with_fallback_counts_in_memory(store):
    appointments = store.collection("appointments")
    appointments.add({"doctorId": "d1", "appointmentDetails": {"date": _at(2024, 1, 10, 9)}})
    appointments.add({"doctorId": "d1", "appointmentDetails": {"date": _at(2024, 1, 11, 9)}})
    start, end = timestamps.day_bounds(datetime.date(2024, 1, 10))
    query = (
        appointments.where("doctorId", "==", "d1")
        .where("appointmentDetails.date", ">=", start)
        .where("appointmentDetails.date", "<", end)
    )

    def on_day(snap):
        return start <= timestamps.to_datetime(snap.get("appointmentDetails.date")) < end

    assert count_with_fallback(query, on_day) == 1


# Records

def test_parse_records_quarantines_malformed_documents():
    snaps = [
        Snapshot("ok", {"uid": "u1", "doctor": "Dr. Smith", "review": "Great", "rating": 5}, "patientFeedback"),
        Snapshot("text", {"rating": "five"}, "patientFeedback"),
        Snapshot("range", {"rating": 9}, "patientFeedback"),
    ]
    quarantine = []
    records = parse_records(snaps, Feedback, quarantine)
    assert [record.id for record in records] == ["ok"]
    assert [snap.id for snap, _ in quarantine] == ["text", "range"]
    assert records[0].status == "new"


def test_record_defaults_and_validation():
    appointment = Appointment.from_snapshot(Snapshot("a1", {
        "patientUid": "u1",
        "doctor": "Dr. Smith",
        "appointmentDetails": {"dateString": "2024-01-10", "time": "10:00 AM"},
    }))
    assert appointment.status == "scheduled"
    assert appointment.when == _at(2024, 1, 10, 10)

    with pytest.raises(InvalidRecordError):
        Appointment.from_snapshot(Snapshot("a2", {"doctor": "Dr. Smith"}))
    with pytest.raises(InvalidRecordError):
        Treatment.from_snapshot(Snapshot("t1", {"problem": "Anxiety"}))
    with pytest.raises(InvalidRecordError):
        PatientRecord.from_snapshot(Snapshot("p1", {"phone": "123"}))
    with pytest.raises(InvalidRecordError):
        PatientRecord.from_snapshot(Snapshot("p2", {"name": {"first": "Pat"}}))


# Patient resolution

@pytest.fixture
def seeded_patients(service):
    patients = service.store.collection("patients")
    patients.document("a").set({"name": "John Smith", "patientId": "P-100"})
    patients.document("b").set({"name": "Jane Doe", "patientId": "P-200"})
    patients.document("d").set({"name": "Sam Lee", "patientId": "P-301"})
    profiles = service.store.collection("patientProfiles")
    profiles.document("c").set({"name": "Sam Lee", "patientId": "P-300"})
    profiles.document("e").set({"name": "Robin Hill", "patientId": "P-400"})
    return service


def test_resolution_prefers_identifier_over_name(seeded_patients):
    record = seeded_patients.patients.resolve_patient(name="Jane Doe", patient_id="P-100")
    assert record.doc_id == "a"


def test_resolution_prefers_primary_collection(seeded_patients):
    assert seeded_patients.patients.resolve_patient(name="Sam Lee").doc_id == "d"
    # An exact name in `patients` beats an exact ID in `patientProfiles`.
    assert seeded_patients.patients.resolve_patient(name="Jane Doe", patient_id="P-300").doc_id == "b"
    assert seeded_patients.patients.resolve_patient(patient_id="P-400").source == "patientProfiles"


def test_resolution_uses_substring_only_after_exact_matches(seeded_patients):
    assert seeded_patients.patients.resolve_patient(name="john").doc_id == "a"
    assert seeded_patients.patients.resolve_patient(patient_id="p-2").doc_id == "b"
    assert seeded_patients.patients.resolve_patient(name="robin").doc_id == "e"
    assert seeded_patients.patients.resolve_patient(name="Nobody", patient_id="X-999") is None
    assert seeded_patients.patients.resolve_patient() is None


def test_resolution_skips_malformed_documents(service):
    patients = service.store.collection("patients")
    patients.document("p1").set({"name": "Jordan Reyes", "patientId": "P-100", "allergies": ["Latex", "Penicillin"]})
    assert service.patients.resolve_patient(name="Jordan Reyes") is None
    assert service.treatments.import_patient(name="Jordan Reyes") == (None, [])

    patients.document("p2").set({"name": "Jordan Reyes", "patientId": "P-200", "allergies": "Latex"})
    assert service.patients.resolve_patient(name="Jordan Reyes").doc_id == "p2"
    assert service.patients.resolve_patient(name="jordan").doc_id == "p2"


def test_malformed_doctor_profile_reads_as_missing(service, doctor_user):
    service.store.collection("doctorProfiles").document(doctor_user.uid).set(
        {"name": "Dr. Strange", "degree": {"md": True}},
    )
    assert service.profiles.get_doctor_profile(doctor_user.uid) is None


def test_resolve_own_patient_id_uses_profile_name(service):
    service.store.collection("patients").document("p1").set({"name": "Pat Patient", "patientId": "P-555"})
    service.store.collection("patientProfiles").document("u1").set({"name": "Pat Patient"})
    service.store.collection("patientProfiles").document("u2").set({"name": "Someone", "patientId": "P-777"})
    assert service.patients.resolve_own_patient_id("u1") == "P-555"
    assert service.patients.resolve_own_patient_id("u2") == "P-777"
    assert service.patients.resolve_own_patient_id("unknown") == ""


# Availability

ROSTER = [{"id": "d1", "name": "Dr. X"}, {"id": "d2", "name": "Dr. Y"}]


def test_availability_excludes_only_active_bookings(service):
    appointments = service.store.collection("appointments")
    appointments.add({
        "patientUid": "u1", "doctorId": "d1", "status": "scheduled",
        "appointmentDetails": {"dateString": "2024-01-10", "time": "10:00 AM"},
    })
    appointments.add({
        "patientUid": "u2", "doctorId": "d2", "status": "cancelled",
        "appointmentDetails": {"dateString": "2024-01-10", "time": "10:00 AM"},
    })
    available = service.appointments.available_doctors("2024-01-10", "10:00 AM", ROSTER)
    assert [doctor["id"] for doctor in available] == ["d2"]
    assert len(service.appointments.available_doctors("2024-01-10", "11:00 AM", ROSTER)) == 2
    assert len(service.appointments.available_doctors("", "", ROSTER)) == 2


def test_doctor_roster_falls_back_to_defaults(service):
    roster = service.appointments.doctor_roster()
    assert [doctor["name"] for doctor in roster][0] == "Dr. Smith"

    service.store.collection("doctorProfiles").document("uid-1").set({"name": "Dr. New", "degree": "MD"})
    roster = service.appointments.doctor_roster()
    assert roster == [{"id": "uid-1", "name": "Dr. New", "specialty": "MD"}]


def test_book_rejects_incomplete_requests(service, patient_user):
    with pytest.raises(ValueError):
        service.appointments.book(patient_user, "", "2024-01-10", "10:00 AM", ROSTER)
    with pytest.raises(ValueError):
        service.appointments.book(None, "d1", "2024-01-10", "10:00 AM", ROSTER)
    with pytest.raises(ValueError):
        service.appointments.set_status("whatever", "lost")


# Activity feed

def test_merge_activity_caps_sorts_and_puts_unknown_last():
    groups = [
        [Activity(f"a{i}", "appointment", _at(2024, 1, i + 1)) for i in range(5)],
        [Activity(f"t{i}", "treatment", _at(2024, 2, i + 1)) for i in range(5)],
        [Activity("f0", "feedback", None), Activity("f1", "feedback", _at(2024, 3, 1))],
    ]
    merged = merge_activity(*groups, limit=10)
    assert len(merged) == 10
    stamps = [item.timestamp for item in merged]
    assert stamps == sorted(stamps, reverse=True)
    assert merged[0].id == "f1"

    everything = merge_activity(*groups, limit=50)
    assert everything[-1].id == "f0"


# Authentication

def test_validate_credentials_messages():
    assert validate_credentials("", "") == {"email": "Email is required", "password": "Password is required"}
    assert validate_credentials("bad", "short")["email"] == "Enter a valid email address"
    assert validate_credentials("a@b.co", "short")["password"] == "Password must be at least 8 characters"
    errors = validate_credentials("a@b.co", PASSWORD, "different", signup=True)
    assert errors == {"confirmPassword": "Passwords do not match"}
    assert validate_credentials("a@b.co", PASSWORD, PASSWORD, signup=True) == {}


def test_sign_up_and_verify_password(service):
    user = service.auth.sign_up("New@Example.com", PASSWORD, "New User", "doctor")
    assert user.email == "new@example.com"
    assert user.role == "doctor"
    assert service.auth.verify_password("new@example.com", PASSWORD) == user

    with pytest.raises(InvalidCredentialsError):
        service.auth.verify_password("new@example.com", "wrong-password")
    with pytest.raises(AccountExistsError):
        service.auth.sign_up("new@example.com", PASSWORD, "Again", "patient")
    with pytest.raises(ValueError):
        service.auth.sign_up("other@example.com", PASSWORD, "Other", "janitor")


def test_federated_user_is_linked_once(service):
    first = service.auth.federated_user("google", "sub-1", "fed@example.com", "Fed User")
    second = service.auth.federated_user("google", "sub-1", "fed@example.com", "Fed User")
    assert first == second
    assert first.provider == "google"
    with pytest.raises(InvalidCredentialsError):
        service.auth.verify_password("fed@example.com", PASSWORD)


def test_session_notifies_subscribers(service, patient_user):
    session = Session(service.auth)
    seen = []
    unsubscribe = session.subscribe(seen.append)
    session.sign_in("pat@example.com", PASSWORD)
    session.sign_out()
    unsubscribe()
    session.sign_in("pat@example.com", PASSWORD)
    assert seen == [None, patient_user, None]
    assert session.is_authenticated


# Profiles

def test_draft_store_round_trip():
    state = {}
    drafts = DraftStore(state)
    assert drafts.load() is None
    drafts.save({"name": "Pat"})
    assert drafts.load() == {"name": "Pat"}
    drafts.clear()
    assert drafts.load() is None


def test_unauthenticated_patient_only_writes_draft(service):
    drafts = DraftStore({})
    form = {"name": "Walk In", "age": "30", "gender": "Female", "phone": ""}
    assert service.profiles.save_patient_profile(None, form, drafts) is False
    assert drafts.load() == {"name": "Walk In", "age": "30", "gender": "Female"}
    assert service.store.collection("patientProfiles").get() == []

    with pytest.raises(ValueError):
        service.profiles.save_patient_profile(None, {"name": "No Age"}, drafts)


def test_profile_required_fields(service, doctor_user, manager_user):
    with pytest.raises(ValueError, match="degree"):
        service.profiles.save_doctor_profile(doctor_user, {"name": "Dr. Strange", "age": "40"})
    with pytest.raises(ValueError, match="name"):
        service.profiles.save_manager_profile(manager_user, {"phone": "123"})

    saved = service.profiles.save_manager_profile(manager_user, {"name": "Gina"})
    assert saved["email"] == "gm@example.com"
    assert service.profiles.get_manager_profile(manager_user.uid).position == "General Manager"
    assert service.profiles.has_profile("generalmanager", manager_user.uid)
    assert not service.profiles.has_profile("doctor", manager_user.uid)
    assert not service.profiles.has_profile("admin", manager_user.uid)


# Memo

def test_request_memo_expires_and_invalidates():
    now = [0.0]
    memo = RequestMemo(10, clock=lambda: now[0])
    calls = []

    def fetch():
        calls.append(1)
        return len(calls)

    assert memo.get_or_fetch(("summary", "admin"), fetch) == 1
    assert memo.get_or_fetch(("summary", "admin"), fetch) == 1
    now[0] = 11
    assert memo.get_or_fetch(("summary", "admin"), fetch) == 2
    memo.invalidate("summary")
    assert memo.get_or_fetch(("summary", "admin"), fetch) == 3
    assert memo.get_or_fetch("activity", fetch, ttl_seconds=0) == 4


def test_request_memo_does_not_cache_failures():
    memo = RequestMemo(60)

    def broken():
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        memo.get_or_fetch("k", broken)
    assert memo.get_or_fetch("k", lambda: "ok") == "ok"


# Feedback, treatments, stats

def test_filter_feedback_treats_unset_status_as_new():
    records = [
        Feedback("1", doctor="Dr. Smith", review="Kind and patient", status=""),
        Feedback("2", doctor="Dr. Jones", review="Rushed", status="reviewed"),
    ]
    assert [record.id for record in filter_feedback(records, status="new")] == ["1"]
    assert [record.id for record in filter_feedback(records, text="rushed")] == ["2"]
    assert len(filter_feedback(records)) == 2


def test_filter_feedback_searches_every_text_field():
    record = Feedback("1", uid="user-42", doctor="Dr. Smith", review="Kind", subject="Billing delay",
                      message="Please call me")
    for text in ("billing", "USER-42", "call me", "smith", "kind"):
        assert filter_feedback([record], text=text) == [record]
    assert filter_feedback([record], text="cardiology") == []


def test_submit_feedback_validation(service, patient_user):
    with pytest.raises(ValueError):
        service.feedback.submit(patient_user, "Dr. Smith", "", 5)
    with pytest.raises(ValueError):
        service.feedback.submit(patient_user, "Dr. Smith", "Fine", 6)
    feedback_id = service.feedback.submit(patient_user, "Dr. Smith", "Fine", 4)
    snap = service.store.collection("patientFeedback").document(feedback_id).get()
    assert snap.get("status") == "new"
    assert snap.get("uid") == patient_user.uid


def test_pending_feedback_count_ignores_new(service, patient_user):
    service.feedback.submit(patient_user, "Dr. Smith", "Fine", 4)
    second = service.feedback.submit(patient_user, "Dr. Smith", "Okay", 3)
    assert stats.count_pending_feedback(service.store) == 0
    service.feedback.set_status(second, "pending")
    assert stats.count_pending_feedback(service.store) == 1
    assert stats.count_pending_feedback(service.store, statuses=("new", "pending")) == 2
    assert stats.average_rating(service.store) == 3.5


def test_record_treatment_requires_fields(service, doctor_user):
    with pytest.raises(ValueError, match="problem"):
        service.treatments.record(doctor_user, {"patientName": "Pat", "duration": "2 weeks"})
    treatment_id = service.treatments.record(
        doctor_user, {"patientName": "Pat", "patientId": "P-1", "problem": "Insomnia", "duration": "2 weeks"},
    )
    snap = service.store.collection("treatments").document(treatment_id).get()
    assert snap.get("status") == "ongoing"
    assert snap.get("createdByUid") == doctor_user.uid
    assert isinstance(snap.get("date"), datetime.datetime)


def test_render_report_includes_history():
    patient = PatientRecord("p1", "patients", name="Pat", patient_id="P-1", allergies="Penicillin")
    past = [Treatment("t1", patient_id="P-1", problem="Anxiety", status="completed", date=_at(2024, 1, 1))]
    report = render_report({"patientName": "Pat", "patientId": "P-1", "problem": "Insomnia", "duration": "1 week"},
                           patient, past)
    assert "Patient: Pat" in report
    assert "Allergies: Penicillin" in report
    assert "Problem: Insomnia" in report
    assert "Anxiety (completed)" in report


# Gemini

def test_summarize_feedback_success(monkeypatch):
    prompts = []

    class DummyModel:
        def generate_content(self, prompt):
            prompts.append(prompt)

            class Response:
                text = "Patients are happy."

            return Response()

    monkeypatch.setattr(gemini_module, "_get_model", lambda: DummyModel())
    reviews = [Feedback("1", doctor="Dr. Smith", review="Very kind", rating=5)]
    assert gemini_module.summarize_feedback(reviews) == "Patients are happy."
    assert "Dr. Smith (5/5): Very kind" in prompts[0]


def test_summarize_feedback_handles_errors_and_missing_key(monkeypatch):
    monkeypatch.setattr(gemini_module, "_model", None)
    reviews = [Feedback("1", doctor="Dr. Smith", review="Very kind", rating=5)]
    assert gemini_module.summarize_feedback(reviews) is None
    assert gemini_module.summarize_feedback([]) is None

    class ErrorModel:
        def generate_content(self, prompt):
            raise RuntimeError("API error")

    monkeypatch.setattr(gemini_module, "_get_model", lambda: ErrorModel())
    assert gemini_module.summarize_feedback(reviews) is None
