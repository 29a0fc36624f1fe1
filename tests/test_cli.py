from datetime import datetime, timezone

from conftest import DOCTOR, MONDAY, insert_patient
from clinic_booking.services import appointments
from clinic_booking.services.doctors import list_doctors

EARLY = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def test_show_slots_lists_free_and_taken(app, monday_clinic, patient):
    with app.app_context():
        appointments.propose(DOCTOR, patient, MONDAY, "10:00", 30, now=EARLY)
    result = app.test_cli_runner().invoke(args=["show-slots", "--doctor", DOCTOR, "--day", MONDAY.isoformat()])
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert lines[0] == "09:00-09:30  free"
    assert "10:00-10:30  taken" in lines
    assert len(lines) == 6


def test_show_slots_reports_errors(app):
    result = app.test_cli_runner().invoke(args=["show-slots", "--doctor", "dr-nobody", "--day", "2030-01-07"])
    assert result.exit_code != 0
    assert "doctor dr-nobody does not exist" in result.output


def test_purge_appointments(app, monday_clinic, patient):
    with app.app_context():
        kept = appointments.propose(DOCTOR, patient, MONDAY, "09:00", 30, now=EARLY)
        gone = appointments.propose(DOCTOR, patient, MONDAY, "09:30", 30, now=EARLY)
        appointments.cancel(gone["id"], "duplicate", now=EARLY)

    runner = app.test_cli_runner()
    dry = runner.invoke(args=["purge-appointments", "--before", "2030-02-01", "--dry-run"])
    assert dry.exit_code == 0
    assert "Would delete 1 appointment(s)." in dry.output

    real = runner.invoke(args=["purge-appointments", "--before", "2030-02-01"])
    assert "Deleted 1 appointment(s)." in real.output

    with app.app_context():
        remaining = appointments.appointments_for_day(DOCTOR, MONDAY)
    assert [row["id"] for row in remaining] == [kept["id"]]

    bad = runner.invoke(args=["purge-appointments", "--before", "soon"])
    assert bad.exit_code != 0


def test_add_and_seed_doctors(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["add-doctor", "Dr. Sara Ali", "--specialty", "Dermatology"])
    assert result.exit_code == 0
    assert "saved as dr-sara-ali" in result.output

    seeded = runner.invoke(args=["seed-doctors"])
    assert "0 doctor(s) added." in seeded.output

    with app.app_context():
        doctors = {doc["id"]: doc for doc in list_doctors()}
    assert doctors["dr-sara-ali"]["specialty"] == "Dermatology"


def test_add_patient(app):
    from clinic_booking.services.patients import get_patient

    runner = app.test_cli_runner()
    result = runner.invoke(args=["add-patient", "  Mona   Hassan ", "--phone", "0100 200 300"])
    assert result.exit_code == 0
    assert result.output.startswith("Patient P000001 created: ")
    patient_id = result.output.strip().rsplit(" ", 1)[-1]

    with app.app_context():
        stored = get_patient(patient_id)
    assert stored["full_name"] == "Mona Hassan"
    assert stored["phone"] == "0100 200 300"

    blank = runner.invoke(args=["add-patient", "   "])
    assert blank.exit_code != 0
    assert "full_name is required" in blank.output


def test_short_ids_continue_after_the_highest(app):
    from clinic_booking.services.database import db
    from clinic_booking.services.patients import create_patient

    insert_patient("First Patient", "P000001")
    gone = insert_patient("Removed Patient", "P000002")
    insert_patient("Imported Patient", "P000007")
    conn = db()
    try:
        conn.execute("DELETE FROM patients WHERE id=?", (gone,))
        conn.commit()
    finally:
        conn.close()

    with app.app_context():
        created = create_patient("New Patient")
        following = create_patient("Next Patient")
    assert created["short_id"] == "P000008"
    assert following["short_id"] == "P000009"
