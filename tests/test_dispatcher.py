"""End-to-end tests for oonjai.reminders.dispatcher against a SQLite ledger."""

import threading
from datetime import date, time

from sqlalchemy import select

from oonjai.reminders.clock import FixedClock
from oonjai.reminders.dispatcher import ReminderDispatcher
from oonjai.reminders.ledger import SqlAlchemyLedger
from oonjai.reminders.models import ReminderLog
from oonjai.reminders.schemas import Claimed, DeliveryChannel, OccurrenceKey, OccurrenceKind
from tests.conftest import MONDAY, TUESDAY, FakeTransport, bangkok


def make_dispatcher(session_factory, transport, clock, **kwargs):
    ledger = SqlAlchemyLedger(session_factory)
    return ReminderDispatcher(session_factory, ledger, transport, clock, **kwargs)


def ledger_rows(session_factory):
    with session_factory() as db:
        return list(db.execute(select(ReminderLog)).scalars())


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestReminderScenarios:
    def test_daily_reminder_in_one_group(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "C-family")
        reminder_id = seed.reminder(patient_id, at=time(8, 0))

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert (summary.checked, summary.sent, summary.skipped, summary.errors) == (1, 1, 0, 0)
        assert transport.destinations == ["C-family"]
        [row] = ledger_rows(session_factory)
        assert row.reminder_id == reminder_id
        assert row.status == "sent"
        assert row.channel == "group"
        detail = summary.details[0]
        assert (detail.id, detail.status, detail.channel) == (str(reminder_id), "sent", DeliveryChannel.GROUP)

    def test_specific_day_reminder_on_wrong_day(self, seed, session_factory, transport):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "C-family")
        reminder_id = seed.reminder(patient_id, frequency="specific_days", days=["monday"])
        clock = FixedClock(bangkok(*TUESDAY, 8, 0), tz_name="Asia/Bangkok")

        summary = make_dispatcher(session_factory, transport, clock).run()

        assert summary.skipped == 1
        assert summary.details[0].id == str(reminder_id)
        assert summary.details[0].reason == "not_scheduled_day"
        assert ledger_rows(session_factory) == []
        assert transport.pushes == []

    def test_two_ticks_thirty_seconds_apart(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)
        dispatcher = make_dispatcher(session_factory, transport, monday_8am)

        first = dispatcher.run()
        monday_8am.advance(seconds=30)
        second = dispatcher.run()

        assert first.sent == 1
        assert (second.sent, second.skipped) == (0, 1)
        assert second.details[0].reason == "already_sent"
        assert len(transport.pushes) == 1
        assert [r.status for r in ledger_rows(session_factory)] == ["sent"]

    def test_reminder_not_at_this_minute_is_not_checked(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id, at=time(9, 0))
        seed.reminder(patient_id, at=time(8, 0), is_active=False)

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert summary.checked == 0
        assert transport.pushes == []

    def test_edited_time_is_delivered_again(self, seed, session_factory, transport):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        reminder_id = seed.reminder(patient_id, at=time(21, 0))
        clock = FixedClock(bangkok(*MONDAY, 21, 0), tz_name="Asia/Bangkok")
        dispatcher = make_dispatcher(session_factory, transport, clock)

        assert dispatcher.run().sent == 1
        seed.update_reminder(reminder_id, time=time(23, 10))
        clock.advance(hours=2, minutes=10)
        assert dispatcher.run().sent == 1

        assert len(transport.pushes) == 2
        assert sorted(r.slot_time for r in ledger_rows(session_factory)) == [time(21, 0), time(23, 10)]

    def test_linked_medication_in_payload(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        medication_id = seed.medication(patient_id, name="Amlodipine", dosage_amount="5", dosage_unit="mg")
        seed.reminder(patient_id, medication_id=medication_id, note="หลังอาหารเช้า")

        make_dispatcher(session_factory, transport, monday_8am).run()

        bubble = transport.pushes[0]["messages"][0]["contents"]
        assert bubble["header"]["contents"][1]["text"] == "Amlodipine"
        assert [row["contents"][2]["text"] for row in bubble["body"]["contents"]][-2:] == ["5 mg", "หลังอาหารเช้า"]
        assert f"medication_id={medication_id}" in bubble["footer"]["contents"][0]["action"]["data"]
        assert transport.pushes[0]["retry_key"]


class TestChannels:
    def test_group_and_personal_channel_only_group_used(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "C-family")
        seed.group(patient_id, "C-nurses")
        seed.reminder(patient_id)

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert sorted(transport.destinations) == ["C-family", "C-nurses"]
        assert "U-patient" not in transport.destinations
        assert summary.details[0].destinations == 2

    def test_direct_fallback(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient(first_name="สมศรี", line_user_id="U-patient")
        seed.reminder(patient_id)

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert transport.destinations == ["U-patient"]
        assert summary.details[0].channel == DeliveryChannel.DIRECT
        assert "สมศรี" not in transport.pushes[0]["messages"][0]["altText"]
        assert ledger_rows(session_factory)[0].channel == "direct"

    def test_group_message_names_patient(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient(first_name="สมศรี")
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)

        make_dispatcher(session_factory, transport, monday_8am).run()

        assert "สมศรี" in transport.pushes[0]["messages"][0]["altText"]

    def test_undeliverable(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient(line_user_id=None)
        seed.reminder(patient_id)

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert transport.pushes == []
        assert summary.errors == 1
        assert summary.details[0].reason == "recipient_unresolved"
        assert ledger_rows(session_factory)[0].status == "error"

    def test_plain_text_mode(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)

        make_dispatcher(session_factory, transport, monday_8am, use_flex=False).run()

        assert transport.pushes[0]["messages"][0]["type"] == "text"


class TestFailures:
    def test_transport_failure_resolves_error_and_retries_once(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)
        transport = FakeTransport(failing={"C-family"})
        dispatcher = make_dispatcher(session_factory, transport, monday_8am)

        first = dispatcher.run()
        assert first.errors == 1
        assert first.details[0].reason == "transport_failure"
        [row] = ledger_rows(session_factory)
        assert (row.status, row.attempts) == ("error", 1)
        assert "500" in row.error_message

        # Next tick retries the failed 08:00 occurrence
        transport.failing.clear()
        monday_8am.advance(minutes=1)
        second = dispatcher.run()
        assert second.sent == 1
        [row] = ledger_rows(session_factory)
        assert (row.status, row.attempts) == ("sent", 2)

        monday_8am.advance(minutes=1)
        assert dispatcher.run().checked == 0
        assert len(transport.pushes) == 2

    def test_retry_is_bounded(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)
        transport = FakeTransport(failing={"C-family"})
        dispatcher = make_dispatcher(session_factory, transport, monday_8am)

        for _ in range(4):
            dispatcher.run()
            monday_8am.advance(minutes=1)

        assert len(transport.pushes) == 2
        [row] = ledger_rows(session_factory)
        assert (row.status, row.attempts) == ("error", 2)

    def test_edited_reminder_is_not_retried(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        reminder_id = seed.reminder(patient_id)
        transport = FakeTransport(failing={"C-family"})
        dispatcher = make_dispatcher(session_factory, transport, monday_8am)

        dispatcher.run()
        seed.update_reminder(reminder_id, time=time(12, 0))
        monday_8am.advance(minutes=1)
        transport.failing.clear()

        assert dispatcher.run().sent == 0
        assert len(transport.pushes) == 1

    def test_partial_fan_out_counts_as_sent(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.group(patient_id, "C-broken")
        seed.reminder(patient_id)
        transport = FakeTransport(failing={"C-broken"})

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert summary.sent == 1
        assert summary.details[0].reason == "partial_delivery"
        assert summary.details[0].destinations == 1
        [row] = ledger_rows(session_factory)
        assert row.status == "sent"
        assert "C-broken" in row.error_message

    def test_one_failure_does_not_abort_batch(self, seed, session_factory, monday_8am):
        healthy = seed.patient()
        seed.group(healthy, "C-ok")
        broken = seed.patient()
        seed.group(broken, "C-broken")
        orphan = seed.patient(line_user_id=None)
        for patient_id in (healthy, broken, orphan):
            seed.reminder(patient_id)
        transport = FakeTransport(failing={"C-broken"})

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert (summary.checked, summary.sent, summary.errors) == (3, 1, 2)
        assert "C-ok" in transport.destinations

    def test_malformed_reminder_is_excluded(self, seed, session_factory, transport, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        bad_id = seed.reminder(patient_id, type="yoga")
        seed.reminder(patient_id, type="water")

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert summary.sent == 1
        assert summary.errors == 1
        bad = next(d for d in summary.details if d.id == str(bad_id))
        assert bad.reason == "malformed_input"
        assert len(ledger_rows(session_factory)) == 1

    def test_bad_day_list_does_not_stop_the_pass(self, seed, session_factory, transport, monday_8am):
        healthy = seed.patient()
        seed.group(healthy, "C-ok")
        seed.reminder(healthy, type="water")
        broken = seed.patient()
        seed.group(broken, "C-broken")
        bad_ids = [
            seed.reminder(broken, frequency="specific_days", days=5),
            seed.reminder(broken, frequency="specific_days", days="monday"),
        ]

        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert transport.destinations == ["C-ok"]
        assert (summary.sent, summary.errors) == (1, 2)
        assert {d.id: d.reason for d in summary.details if d.status == "error"} == {
            str(bad_id): "malformed_input" for bad_id in bad_ids
        }
        assert len(ledger_rows(session_factory)) == 1

    def test_superseded_claim_is_not_counted_as_sent(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        reminder_id = seed.reminder(patient_id)
        other_worker = SqlAlchemyLedger(session_factory)
        key = OccurrenceKey(OccurrenceKind.REMINDER, reminder_id, date(*MONDAY), slot=time(8, 0), patient_id=patient_id)

        def stall_then_lose_claim(_):
            # Push hangs past the stale timeout and another worker reclaims the row
            monday_8am.advance(minutes=6)
            assert other_worker.claim(key, monday_8am.now()) == Claimed(key=key, attempt=2)

        transport = FakeTransport(on_push=stall_then_lose_claim)
        summary = make_dispatcher(session_factory, transport, monday_8am).run()

        assert (summary.sent, summary.skipped) == (0, 1)
        assert summary.details[0].reason == "claim_superseded"
        [row] = ledger_rows(session_factory)
        assert (row.status, row.attempts) == ("pending", 2)

    def test_deadline_skips_unstarted_work(self, seed, session_factory, monday_8am):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        for hour_offset in range(3):
            seed.reminder(patient_id, type=["medication", "water", "meal"][hour_offset])
        # Each push takes ten seconds of the fifteen-second budget
        transport = FakeTransport(on_push=lambda _: monday_8am.advance(seconds=10))

        summary = make_dispatcher(session_factory, transport, monday_8am, concurrency=1, budget_seconds=15).run()

        assert summary.sent == 2
        assert summary.skipped == 1
        assert [d.reason for d in summary.details if d.status == "skipped"] == ["deadline_exceeded"]
        assert len(ledger_rows(session_factory)) == 2


class TestConcurrentInvocations:
    def test_overlapping_runs_deliver_once(self, seed, session_factory, transport):
        patient_id = seed.patient()
        seed.group(patient_id, "C-family")
        seed.reminder(patient_id)
        barrier = threading.Barrier(4)
        summaries = []

        def tick():
            clock = FixedClock(bangkok(*MONDAY, 8, 0), tz_name="Asia/Bangkok")
            dispatcher = make_dispatcher(session_factory, transport, clock)
            barrier.wait()
            summaries.append(dispatcher.run())

        threads = [threading.Thread(target=tick) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(transport.pushes) == 1
        assert sum(s.sent for s in summaries) == 1
        assert sum(s.skipped for s in summaries) == 3
        assert [r.status for r in ledger_rows(session_factory)] == ["sent"]
