"""Tests for the spreadsheet mirror outbox."""

import threading

import pytest

from slotbook.sync.outbox import SHEET_COLUMNS, SyncOutbox, to_row

from tests.conftest import PHONE, SATURDAY, make_booked, register_through_step2, slot_time


class FakeSink:
    def __init__(self) -> None:
        self.rows: dict[int, list[str]] = {}
        self.appends = 0
        self.updates = 0
        self.fail = False

    def append_row(self, values):
        if self.fail:
            raise IOError("sheet quota exceeded")
        self.appends += 1
        row_id = len(self.rows) + 2  # row 1 is the header
        self.rows[row_id] = list(values)
        return row_id

    def update_row(self, row_id, values):
        if self.fail:
            raise IOError("sheet quota exceeded")
        self.updates += 1
        self.rows[row_id] = list(values)


@pytest.fixture
def outbox(store, clock):
    return SyncOutbox(store, clock)


@pytest.fixture
def sink():
    return FakeSink()


class TestToRow:
    def test_column_order(self, store):
        doc = make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        row = to_row(doc)
        assert len(row) == len(SHEET_COLUMNS)
        assert row[0] == PHONE
        assert row[SHEET_COLUMNS.index("selected_slot")] == "SATURDAY_7PM"
        assert row[SHEET_COLUMNS.index("application_status")] == "registered"
        assert row[SHEET_COLUMNS.index("interest_level")] == ""


class TestFlush:
    def test_first_push_appends_and_stores_row_id(self, outbox, sink, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        outbox.enqueue(PHONE, "step3")
        assert outbox.flush(sink) == {"flushed": 1, "failed": 0, "dropped": 0}
        assert store.get(PHONE).external_row_id == 2
        assert outbox.pending() == []

    def test_later_push_updates_same_row(self, outbox, sink, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        outbox.enqueue(PHONE, "step3")
        outbox.flush(sink)
        store.update(PHONE, {"interest_level": 5})
        outbox.enqueue(PHONE, "step4")
        outbox.flush(sink)
        assert sink.appends == 1
        assert sink.updates == 1
        assert sink.rows[2][SHEET_COLUMNS.index("interest_level")] == "5"

    def test_enqueue_dedupes_by_phone(self, outbox, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        outbox.enqueue(PHONE, "step1")
        outbox.enqueue(PHONE, "step2")
        [message] = outbox.pending()
        assert message.reason == "step2"

    def test_failure_keeps_message(self, outbox, sink, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        outbox.enqueue(PHONE, "step3")
        sink.fail = True
        assert outbox.flush(sink)["failed"] == 1
        [message] = outbox.pending()
        assert message.attempts == 1
        assert message.last_error == "sheet quota exceeded"

        sink.fail = False
        assert outbox.flush(sink)["flushed"] == 1
        assert outbox.pending() == []

    def test_missing_submission_dropped(self, outbox, sink):
        outbox.enqueue(PHONE, "step1")
        assert outbox.flush(sink) == {"flushed": 0, "failed": 0, "dropped": 1}
        assert outbox.pending() == []

    def test_registration_steps_enqueue(self, app, gateway, sink):
        register_through_step2(app, gateway)
        [message] = app.outbox.pending()
        assert message.reason == "step2"
        result = app.flush_sync(sink)
        assert result.data == {"flushed": 1, "failed": 0, "dropped": 0}
        assert list(sink.rows.values())[0][1] == "Asha"

    def test_sink_failure_never_blocks_registration(self, app, gateway, sink):
        sink.fail = True
        register_through_step2(app, gateway)
        assert app.flush_sync(sink).data["failed"] == 1
        assert app.registration_status(PHONE).data["current_step"] == 2


class EditingSink(FakeSink):
    """Sink whose first append lands while the registrant saves another step."""

    def __init__(self, store, outbox) -> None:
        super().__init__()
        self.store = store
        self.outbox = outbox

    def append_row(self, values):
        row_id = super().append_row(values)
        if self.appends == 1:
            self.store.update(PHONE, {"full_name": "Asha Rao"})
            self.outbox.enqueue(PHONE, "step3")
        return row_id


class BlockingSink(FakeSink):
    """Sink that holds its first append until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def append_row(self, values):
        self.entered.set()
        self.release.wait(5)
        return super().append_row(values)


class TestConcurrentChanges:
    def test_change_during_push_stays_queued(self, outbox, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        sink = EditingSink(store, outbox)
        outbox.enqueue(PHONE, "step2")

        assert outbox.flush(sink)["flushed"] == 1
        [message] = outbox.pending()
        assert message.reason == "step3"

        outbox.flush(sink)
        assert outbox.pending() == []
        assert sink.appends == 1
        assert sink.rows[2][SHEET_COLUMNS.index("full_name")] == "Asha Rao"

    def test_enqueue_bumps_version(self, outbox, store):
        outbox.enqueue(PHONE, "step1")
        outbox.enqueue(PHONE, "step2")
        [message] = outbox.pending()
        assert message.version == 2

    def test_overlapping_flush_is_skipped(self, outbox, store):
        make_booked(store, PHONE, "SATURDAY_7PM", slot_time(SATURDAY))
        outbox.enqueue(PHONE, "step3")
        sink = BlockingSink()
        first = threading.Thread(target=outbox.flush, args=(sink,))
        first.start()
        assert sink.entered.wait(5)

        assert outbox.flush(sink) == {"flushed": 0, "failed": 0, "dropped": 0}
        sink.release.set()
        first.join()

        assert sink.appends == 1
        assert store.get(PHONE).external_row_id == 2
        assert outbox.pending() == []
