import logging

import pytest

from billbot.errors import NotificationError, SearchError, StorageError
from billbot.models import BillType
from billbot.notify.formatter import GENERIC_ERROR_MESSAGE, REAUTHORIZE_MESSAGE

from conftest import FakeNotifier, bill_json, pdf_routed_openai, stub_openai

FOUR_BILLS = {
    b"pdf-elec": bill_json("electricity", 128.45, "2024-01-15T00:00:00.000Z", 0.95),
    b"pdf-gas": bill_json("hot_water", 32.5, "2024-01-12T00:00:00.000Z", 0.91),
    b"pdf-water": bill_json("water", 45.2, "2024-01-10T00:00:00.000Z", 0.93),
    b"pdf-nbn": bill_json("internet", 79.99, "2024-01-20T00:00:00.000Z", 0.97),
}


@pytest.fixture
def four_bill_mailbox(mail):
    mail.add("m-elec", "Your electricity bill is ready", b"pdf-elec")
    mail.add("m-gas", "Your gas bill is ready", b"pdf-gas")
    mail.add("m-water", "Your water bill is ready", b"pdf-water")
    mail.add("m-nbn", "Your NBN bill is ready", b"pdf-nbn")
    return mail


class TestSuccessfulScan:
    def test_four_bills_are_stored_and_summarised(
        self, make_pipeline, four_bill_mailbox, connected_user, notifier, db
    ):
        pipeline = make_pipeline(pdf_routed_openai(FOUR_BILLS))

        result = pipeline.run(connected_user, "chan-1")

        assert result.success
        assert {b.type for b in result.bills} == set(BillType)
        assert db.count_bills(connected_user) == 4

        channel, text = notifier.delivered[0]
        assert channel == "chan-1"
        assert "⚡ **Electricity:** $128.45 (15 Jan)" in text
        assert "🔥 **Hot Water:** $32.50 (12 Jan)" in text
        assert "💧 **Water:** $45.20 (10 Jan)" in text
        assert "🌐 **Internet:** $79.99 (20 Jan)" in text
        assert "Total: $286.14" in text

    def test_rescan_does_not_duplicate(self, make_pipeline, four_bill_mailbox, connected_user, db):
        pipeline = make_pipeline(pdf_routed_openai(FOUR_BILLS))

        pipeline.execute(connected_user)
        pipeline.execute(connected_user)

        assert db.count_bills(connected_user) == 4

    def test_query_targets_bill_sender(self, make_pipeline, four_bill_mailbox, connected_user):
        make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user, days_back=14)

        query = four_bill_mailbox.queries[0]
        assert query.startswith("from:hello@origin.com.au after:")
        assert query.endswith("has:attachment filename:pdf")

    def test_metrics_are_recorded(self, make_pipeline, four_bill_mailbox, connected_user):
        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user)

        m = result.metrics
        assert m.candidates == 4
        assert m.filtered == 4
        assert m.pdfs_fetched == 4
        assert m.bills_extracted == 4
        assert m.bills_stored == 4
        assert set(m.stage_times_sec) == {"authorize", "search", "filter", "fetch", "extract", "persist"}

    def test_subject_hint_travels_with_its_pdf(self, make_pipeline, mail, connected_user):
        mail.add("m-water", "Your water bill is ready", b"pdf-water")
        client = pdf_routed_openai(FOUR_BILLS)

        make_pipeline(client).execute(connected_user)

        prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"][0]["text"]
        assert "might be a water bill" in prompt

    def test_unmatched_subject_still_extracted(self, make_pipeline, mail, connected_user):
        mail.add("m-1", "Your account statement", b"pdf-elec")

        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user)

        assert [b.type for b in result.bills] == [BillType.ELECTRICITY]

    def test_expiring_token_is_refreshed_before_search(
        self, make_pipeline, mail, token_store, oauth
    ):
        token_store.store("u1", "stale", "refresh-1", expires_in=60)

        make_pipeline(stub_openai()).execute("u1")

        assert oauth.refresh_calls == ["refresh-1"]
        assert mail.tokens_seen == ["fresh-access"]


class TestEmptyAndPartialScans:
    def test_no_search_results(self, make_pipeline, mail, connected_user, notifier, db):
        client = stub_openai()

        result = make_pipeline(client).run(connected_user, "chan-1")

        assert result.success
        assert result.bills == []
        assert notifier.delivered == [("chan-1", "📭 No bills found in the last 30 days.")]
        assert db.bills == {}
        client.chat.completions.create.assert_not_called()

    def test_fetch_failure_drops_only_that_message(
        self, make_pipeline, four_bill_mailbox, connected_user, db
    ):
        four_bill_mailbox.failing.add("m-gas")

        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user)

        assert result.success
        assert len(result.bills) == 3
        assert result.metrics.fetch_failures == 1
        assert db.count_bills(connected_user) == 3

    def test_message_without_pdf_is_skipped(self, make_pipeline, mail, connected_user):
        mail.add("m-1", "Your electricity bill", b"pdf-elec")
        mail.add("m-2", "Your electricity bill", None)

        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user)

        assert result.metrics.pdfs_fetched == 1
        assert len(result.bills) == 1

    def test_failed_extraction_drops_only_that_bill(
        self, make_pipeline, four_bill_mailbox, connected_user
    ):
        answers = dict(FOUR_BILLS)
        answers[b"pdf-nbn"] = RuntimeError("model overloaded")

        result = make_pipeline(pdf_routed_openai(answers)).execute(connected_user)

        assert result.success
        assert BillType.INTERNET not in {b.type for b in result.bills}
        assert result.metrics.extraction_failures == 1

    def test_all_pdfs_missing_is_an_empty_success(self, make_pipeline, mail, connected_user, db):
        mail.add("m-1", "Your electricity bill", None)

        result = make_pipeline(stub_openai()).execute(connected_user)

        assert result.success
        assert result.bills == []
        assert db.bills == {}

    def test_at_most_ten_messages_fetched(self, make_pipeline, mail, connected_user):
        ids = [f"m-{i:02d}" for i in range(12)]
        for message_id in ids:
            mail.add(message_id, "Your electricity bill", b"pdf-elec")

        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).execute(connected_user)

        assert sorted(mail.attachment_requests) == ids[:10]
        assert result.metrics.pdfs_fetched == 10


class TestFailedScans:
    def test_missing_token_asks_to_reconnect(self, make_pipeline, mail, notifier):
        result = make_pipeline(stub_openai()).run("stranger", "chan-1")

        assert not result.success
        assert mail.queries == []
        assert notifier.delivered == [("chan-1", REAUTHORIZE_MESSAGE)]

    def test_search_failure(self, make_pipeline, mail, connected_user, notifier, db):
        mail.search_error = SearchError("Gmail API request failed: 500 Internal Server Error", 500)

        result = make_pipeline(stub_openai()).run(connected_user, "chan-1")

        assert not result.success
        assert isinstance(result.error, SearchError)
        assert notifier.delivered == [("chan-1", GENERIC_ERROR_MESSAGE)]
        assert db.bills == {}

    def test_storage_failure_is_reported(
        self, make_pipeline, four_bill_mailbox, connected_user, notifier, db, monkeypatch
    ):
        def fail(records, cap=None):
            raise StorageError("database is unavailable")

        monkeypatch.setattr(db, "upsert_bills", fail)

        result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).run(connected_user, "chan-1")

        assert not result.success
        assert notifier.delivered == [("chan-1", "⚠️ Storage error: database is unavailable")]

    def test_summary_formatting_failure_still_notifies(
        self, make_pipeline, four_bill_mailbox, connected_user, notifier, monkeypatch, caplog
    ):
        def broken(bills, days_back=30):
            raise RuntimeError("bad template")

        monkeypatch.setattr("billbot.pipeline.format_summary", broken)

        with caplog.at_level(logging.ERROR):
            result = make_pipeline(pdf_routed_openai(FOUR_BILLS)).run(connected_user, "chan-1")

        assert result.success
        assert notifier.delivered == [("chan-1", GENERIC_ERROR_MESSAGE)]
        assert "bad template" in caplog.text

    def test_unexpected_error_becomes_failed_result(self, make_pipeline, mail, connected_user):
        mail.search_error = RuntimeError("kaboom")

        result = make_pipeline(stub_openai()).execute(connected_user)

        assert not result.success
        assert result.error_message == "kaboom"

    def test_delivery_failure_is_logged(self, make_pipeline, mail, connected_user, caplog):
        notifier = FakeNotifier(error=NotificationError("Discord is down"))
        pipeline = make_pipeline(stub_openai(), notifier=notifier)

        with caplog.at_level(logging.ERROR):
            result = pipeline.run(connected_user, "chan-1")

        assert result.success
        assert "Discord is down" in caplog.text


def test_start_runs_in_background(make_pipeline, four_bill_mailbox, connected_user, notifier):
    pipeline = make_pipeline(pdf_routed_openai(FOUR_BILLS))

    try:
        future = pipeline.start(connected_user, "chan-1")
        result = future.result(timeout=10)
    finally:
        pipeline.shutdown()

    assert result.success
    assert len(notifier.delivered) == 1
    assert "Total: $286.14" in notifier.delivered[0][1]


def test_mixed_issue_date_formats_are_summarised(make_pipeline, mail, connected_user, notifier):
    mail.add("m-jan15", "Your electricity bill is ready", b"pdf-jan15")
    mail.add("m-jan20", "Your electricity bill is ready", b"pdf-jan20")
    client = pdf_routed_openai({
        b"pdf-jan15": bill_json("electricity", 120.0, "2024-01-15T00:00:00.000Z"),
        b"pdf-jan20": bill_json("electricity", 131.1, "2024-01-20"),
    })
    pipeline = make_pipeline(client)

    try:
        result = pipeline.start(connected_user, "chan-1").result(timeout=10)
    finally:
        pipeline.shutdown()

    assert result.success
    assert len(notifier.delivered) == 1
    assert "$131.10 (20 Jan)" in notifier.delivered[0][1]


def test_background_crash_is_logged(make_pipeline, mail, connected_user, caplog):
    notifier = FakeNotifier(error=RuntimeError("socket closed"))
    pipeline = make_pipeline(stub_openai(), notifier=notifier)

    with caplog.at_level(logging.ERROR):
        future = pipeline.start(connected_user, "chan-1")
        with pytest.raises(RuntimeError):
            future.result(timeout=10)
        # Done callbacks run on the worker thread
        pipeline.shutdown()

    assert f"Background bill scan for user {connected_user} crashed: socket closed" in caplog.text
