"""
Tests for the classification, notification and error helpers.
"""
import json
import logging
from datetime import date
from decimal import Decimal

import httpx
import pytest

from ledgermatch.models import EntryKind, EntryStatus, LedgerEntry, ResolutionResult, Transaction
from ledgermatch.services.classification import HttpClassifier, KeywordClassifier
from ledgermatch.services.errors import (
    ClassificationError,
    ConfigError,
    ErrorCode,
    ReconciliationError,
    to_http_exception,
)
from ledgermatch.services.logging import (
    ConsoleFormatter,
    JSONFormatter,
    log_error,
    log_reconciliation_run,
    log_request,
)
from ledgermatch.services.notifications import NotificationService
from ledgermatch.services.reconciliation_inputs import load_entries


def _draft(description, kind=EntryKind.EXPENSE):
    return LedgerEntry(
        id="auto-t1", date=date(2024, 3, 1), amount=Decimal("120.00"), kind=kind,
        description=description, confidence=0.7, status=EntryStatus.PENDING,
    )


class TestKeywordClassifier:
    def setup_method(self):
        self.classifier = KeywordClassifier()

    @pytest.mark.parametrize("kind,description,category", [
        (EntryKind.EXPENSE, "Electricity bill March", "Utilities"),
        (EntryKind.EXPENSE, "Monthly payroll run", "Payroll"),
        (EntryKind.EXPENSE, "Office lease Q1", "Rent"),
        (EntryKind.REVENUE, "Invoice 4471 paid by customer", "Sales"),
        (EntryKind.REVENUE, "Dividend ACME", "Investment Income"),
        (EntryKind.REVENUE, "Misc", "Other Revenue"),
        (EntryKind.TRANSFER, "Move to savings", "Transfers"),
    ])
    def test_categories(self, kind, description, category):
        """Keywords pick the category for each kind."""
        assert KeywordClassifier.categorize(kind, description)[0] == category

    def test_confident_classification_is_marked_classified(self):
        """A known keyword marks the entry classified."""
        refined, confidence = self.classifier.classify(_draft("Electricity bill March"))
        assert confidence == pytest.approx(0.85)
        assert refined.status == EntryStatus.CLASSIFIED
        assert refined.id == "auto-t1"

    def test_weak_classification_stays_pending(self):
        """Fallback categories stay pending."""
        refined, confidence = self.classifier.classify(_draft("Something odd"))
        assert refined.category == "Other Expenses"
        assert confidence == pytest.approx(0.6)
        assert refined.status == EntryStatus.PENDING


class TestHttpClassifier:
    def setup_method(self):
        self.classifier = HttpClassifier("http://classifier.test/classify", timeout=1.0)

    def test_parse_valid_response(self):
        """A well-formed response refines the draft entry."""
        refined, confidence = HttpClassifier._parse(
            _draft("Electricity"), {"entry": {"category": "Utilities", "status": "classified"}, "confidence": 0.93},
        )
        assert refined.category == "Utilities"
        assert refined.status == EntryStatus.CLASSIFIED
        assert confidence == pytest.approx(0.93)

    @pytest.mark.parametrize("body", [
        None,
        {"entry": {}},
        {"entry": {}, "confidence": "high"},
        {"entry": {}, "confidence": 1.7},
        {"entry": {"amount": "not-a-number"}, "confidence": 0.9},
    ])
    def test_parse_rejects_malformed_response(self, body):
        """Missing or invalid fields raise ClassificationError."""
        with pytest.raises(ClassificationError):
            HttpClassifier._parse(_draft("Electricity"), body)

    def test_transport_errors_become_classification_errors(self, monkeypatch):
        """Connection errors are wrapped with the entry id."""
        def fail(self, url, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx.Client, "post", fail)

        with pytest.raises(ClassificationError) as exc_info:
            self.classifier.classify(_draft("Electricity"))
        assert exc_info.value.context == {"entry_id": "auto-t1"}

    def test_timeouts_become_classification_errors(self, monkeypatch):
        """Timeouts are wrapped too."""
        def slow(self, url, **kwargs):
            raise httpx.ReadTimeout("read timed out")

        monkeypatch.setattr(httpx.Client, "post", slow)

        with pytest.raises(ClassificationError, match="Ledger entry classification failed"):
            self.classifier.classify(_draft("Electricity"))


class TestNotificationService:
    def test_summary_without_webhook(self):
        """Without a webhook the summary is still built."""
        service = NotificationService(webhook_url="")
        result = ResolutionResult(
            ignored_transactions=[
                Transaction(id="t1", date=date(2024, 3, 1), amount=Decimal("10"), direction="debit"),
            ],
            divergences_corrected=2,
        )

        summary = service.send_run_summary("run_1", result)

        assert summary["ignored"] == 1
        assert summary["corrected"] == 2

    def test_slack_payload(self):
        """Slack blocks carry the counts."""
        payload = NotificationService(webhook_url="").build_slack_run_summary({
            "run_id": "run_1", "matched": 3, "ignored": 1, "corrected": 0, "synthesized": 0,
            "duplicates": 0, "unmatched_transactions": 2, "unmatched_entries": 1,
        })
        assert payload["text"] == "Bank reconciliation complete (run_1)"
        assert "*Matched*\n3" in [f["text"] for f in payload["blocks"][1]["fields"]]

    def test_webhook_failure_is_not_raised(self, monkeypatch):
        """A failing webhook does not fail the run."""
        def fail(self, url, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx.Client, "post", fail)
        service = NotificationService(webhook_url="http://hooks.test/abc")

        summary = service.send_run_summary("run_1", ResolutionResult())

        assert summary["matched"] == 0


class TestErrors:
    @pytest.mark.parametrize("error,status", [
        (ConfigError("strategy", "unknown"), 400),
        (ClassificationError("timed out"), 502),
        (ReconciliationError("matching", "boom"), 500),
    ])
    def test_http_status_mapping(self, error, status):
        """Each error maps to its HTTP status."""
        assert to_http_exception(error).status_code == status

    def test_error_payload(self):
        """Errors serialize with code, message, detail and context."""
        error = ConfigError("reconciliation.value_tolerance_pct", "must be >= 0")
        assert error.to_dict() == {
            "error": ErrorCode.INVALID_CONFIG.value,
            "message": "Invalid configuration for 'reconciliation.value_tolerance_pct'",
            "detail": "must be >= 0",
            "context": {"field": "reconciliation.value_tolerance_pct"},
        }


class TestInputLoading:
    def test_extra_fields_are_ignored(self):
        """Unknown columns are ignored."""
        records, errors = load_entries([{
            "id": "e1", "date": "2024-03-01", "amount": "10.00", "kind": "expense", "ledger_code": "6100",
        }])
        assert errors == []
        assert records[0].id == "e1"

    def test_non_finite_amount_is_reported(self):
        """NaN amounts are reported with their position."""
        records, errors = load_entries([{"id": "e1", "date": "2024-03-01", "amount": "NaN", "kind": "expense"}])
        assert records == []
        assert errors[0].record_type == "ledger_entry"
        assert errors[0].position == 0
        assert "amount" in errors[0].reason

    def test_non_mapping_row_is_reported(self):
        """Rows that are not mappings are reported without an id."""
        records, errors = load_entries(["not a record"])
        assert records == []
        assert errors[0].record_id is None


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestLogging:
    def setup_method(self):
        self.handler = ListHandler()
        logging.getLogger("ledgermatch").addHandler(self.handler)

    def teardown_method(self):
        logging.getLogger("ledgermatch").removeHandler(self.handler)

    def test_run_event_carries_summary_fields(self):
        """A run with leftovers logs one WARNING record with the summary counts."""
        log_reconciliation_run(
            "run_1", {"matched": 3, "unmatched_transactions": 2}, transactions=5, entries=4, duration_ms=1.5,
        )

        record = self.handler.records[-1]
        assert record.levelno == logging.WARNING
        assert record.event == "reconciliation_run"
        assert record.event_fields["run_id"] == "run_1"
        assert record.event_fields["matched"] == 3
        assert "2 left for review" in record.getMessage()

    def test_clean_run_logs_at_info(self):
        """A run with nothing left for review stays at INFO."""
        log_reconciliation_run("run_2", {"matched": 1, "unmatched_transactions": 0}, transactions=1, entries=1)
        assert self.handler.records[-1].levelno == logging.INFO

    def test_json_formatter_flattens_fields(self):
        """JSON lines put the event name and its fields at the top level."""
        log_error("catalog_persistence", "database is locked", {"run_id": "run_3"})

        payload = json.loads(JSONFormatter().format(self.handler.records[-1]))

        assert payload["event"] == "error"
        assert payload["level"] == "ERROR"
        assert payload["error_type"] == "catalog_persistence"
        assert payload["run_id"] == "run_3"
        assert payload["message"] == "database is locked"

    def test_console_formatter_appends_fields(self):
        """The plain format ends with key=value pairs."""
        log_request("GET", "/health", 200, 1.2)

        line = ConsoleFormatter().format(self.handler.records[-1])

        assert "GET /health 200" in line
        assert line.endswith("method=GET path=/health status_code=200 duration_ms=1.2")
