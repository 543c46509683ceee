from datetime import datetime, timezone

import psycopg
import pytest

from app.services.errors import NotFoundError, RequestValidationError
from app.services.validation_queue import bulk_validate_queue_items, list_queue_items, validate_queue_item

from conftest import RecordingAudit, _TransactionalFake

MISMATCH_COMMENT = (
    "POTENTIAL DUPLICATE: same name, birth date and gender as YTH001 but different contact info. "
    "Existing: +639180000000 / old@example.com. New: +639171234567 / juan@example.com."
)


class FakeQueueRepo(_TransactionalFake):
    _state_fields = ("queue", "responses", "youth")

    def __init__(self, queue, fail_on=None):
        super().__init__()
        self.queue = {item["queue_id"]: dict(item) for item in queue}
        self.responses = {item["response_id"]: {"validation_status": "pending"} for item in queue}
        self.youth = {item["youth_id"]: {"validation_status": None} for item in queue}
        self.fail_on = fail_on
        self._snapshot()

    def fetch_validation_queue_items(self, *, voter_match_type, barangay_id, limit, offset):
        rows = [
            item
            for item in self.queue.values()
            if (voter_match_type is None or item["voter_match_type"] == voter_match_type)
            and (barangay_id is None or item.get("barangay_id") == barangay_id)
        ]
        return [dict(row) for row in rows[offset : offset + limit]]

    def get_validation_queue_item(self, queue_id):
        if queue_id == self.fail_on:
            raise psycopg.OperationalError("lock timeout")
        item = self.queue.get(queue_id)
        return dict(item) if item else None

    def update_response_validation(self, response_id, *, status, validated_by, comments):
        response = self.responses.get(response_id)
        if response is None:
            return None
        response.update(validation_status=status, validated_by=validated_by, validation_comments=comments)
        return {"response_id": response_id, "validation_date": datetime(2026, 3, 2, tzinfo=timezone.utc)}

    def mark_youth_validated(self, youth_id, *, tier, validated_by):
        self.youth[youth_id].update(validation_status="validated", validation_tier=tier, validated_by=validated_by)

    def delete_validation_queue_item(self, queue_id):
        self.queue.pop(queue_id, None)


def _item(queue_id, response_id, youth_id, match_type="flexible", comments=None):
    return {
        "queue_id": queue_id,
        "response_id": response_id,
        "youth_id": youth_id,
        "voter_match_type": match_type,
        "validation_score": 95,
        "validation_comments": comments,
        "barangay_id": "SJB001",
    }


def test_list_queue_items_parses_contact_mismatch():
    repo = FakeQueueRepo(
        [
            _item("VQ001", "RES001", "YTH001", "contact_mismatch", MISMATCH_COMMENT),
            _item("VQ002", "RES002", "YTH002"),
        ]
    )

    items = list_queue_items(repo)

    assert items[0]["contact_mismatch"]["existing"]["email"] == "old@example.com"
    assert items[1]["contact_mismatch"] is None
    assert [item["queue_id"] for item in list_queue_items(repo, voter_match_type="flexible")] == ["VQ002"]


def test_approve_validates_response_and_youth():
    repo = FakeQueueRepo([_item("VQ001", "RES001", "YTH001")])
    audit = RecordingAudit()

    result = validate_queue_item(repo, "VQ001", "approve", "LYDO001", "Checked voter list", audit=audit)

    assert result.status == "validated"
    assert result.validated_at == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert repo.responses["RES001"]["validation_status"] == "validated"
    assert repo.youth["YTH001"] == {"validation_status": "validated", "validation_tier": "manual", "validated_by": "LYDO001"}
    assert repo.queue == {}
    assert audit.actions() == ["VALIDATE_SURVEY_RESPONSE"]
    assert audit.entries[0]["details"]["comments"] == "Checked voter list"


def test_reject_leaves_youth_untouched():
    repo = FakeQueueRepo([_item("VQ001", "RES001", "YTH001")])

    result = validate_queue_item(repo, "VQ001", "reject", "LYDO001")

    assert result.status == "rejected"
    assert repo.responses["RES001"]["validation_status"] == "rejected"
    assert repo.youth["YTH001"]["validation_status"] is None
    assert repo.queue == {}


def test_unknown_action_and_missing_item_raise():
    repo = FakeQueueRepo([_item("VQ001", "RES001", "YTH001")])

    with pytest.raises(RequestValidationError):
        validate_queue_item(repo, "VQ001", "escalate", "LYDO001")
    with pytest.raises(NotFoundError):
        validate_queue_item(repo, "VQ404", "approve", "LYDO001")

    assert repo.rollbacks == 2
    assert "VQ001" in repo.queue


def test_bulk_validation_reports_each_item():
    repo = FakeQueueRepo(
        [
            _item("VQ001", "RES001", "YTH001"),
            _item("VQ002", "RES002", "YTH002"),
            _item("VQ003", "RES003", "YTH003"),
        ],
        fail_on="VQ003",
    )

    summary = bulk_validate_queue_items(repo, ["VQ001", "VQ404", "VQ001", "VQ002", "VQ003"], "approve", "LYDO001")

    assert summary["processed_count"] == 2
    assert summary["failed_count"] == 2
    assert [item["queue_id"] for item in summary["results"]] == ["VQ001", "VQ404", "VQ002", "VQ003"]
    assert summary["results"][1]["error"] == "Validation queue item VQ404 not found"
    assert summary["results"][3]["success"] is False
    assert repo.youth["YTH002"]["validation_status"] == "validated"
    assert "VQ003" in repo.queue
