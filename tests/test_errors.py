"""
Tests for error handling: structured error responses, HTTP status codes,
and the custom exception classes.
"""
import pytest

from coachcards.core.errors import (
    BatchTooLargeError,
    BehaviorNotFoundError,
    ChildNotFoundError,
    CoachCardsError,
    EmptyBatchError,
    RecordAlreadyExistsError,
    RecordIngestionError,
)


# ---------------------------------------------------------------------------
# Unit tests on exception classes
# ---------------------------------------------------------------------------

class TestExceptionClasses:
    def test_child_not_found_error(self):
        err = ChildNotFoundError("c42")
        assert err.http_status == 404
        assert err.code == "CHILD_NOT_FOUND"
        assert "c42" in err.message
        assert err.to_dict()["details"] == {"child_id": "c42"}

    def test_behavior_not_found_error(self):
        err = BehaviorNotFoundError("b7")
        assert err.http_status == 404
        assert err.code == "BEHAVIOR_NOT_FOUND"
        assert err.details["behavior_id"] == "b7"

    def test_record_already_exists_error(self):
        err = RecordAlreadyExistsError("reward", "g1")
        assert err.http_status == 409
        assert err.code == "RECORD_EXISTS"
        assert err.message == "A reward with id g1 already exists."

    def test_batch_too_large_error(self):
        err = BatchTooLargeError(max_items=500, received=650)
        assert err.http_status == 422
        assert err.code == "BATCH_TOO_LARGE"
        assert "500" in err.message
        assert "650" in err.message
        d = err.to_dict()
        assert d["details"]["max_items"] == 500
        assert d["details"]["received"] == 650

    def test_empty_batch_error(self):
        err = EmptyBatchError()
        assert err.http_status == 422
        assert err.code == "EMPTY_BATCH"

    def test_record_ingestion_error_with_id(self):
        err = RecordIngestionError(message="oops", record_id="m1")
        assert err.http_status == 500
        assert err.code == "INGESTION_ERROR"
        assert err.details["id"] == "m1"

    def test_to_dict_without_details(self):
        d = EmptyBatchError().to_dict()
        assert set(d) == {"code", "message"}

    def test_all_errors_share_the_base(self):
        for err in (ChildNotFoundError("x"), EmptyBatchError(), RecordIngestionError("x")):
            assert isinstance(err, CoachCardsError)


# ---------------------------------------------------------------------------
# HTTP error envelopes
# ---------------------------------------------------------------------------

class TestErrorResponses:
    def test_validation_error_shape(self, client):
        r = client.post("/records/rewards", json={"child_id": "x", "name": "Bike", "target_points": 0})
        assert r.status_code == 422
        body = r.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "Request validation failed."
        fields = [e["field"] for e in body["details"]["errors"]]
        assert "target_points" in fields

    def test_missing_body_field(self, client):
        r = client.post("/records/moments/batch", json={"items": [{"child_id": "x"}]})
        assert r.status_code == 422
        fields = [e["field"] for e in r.json()["details"]["errors"]]
        assert "items.0.behavior_type_id" in fields
        assert "items.0.timestamp" in fields

    def test_invalid_now_query(self, client):
        r = client.get("/insights/c1/cards", params={"now": "not-a-date"})
        assert r.status_code == 422
        assert r.json()["code"] == "VALIDATION_ERROR"

    def test_not_found_envelope(self, client):
        r = client.post("/insights/err-nobody/cards/displayed", json={"cards": [{"template_id": "goal_stalled"}]})
        assert r.status_code == 404
        body = r.json()
        assert set(body) == {"code", "message", "details"}
        assert body["code"] == "CHILD_NOT_FOUND"


@pytest.mark.parametrize("path", ["/insights/err-nobody/cards", "/insights/err-nobody/debug"])
def test_engine_never_errors_for_unknown_child(client, path):
    assert client.get(path).status_code == 200
