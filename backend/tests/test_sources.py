"""
Tests for core/sources.py and core/schemas.py — remote source clients against a mock transport.
"""

import asyncio
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import ErrorKind, SourceError
from core.schemas import LeaderboardResponse, RankedEntity
from core.sources import LeaderboardSource, RecordSource, classify_error


GOOD_PAGE = {
    "data": [
        {
            "_id": 101,
            "name": "Ada",
            "rank": 1,
            "score": 93.2,
            "grade": "A",
            "subjects": [{"name": "Math", "score": 97, "testCount": 4}],
            "totalTests": 12,
            "percentile": 99,
            "city": "Austin",
        },
        {"id": "s2", "name": "Ben", "rank": 2},
    ],
    "pagination": {"total": 42, "page": 1, "totalPages": 5, "hasMore": True},
    "subjects": ["Math", "English"],
}


def mock_transport(status=200, json=None, content=None, raises=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if raises is not None:
            raise raises(request)
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=json)
    return httpx.MockTransport(handler)


def leaderboard(**kwargs) -> LeaderboardSource:
    return LeaderboardSource(base_url="http://ranking.test/api", token=kwargs.pop("token", ""), transport=mock_transport(**kwargs))


def records(**kwargs) -> RecordSource:
    return RecordSource(base_url="http://records.test/api", token="", transport=mock_transport(**kwargs))


class TestLeaderboardSource:

    def test_parses_page(self):
        response = asyncio.run(leaderboard(json=GOOD_PAGE).fetch({"page": 1, "limit": 10}))
        assert isinstance(response, LeaderboardResponse)
        assert response.pagination.total_pages == 5
        assert response.pagination.has_more is True
        assert response.subjects == ["Math", "English"]
        ada = response.data[0]
        assert ada.id == "101"
        assert ada.subjects[0].test_count == 4
        assert ada.total_tests == 12

    def test_missing_entity_fields_default(self):
        response = asyncio.run(leaderboard(json=GOOD_PAGE).fetch({}))
        ben = response.data[1]
        assert ben.score == 0.0
        assert ben.grade == "F"
        assert ben.subjects == []
        assert ben.total_tests == 0
        assert ben.out_of_range is False

    def test_sends_filters_and_token(self):
        seen = []
        source = leaderboard(json=GOOD_PAGE, seen=seen, token="secret")
        asyncio.run(source.fetch({"page": 2, "limit": 25, "subject": None, "city": "Austin"}))
        request = seen[0]
        assert request.url.path == "/api/leaderboard"
        assert request.url.params["page"] == "2"
        assert request.url.params["limit"] == "25"
        assert request.url.params["city"] == "Austin"
        assert "subject" not in request.url.params
        assert request.headers["Authorization"] == "Bearer secret"

    def test_default_limit(self):
        seen = []
        asyncio.run(leaderboard(json=GOOD_PAGE, seen=seen).fetch({"page": 1}))
        assert seen[0].url.params["limit"] == "10"
        assert "Authorization" not in seen[0].headers

    @pytest.mark.parametrize("status,kind", [
        (401, ErrorKind.UNAUTHORIZED),
        (404, ErrorKind.NO_RECORDS),
        (400, ErrorKind.VALIDATION_ERROR),
        (422, ErrorKind.VALIDATION_ERROR),
        (500, ErrorKind.UNKNOWN),
        (503, ErrorKind.UNKNOWN),
    ])
    def test_http_status_kinds(self, status, kind):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(status=status, json={"message": "server says no"}).fetch({}))
        assert exc_info.value.kind == kind
        assert exc_info.value.status == status

    def test_server_message_is_kept(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(status=500, json={"message": "database offline"}).fetch({}))
        assert str(exc_info.value) == "database offline"

    def test_unauthorized_user_message(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(status=401, json={}).fetch({}))
        assert exc_info.value.user_message == "Please log in to view the leaderboard."

    def test_timeout(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(raises=lambda req: httpx.ReadTimeout("slow", request=req)).fetch({}))
        assert exc_info.value.kind == ErrorKind.TIMEOUT

    def test_network_error(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(raises=lambda req: httpx.ConnectError("refused", request=req)).fetch({}))
        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR

    @pytest.mark.parametrize("body", [
        {"pagination": {"total": 1}},
        {"data": [], "pagination": {"total": "lots"}},
        {"data": [{"_id": "x"}], "pagination": {"total": 1}},
        ["not", "an", "object"],
    ])
    def test_malformed_payload(self, body):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(json=body).fetch({}))
        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR

    def test_non_json_body(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(content=b"<html>oops</html>").fetch({}))
        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR


class TestRecordSource:

    def test_fetch_records(self):
        seen = []
        body = [{"_id": "r1", "data": {"subject": "Math"}}, "junk"]
        rows = asyncio.run(records(json=body, seen=seen).fetch_records("c1"))
        assert rows == [{"_id": "r1", "data": {"subject": "Math"}}]
        assert seen[0].url.params["childId"] == "c1"
        assert seen[0].url.params["type"] == "academic"

    def test_null_body_is_empty(self):
        assert asyncio.run(records(content=b"null").fetch_records("c1")) == []

    @pytest.mark.parametrize("status", [200, 204])
    def test_empty_body_is_empty(self, status):
        assert asyncio.run(records(status=status, content=b"").fetch_records("c1")) == []

    def test_empty_ranking_body_is_invalid(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(leaderboard(status=204, content=b"").fetch({}))
        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR

    def test_object_body_is_invalid(self):
        with pytest.raises(SourceError) as exc_info:
            asyncio.run(records(json={"records": []}).fetch_records("c1"))
        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR

    def test_fetch_children(self):
        body = [{"_id": "c1", "name": "Ada"}, {"id": 7, "name": "Ben"}]
        assert asyncio.run(records(json=body).fetch_children()) == [
            {"id": "c1", "name": "Ada"},
            {"id": "7", "name": "Ben"},
        ]


class TestClassifyError:

    def test_source_error_passes_through(self):
        err = SourceError("x", ErrorKind.NO_RECORDS)
        assert classify_error(err) is err

    def test_unknown_exception(self):
        err = classify_error(RuntimeError("weird"))
        assert err.kind == ErrorKind.UNKNOWN
        assert str(err) == "weird"


class TestRankedEntity:

    def test_entities_are_frozen(self):
        entity = RankedEntity.model_validate({"_id": "a", "name": "Ada", "score": 88})
        with pytest.raises(Exception):
            entity.score = 10
        assert entity.grade == "A"
