"""Tests for StatsFetcher and the CDR_stats request/response handling."""

from __future__ import annotations

from datetime import datetime, timezone

import aiohttp
import pytest

from conftest import SlowResponse, mock_response

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def window():
    from voipmonitor_exporter.models import TimeWindow

    return TimeWindow.trailing(5, now=NOW)


@pytest.fixture
def session():
    from voipmonitor_exporter.models import Session

    return Session(sid="tok1")


class TestBuildStatsForm:
    """Tests for the form body of a stats query."""

    def test_form_fields(self, window):
        """Form MUST carry the CDR_stats listing fields."""
        from voipmonitor_exporter.config import DEFAULT_NEED_COLUMNS
        from voipmonitor_exporter.stats import build_stats_form

        form = build_stats_form(
            "4", window, DEFAULT_NEED_COLUMNS, "1642680756758_CDR-group-panel"
        )

        assert form == {
            "task": "LISTING",
            "module": "CDR_stats",
            "fdatefrom": "2026-10-19T11:55:00Z",
            "fsensor_id": "4",
            "group_by": "4",
            "needColumns": DEFAULT_NEED_COLUMNS,
            "needPercentile": "1",
            "page": "1",
            "start": "0",
            "limit": "-1",
            "timestampId": "1642680756758_CDR-group-panel",
            "clientTimezone": "UTC",
            "clientOsTimezone": "UTC",
            "timeout": "3600",
            "check_active_request": "true",
        }

    def test_need_columns_passed_verbatim(self, window):
        """needColumns MUST be sent exactly as configured."""
        from voipmonitor_exporter.stats import build_stats_form

        form = build_stats_form("4", window, '["cnt_all"]', "ts")

        assert form["needColumns"] == '["cnt_all"]'
        assert form["timestampId"] == "ts"


class TestTimeWindow:
    """Tests for the trailing query window."""

    def test_trailing_window(self):
        from voipmonitor_exporter.models import TimeWindow

        window = TimeWindow.trailing(15, now=NOW)

        assert window.end == NOW
        assert window.fdatefrom == "2026-10-19T11:45:00Z"

    def test_window_start_rendered_in_utc(self):
        """fdatefrom MUST be UTC regardless of the reference timezone."""
        from datetime import timedelta

        from voipmonitor_exporter.models import TimeWindow

        local = datetime(2026, 10, 19, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        window = TimeWindow.trailing(5, now=local)

        assert window.fdatefrom == "2026-10-19T11:55:00Z"

    def test_naive_reference_treated_as_utc(self):
        from voipmonitor_exporter.models import TimeWindow

        window = TimeWindow.trailing(5, now=datetime(2026, 10, 19, 12, 0, 0))

        assert window.fdatefrom == "2026-10-19T11:55:00Z"


class TestParseCallStats:
    """Tests for response parsing."""

    def test_parses_results(self):
        from voipmonitor_exporter.models import Observation
        from voipmonitor_exporter.stats import parse_call_stats

        body = (
            '{"total": 2, "results": ['
            '{"cnt_all": 12, "lastSIPresponse": "200 OK", "lastSIPresponseNum": 200},'
            '{"cnt_all": 3.5, "lastSIPresponse": "486 Busy Here", "lastSIPresponseNum": 486}'
            "]}"
        )

        assert parse_call_stats(body, "A") == [
            Observation("A", "200 OK", 200, 12.0),
            Observation("A", "486 Busy Here", 486, 3.5),
        ]

    def test_numeric_strings_accepted(self):
        """PHP backends MAY send numbers as strings."""
        from voipmonitor_exporter.stats import parse_call_stats

        body = '{"results": [{"cnt_all": "7", "lastSIPresponse": "404 Not Found", "lastSIPresponseNum": "404"}]}'

        [observation] = parse_call_stats(body, "B")

        assert observation.response_code == 404
        assert observation.count == 7.0

    def test_missing_results_is_empty(self):
        from voipmonitor_exporter.stats import parse_call_stats

        assert parse_call_stats('{"total": 0}', "A") == []

    def test_utf8_bytes_decoded(self):
        from voipmonitor_exporter.stats import parse_call_stats

        body = '{"results": [{"cnt_all": 3, "lastSIPresponse": "486 Occupé", "lastSIPresponseNum": 486}]}'

        [observation] = parse_call_stats(body.encode("utf-8"), "A")

        assert observation.response_label == "486 Occupé"

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            "[1, 2]",
            '{"results": "none"}',
            '{"results": [1]}',
            '{"results": [{"cnt_all": "many", "lastSIPresponse": "200 OK", "lastSIPresponseNum": 200}]}',
            '{"results": [{"cnt_all": 1, "lastSIPresponse": 200, "lastSIPresponseNum": 200}]}',
            '{"results": [{"cnt_all": 1, "lastSIPresponse": "200 OK", "lastSIPresponseNum": null}]}',
            b'\xff\xfe{"results": []}',
        ],
    )
    def test_malformed_body_is_decode_error(self, body):
        """Unexpected shapes MUST raise FetchError with DECODE."""
        from voipmonitor_exporter.errors import FetchError, FetchErrorKind
        from voipmonitor_exporter.stats import parse_call_stats

        with pytest.raises(FetchError) as exc_info:
            parse_call_stats(body, "A")

        assert exc_info.value.kind == FetchErrorKind.DECODE
        assert exc_info.value.component == "A"


class TestStatsFetcher:
    """Tests for StatsFetcher.fetch."""

    @pytest.mark.asyncio
    async def test_fetch_sends_cookie_and_form(self, upstream_config, upstream, session, window):
        """Fetch MUST authenticate with the PHPSESSID cookie."""
        from voipmonitor_exporter.stats import StatsFetcher

        upstream.stats("4", [
            {"cnt_all": 12.0, "lastSIPresponse": "200 OK", "lastSIPresponseNum": 200},
        ])

        observations = await StatsFetcher(upstream_config).fetch(
            upstream, session, "A", "4", window
        )

        [call] = upstream.stats_calls
        assert call["url"] == "http://voipmonitor.test/php/model/sql.php"
        assert call["headers"] == {"Cookie": "PHPSESSID=tok1"}
        assert call["data"]["fsensor_id"] == "4"
        assert call["data"]["fdatefrom"] == "2026-10-19T11:55:00Z"
        assert [o.component for o in observations] == ["A"]
        assert observations[0].count == 12.0

    @pytest.mark.asyncio
    async def test_upstream_status_error(self, upstream_config, upstream, session, window):
        from voipmonitor_exporter.errors import FetchError, FetchErrorKind
        from voipmonitor_exporter.stats import StatsFetcher

        upstream.sensors["8"] = mock_response(500, "oops")

        with pytest.raises(FetchError) as exc_info:
            await StatsFetcher(upstream_config).fetch(upstream, session, "B", "8", window)

        assert exc_info.value.kind == FetchErrorKind.UPSTREAM_STATUS
        assert exc_info.value.status == 500
        assert exc_info.value.component == "B"

    @pytest.mark.asyncio
    async def test_network_error(self, upstream_config, upstream, session, window):
        from voipmonitor_exporter.errors import FetchError, FetchErrorKind
        from voipmonitor_exporter.stats import StatsFetcher

        upstream.sensors["8"] = aiohttp.ClientConnectionError("reset")

        with pytest.raises(FetchError) as exc_info:
            await StatsFetcher(upstream_config).fetch(upstream, session, "B", "8", window)

        assert exc_info.value.kind == FetchErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_deadline_exceeded_is_network_error(self, upstream, session, window):
        """A hung request MUST be cut off by the per-fetch deadline."""
        from voipmonitor_exporter.config import UpstreamConfig
        from voipmonitor_exporter.errors import FetchError, FetchErrorKind
        from voipmonitor_exporter.stats import StatsFetcher

        config = UpstreamConfig(endpoint="http://voipmonitor.test", fetch_timeout=0.05)
        upstream.sensors["8"] = SlowResponse(delay=5)

        with pytest.raises(FetchError) as exc_info:
            await StatsFetcher(config).fetch(upstream, session, "B", "8", window)

        assert exc_info.value.kind == FetchErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_non_utf8_body_is_decode_error(self, upstream_config, upstream, session, window):
        from voipmonitor_exporter.errors import FetchError, FetchErrorKind
        from voipmonitor_exporter.stats import StatsFetcher

        upstream.sensors["8"] = mock_response(200, b'\xff\xfe{"results": []}')

        with pytest.raises(FetchError) as exc_info:
            await StatsFetcher(upstream_config).fetch(upstream, session, "B", "8", window)

        assert exc_info.value.kind == FetchErrorKind.DECODE
        assert exc_info.value.component == "B"
