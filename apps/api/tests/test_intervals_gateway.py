"""
Tests for the HTTP Intervals.icu gateway.

requests.Session is replaced with a mock, so nothing leaves the process.
"""
import pytest
from unittest.mock import MagicMock

import requests

from core.exceptions import UpstreamAuthError, UpstreamPayloadError, UpstreamRequestError
from services.intervals_gateway import HttpIntervalsGateway
from services.sync_window import SyncWindow
from fixtures.intervals_fixtures import make_athlete, make_detail


def _response(status_code=200, json_body=None, text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.url = "https://intervals.test/api/v1/..."
    response.reason = "Reason"
    if json_body is not None:
        response.json.return_value = json_body
        response.content = b"{...}"
        response.text = str(json_body)
    else:
        response.json.side_effect = ValueError("no json")
        response.content = text.encode()
        response.text = text
    return response


@pytest.fixture
def http_session():
    return MagicMock(spec=requests.Session, headers={})


@pytest.fixture
def http_gateway(http_session):
    return HttpIntervalsGateway(
        api_base="https://intervals.test/api/v1/",
        username="API_KEY",
        api_key="secret",
        timeout=7,
        session=http_session,
    )


class TestRequests:
    """Request construction."""

    def test_basic_auth_and_accept_header(self, http_gateway, http_session):
        """Credentials and JSON Accept header are set on the session."""
        assert http_session.auth == ("API_KEY", "secret")
        assert http_session.headers["Accept"] == "application/json"

    def test_athlete_profile(self, http_gateway, http_session):
        """Athlete profile is fetched by id and parsed."""
        http_session.get.return_value = _response(json_body=make_athlete("i9"))

        athlete = http_gateway.fetch_athlete_profile("i9")

        assert athlete.id == "i9"
        http_session.get.assert_called_once_with(
            "https://intervals.test/api/v1/athlete/i9", params=None, timeout=7
        )

    def test_activity_events_use_window(self, http_gateway, http_session):
        """The window bounds are sent as oldest/newest."""
        http_session.get.return_value = _response(json_body=[{"id": "a1"}])

        http_gateway.fetch_activity_events("i9", SyncWindow(oldest="2024-03-02", newest="2024-03-10"))

        args, kwargs = http_session.get.call_args
        assert args[0].endswith("/athlete/i9/activities")
        assert kwargs["params"] == {"oldest": "2024-03-02", "newest": "2024-03-10"}

    def test_detail_requests_intervals(self, http_gateway, http_session):
        """Activity detail asks for intervals."""
        http_session.get.return_value = _response(json_body=make_detail("a1"))

        http_gateway.fetch_activity_detail("a1")

        assert http_session.get.call_args.kwargs["params"] == {"intervals": "true"}

    def test_streams_types_joined(self, http_gateway, http_session):
        """Requested stream types are sent comma-separated."""
        http_session.get.return_value = _response(json_body=[{"type": "distance", "data": [0, 1]}])

        streams = http_gateway.fetch_activity_streams("a1", ["heartrate", "distance"])

        assert http_session.get.call_args.kwargs["params"] == {"types": "heartrate,distance"}
        assert streams[0].type == "distance"

    def test_empty_map_body(self, http_gateway, http_session):
        """An empty map response parses as an empty map."""
        http_session.get.return_value = _response(text="")

        activity_map = http_gateway.fetch_activity_map("a1")

        assert activity_map.latlngs == []


class TestErrorMapping:
    """HTTP failures map onto domain errors."""

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_failures(self, http_gateway, http_session, status_code):
        """401 and 403 are authentication failures."""
        http_session.get.return_value = _response(status_code, json_body={"error": "Access denied"})

        with pytest.raises(UpstreamAuthError) as exc:
            http_gateway.fetch_athlete_profile("i9")

        assert exc.value.status_code == 401
        assert "Access denied" in str(exc.value)

    @pytest.mark.parametrize("status_code", [404, 429, 500, 503])
    def test_other_statuses(self, http_gateway, http_session, status_code):
        """Any other non-2xx status is a request error."""
        http_session.get.return_value = _response(status_code, text="upstream broke")

        with pytest.raises(UpstreamRequestError) as exc:
            http_gateway.fetch_activity_detail("a1")

        assert exc.value.status_code == 502
        assert str(status_code) in str(exc.value)

    def test_network_failure(self, http_gateway, http_session):
        """Connection errors and timeouts are request errors."""
        http_session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(UpstreamRequestError) as exc:
            http_gateway.fetch_activity_map("a1")

        assert "timed out" in str(exc.value)

    def test_bad_shape(self, http_gateway, http_session):
        """A 200 with the wrong shape is a payload error."""
        http_session.get.return_value = _response(json_body={"unexpected": True})

        with pytest.raises(UpstreamPayloadError):
            http_gateway.fetch_activity_streams("a1", ["distance"])
