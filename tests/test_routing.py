"""
Tests for the routing provider HTTP client.
"""

from unittest.mock import Mock

import pytest
import requests

from crewmatch.errors import CircuitOpenError, RetryError, UpstreamDegraded
from crewmatch.retry import CircuitBreaker
from crewmatch.routing import RoutingClient

from conftest import BROOKLYN, MANHATTAN, QUEENS


def response(status_code=200, body=None):
    resp = Mock(status_code=status_code)
    resp.json.return_value = body
    return resp


MATRIX_BODY = {
    "durations": [[600.0, 1200.0]],
    "distances": [[8000.0, 16000.0]],
}


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(session):
    return RoutingClient(
        base_url="https://routing.example.com/",
        api_key="secret",
        timeout=1.0,
        attempts=2,
        breaker=CircuitBreaker(failure_threshold=3, recovery_timeout=30),
        session=session,
    )


class TestRoutingClient:
    def test_matrix_converts_seconds_to_minutes(self, client, session):
        session.post.return_value = response(body=MATRIX_BODY)

        minutes, meters = client.matrix([MANHATTAN], [BROOKLYN, QUEENS])

        assert minutes == [[10.0, 20.0]]
        assert meters == [[8000.0, 16000.0]]

    def test_request_payload(self, client, session):
        session.post.return_value = response(body=MATRIX_BODY)

        client.matrix([MANHATTAN], [BROOKLYN, QUEENS])

        args, kwargs = session.post.call_args
        assert args[0] == "https://routing.example.com/v2/matrix/driving-car"
        assert kwargs["headers"]["Authorization"] == "secret"
        assert kwargs["timeout"] == 1.0
        assert kwargs["json"]["sources"] == [0]
        assert kwargs["json"]["destinations"] == [1, 2]
        assert kwargs["json"]["locations"][0] == [MANHATTAN.lng, MANHATTAN.lat]

    def test_empty_request_skips_network(self, client, session):
        assert client.matrix([], [BROOKLYN]) == ([], [])
        session.post.assert_not_called()

    def test_unroutable_pair_is_none(self, client, session):
        session.post.return_value = response(body={"durations": [[None]], "distances": [[None]]})
        minutes, meters = client.matrix([MANHATTAN], [BROOKLYN])
        assert minutes == [[None]]
        assert meters == [[None]]


class TestRoutingFailures:
    def test_server_error_retried_then_degraded(self, client, session):
        session.post.return_value = response(status_code=503)

        with pytest.raises(RetryError):
            client.matrix([MANHATTAN], [BROOKLYN])

        assert session.post.call_count == 2

    def test_client_error_not_retried(self, client, session):
        session.post.return_value = response(status_code=400)

        with pytest.raises(UpstreamDegraded) as exc_info:
            client.matrix([MANHATTAN], [BROOKLYN])

        assert session.post.call_count == 1
        assert exc_info.value.details["status"] == 400

    def test_malformed_body(self, client, session):
        session.post.return_value = response(body={"durations": []})

        with pytest.raises(UpstreamDegraded):
            client.matrix([MANHATTAN], [BROOKLYN])

    def test_wrong_shape(self, client, session):
        session.post.return_value = response(body={"durations": [[1.0]], "distances": [[1.0]]})

        with pytest.raises(UpstreamDegraded, match="wrong shape"):
            client.matrix([MANHATTAN], [BROOKLYN, QUEENS])

    @pytest.mark.parametrize("body", [
        {"durations": [None], "distances": [None]},
        {"durations": ["600"], "distances": [[8000.0]]},
        {"durations": [[600.0]], "distances": [["far"]]},
        {"durations": [[True]], "distances": [[8000.0]]},
    ])
    def test_malformed_rows(self, client, session, body):
        session.post.return_value = response(body=body)

        with pytest.raises(UpstreamDegraded):
            client.matrix([MANHATTAN], [BROOKLYN])

    def test_malformed_bodies_open_breaker(self, client, session):
        import crewmatch.routing as routing

        before = routing.logger.get_metrics()["routing_failures"]
        session.post.return_value = response(body={"durations": [None], "distances": [None]})

        for _ in range(3):
            with pytest.raises(UpstreamDegraded):
                client.matrix([MANHATTAN], [BROOKLYN])

        assert not client.available
        assert routing.logger.get_metrics()["routing_failures"] == before + 3

    def test_timeout_opens_breaker(self, client, session):
        session.post.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(RetryError):
            client.matrix([MANHATTAN], [BROOKLYN])

        assert not client.available

    def test_open_breaker_skips_provider(self, client, session):
        client.breaker.trip()

        with pytest.raises(CircuitOpenError):
            client.matrix([MANHATTAN], [BROOKLYN])

        session.post.assert_not_called()

    def test_failures_counted(self, client, session):
        import crewmatch.routing as routing

        before = routing.logger.get_metrics()["routing_failures"]
        session.post.return_value = response(status_code=400)

        with pytest.raises(UpstreamDegraded):
            client.matrix([MANHATTAN], [BROOKLYN])

        assert routing.logger.get_metrics()["routing_failures"] == before + 1
