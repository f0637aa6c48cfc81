import logging

from werkzeug.test import Client, EnvironBuilder
from werkzeug.wrappers import Request, Response

from sherpa.handlers import LoggingMiddleware, leader_protected, standby_response


class FakeMember:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def leader(self):
        if self.error is not None:
            raise self.error
        return self.result


def _request(path="/v1/policies", query=None):
    return Request(EnvironBuilder(path=path, method="GET", query_string=query).get_environ())


def _handler(request, **values):
    return Response("served:" + ",".join(f"{k}={v}" for k, v in sorted(values.items())))


def test_leader_serves_request_with_values():
    member = FakeMember(result=(True, "127.0.0.1:8000", "http://10.0.0.1:8000"))
    protected = leader_protected(member, _handler)
    response = protected(_request(), job_id="web", group="cache")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "served:group=cache,job_id=web"


def test_leader_error_is_internal_error():
    member = FakeMember(error=RuntimeError("backend down"))
    response = leader_protected(member, _handler)(_request())
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "backend down\n"


def test_no_leader_address_is_unavailable():
    member = FakeMember(result=(False, "", ""))
    response = leader_protected(member, _handler)(_request())
    assert response.status_code == 503
    assert response.get_data(as_text=True) == "no cluster leader found\n"


def test_standby_redirects_to_leader():
    member = FakeMember(result=(False, "10.0.0.1:8000", "http://10.0.0.1:8000"))
    response = leader_protected(member, _handler)(_request("/v1/policy/web"))
    assert response.status_code == 307
    assert response.headers["Location"] == "http://10.0.0.1:8000/v1/policy/web"


def test_standby_redirect_defaults_to_https_and_drops_query():
    member = FakeMember(result=(False, "10.0.0.1:8000", "//10.0.0.1:8000"))
    response = standby_response(member, _request("/v1/scale/status", query="count=2"))
    assert response.headers["Location"] == "https://10.0.0.1:8000/v1/scale/status"


def test_standby_response_without_leader():
    member = FakeMember(result=(False, "", ""))
    response = standby_response(member, _request())
    assert response.status_code == 503


def test_logging_middleware_logs_response_code(caplog):
    def app(environ, start_response):
        start_response("404 NOT FOUND", [("Content-Type", "text/plain")])
        return [b"missing"]

    logger = logging.getLogger("sherpa.test.middleware")
    client = Client(LoggingMiddleware(app, logger))
    with caplog.at_level(logging.INFO, logger="sherpa.test.middleware"):
        response = client.get("/v1/scale/status?count=2")

    assert response.status_code == 404
    assert response.get_data() == b"missing"
    messages = [record.getMessage() for record in caplog.records]
    assert len(messages) == 1
    assert "method=GET" in messages[0]
    assert "path=/v1/scale/status?count=2" in messages[0]
    assert "response-code=404" in messages[0]


def test_logging_middleware_passes_body_through(caplog):
    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "application/json")])
        return [b'{"status":"ok"}']

    logger = logging.getLogger("sherpa.test.middleware.ok")
    client = Client(LoggingMiddleware(app, logger))
    with caplog.at_level(logging.INFO, logger="sherpa.test.middleware.ok"):
        response = client.get("/v1/system/health")

    assert response.get_data() == b'{"status":"ok"}'
    assert "response-code=200" in caplog.records[0].getMessage()