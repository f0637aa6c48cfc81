"""Leader-protected request handling, standby redirects and request logging."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Iterable
from urllib.parse import urlsplit, urlunsplit

from werkzeug.wrappers import Request, Response

ROUTE_UI_REDIRECT_NAME = "UIRedirect"
ROUTE_UI_REDIRECT_PATTERN = "/"
ROUTE_UI_NAME = "UI"
ROUTE_UI_PATTERN = "/ui"

ROUTE_GET_SCALING_STATUS_PATTERN = "/v1/scale/status"
ROUTE_GET_SCALING_STATUS_NAME = "GetScalingStatus"
ROUTE_GET_SCALING_INFO_PATTERN = "/v1/scale/status/{id}"
ROUTE_GET_SCALING_INFO_NAME = "GetScalingInfo"

ROUTE_SCALE_OUT_JOB_GROUP_NAME = "ScaleOutJobGroup"
ROUTE_SCALE_OUT_JOB_GROUP_PATTERN = "/v1/scale/out/{job_id}/{group}"
ROUTE_SCALE_IN_JOB_GROUP_NAME = "ScaleInJobGroup"
ROUTE_SCALE_IN_JOB_GROUP_PATTERN = "/v1/scale/in/{job_id}/{group}"
ROUTE_GET_JOB_SCALING_POLICIES_NAME = "GetJobScalingPolicies"
ROUTE_GET_JOB_SCALING_POLICIES_PATTERN = "/v1/policies"
ROUTE_GET_JOB_SCALING_POLICY_NAME = "GetJobScalingPolicy"
ROUTE_GET_JOB_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}"
ROUTE_GET_JOB_GROUP_SCALING_POLICY_NAME = "GetJobGroupScalingPolicy"
ROUTE_GET_JOB_GROUP_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}/{group}"
ROUTE_POST_JOB_SCALING_POLICY_NAME = "PostJobScalingPolicy"
ROUTE_PUT_JOB_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}"
ROUTE_POST_JOB_GROUP_SCALING_POLICY_NAME = "PostJobGroupScalingPolicy"
ROUTE_PUT_JOB_GROUP_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}/{group}"
ROUTE_DELETE_JOB_GROUP_SCALING_POLICY_NAME = "DeleteJobGroupScalingPolicy"
ROUTE_DELETE_JOB_GROUP_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}/{group}"
ROUTE_DELETE_JOB_SCALING_POLICY_NAME = "DeleteJobScalingPolicy"
ROUTE_DELETE_JOB_SCALING_POLICY_PATTERN = "/v1/policy/{job_id}"
ROUTE_GET_METRICS_NAME = "GetSystemMetrics"
ROUTE_GET_METRICS_PATTERN = "/v1/system/metrics"

ROUTE_GET_SYSTEM_LEADER_NAME = "GetSystemLeader"
ROUTE_GET_SYSTEM_LEADER_PATTERN = "/v1/system/leader"
ROUTE_SYSTEM_HEALTH_NAME = "GetSystemHealth"
ROUTE_SYSTEM_HEALTH_PATTERN = "/v1/system/health"
ROUTE_SYSTEM_INFO_NAME = "GetSystemInfo"
ROUTE_SYSTEM_INFO_PATTERN = "/v1/system/info"

TELEMETRY_INTERVAL = 10

NO_LEADER_MESSAGE = "no cluster leader found"


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def leader_protected(member: Any, handler: Callable[..., Response]) -> Callable[..., Response]:
    """Wrap a handler so only the cluster leader serves it; standbys redirect."""

    @functools.wraps(handler)
    def protected(request: Request, **values: Any) -> Response:
        try:
            is_leader, _, adv_addr = member.leader()
        except Exception as exc:
            return _error(str(exc), 500)
        if is_leader:
            return handler(request, **values)
        if not adv_addr:
            return _error(NO_LEADER_MESSAGE, 503)
        return standby_response(member, request)

    return protected


def standby_response(member: Any, request: Request) -> Response:
    """Redirect the client to the leader's advertise address."""
    try:
        _, _, adv_addr = member.leader()
    except Exception as exc:
        return _error(str(exc), 500)
    if not adv_addr:
        return _error(NO_LEADER_MESSAGE, 503)

    try:
        advertise = urlsplit(adv_addr)
    except ValueError as exc:
        return _error(str(exc), 500)

    # The request's query string is not carried over to the leader.
    location = urlunsplit((advertise.scheme or "https", advertise.netloc, request.path, "", ""))
    response = Response(status=307)
    response.headers["Location"] = location
    return response


class LoggingMiddleware:
    """WSGI middleware logging one line per request with its response code."""

    def __init__(self, app: Callable, logger: logging.Logger | None = None) -> None:
        self.app = app
        self.logger = logger or logging.getLogger(__name__)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        code = 200

        def capture(status: str, headers: list, exc_info: Any = None) -> Any:
            nonlocal code
            code = int(status.split(" ", 1)[0])
            return start_response(status, headers, exc_info)

        result = self.app(environ, capture)
        try:
            yield from result
        finally:
            close = getattr(result, "close", None)
            if close is not None:
                close()
            self.logger.info(
                "server responded to request: method=%s path=%s remote-addr=%s response-code=%d",
                environ.get("REQUEST_METHOD", ""),
                _request_uri(environ),
                environ.get("REMOTE_ADDR", ""),
                code,
            )


def _request_uri(environ: dict) -> str:
    uri = environ.get("REQUEST_URI") or environ.get("RAW_URI")
    if uri:
        return uri
    path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    query = environ.get("QUERY_STRING", "")
    return f"{path}?{query}" if query else path