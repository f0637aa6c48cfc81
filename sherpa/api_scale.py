"""HTTP endpoints for scaling job groups and reading scaling state."""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any

from werkzeug.wrappers import Request, Response

from sherpa.scaler import Direction, GroupReq, ScaleError, Scaler
from sherpa.state import ScaleBackend, Source

COUNT_FAILED = 0
HEADER_VALUE_CONTENT_TYPE_JSON = "application/json; charset=utf-8"

ERR_SCALE_OUT_NO_POLICY = "scale out forbidden, no scaling policy found"
ERR_SCALE_IN_NO_POLICY = "scale in forbidden, no scaling policy found"

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"))


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _not_found() -> Response:
    return _error("404 page not found", 404)


def count_from_query(request: Request) -> int:
    """The integer "count" request parameter, or 0 if missing or invalid."""
    raw = request.values.get("count", "")
    if not raw or not _INTEGER.fullmatch(raw):
        return COUNT_FAILED
    return int(raw)


def payload_or_policy_count(payload_count: int, policy: Any, direction: Direction) -> int:
    """Pick the count to scale by: the payload count if positive, else the policy's."""
    if payload_count > 0:
        return payload_count
    if policy is None:
        raise ValueError("no policy configured, specify a count to scale by")
    if direction == Direction.IN:
        return policy.scale_in_count
    if direction == Direction.OUT:
        return policy.scale_out_count
    raise ValueError("all possible checks failed to obtain correct count")


def json_response(body: bytes | str, status: int = 200) -> Response:
    """A response carrying an already encoded JSON body."""
    return Response(body, status=status, content_type=HEADER_VALUE_CONTENT_TYPE_JSON)


def _events_to_json(events: dict | None) -> Any:
    if events is None:
        return None
    return {
        str(scale_id): {name: group[name].to_dict() for name in sorted(group)}
        for scale_id, group in sorted(events.items(), key=lambda item: str(item[0]))
    }


class ScaleAPI:
    """Scale job groups in or out on request and report scaling state."""

    def __init__(
        self,
        policy_backend: Any,
        state_backend: ScaleBackend,
        nomad_client: Any = None,
        strict_checking: bool = False,
        logger: logging.Logger | None = None,
        scaler: Scaler | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.policy_backend = policy_backend
        self.state_backend = state_backend
        self.strict_checking = strict_checking
        self.scaler = scaler or Scaler(
            nomad_client, state_backend, strict=strict_checking, logger=self.logger
        )

    def in_job_group(self, request: Request, job_id: str, group: str) -> Response:
        """Scale a job group in."""
        return self._scale(
            request, job_id, group, Direction.IN, Direction.IN, ERR_SCALE_IN_NO_POLICY
        )

    def out_job_group(self, request: Request, job_id: str, group: str) -> Response:
        """Scale a job group out."""
        # The count falls back to the policy's scale-in count, as the server always has.
        return self._scale(
            request, job_id, group, Direction.OUT, Direction.IN, ERR_SCALE_OUT_NO_POLICY
        )

    def _scale(
        self,
        request: Request,
        job_id: str,
        group: str,
        direction: Direction,
        count_direction: Direction,
        no_policy_message: str,
    ) -> Response:
        req = GroupReq(direction=direction, group_name=group)

        try:
            policy = self.policy_backend.get_job_group_policy(job_id, group)
        except Exception as exc:
            return _error(str(exc), 500)

        if self.strict_checking and policy is None:
            self.logger.info(
                "strict checking enabled and job group does not have scaling policy: "
                "job=%s group=%s",
                job_id,
                group,
            )
            return _error(no_policy_message, 403)
        req.group_scaling_policy = policy

        try:
            req.count = payload_or_policy_count(count_from_query(request), policy, count_direction)
        except ValueError as exc:
            self.logger.error(
                "failed to determine scale count based on payload and policy: "
                "job=%s group=%s: %s",
                job_id,
                group,
                exc,
            )
            return _error(str(exc), 400)

        try:
            result = self.scaler.trigger(job_id, [req], Source.API)
        except ScaleError as exc:
            self.logger.error(
                "failed to scale %s Nomad job group: job=%s group=%s: %s",
                direction,
                job_id,
                group,
                exc,
            )
            return _error(str(exc), exc.status)

        if result is None:
            return _error("unable to scaleResp job", 304)

        self.logger.info(
            "successfully scaled %s Nomad job group: job=%s group=%s", direction, job_id, group
        )
        body = _dumps({"ID": str(result.id), "EvaluationID": result.evaluation_id})
        return json_response(body, 200)

    def status_list(self, request: Request) -> Response:
        """All scaling events held in the state."""
        try:
            events = self.state_backend.get_scaling_events()
        except Exception as exc:
            self.logger.error("failed to get scaling events from state: %s", exc)
            return _error(str(exc), 500)
        return json_response(_dumps(_events_to_json(events)), 200)

    def status_info(self, request: Request, scale_id: str) -> Response:
        """The events of a single scaling action."""
        try:
            parsed = uuid.UUID(scale_id)
        except ValueError as exc:
            self.logger.error("failed to convert scale ID query parameter to UUID: %s", exc)
            return _error(str(exc), 500)

        try:
            info = self.state_backend.get_scaling_event(parsed)
        except Exception as exc:
            self.logger.error("failed to get scaling event from state: %s", exc)
            return _error(str(exc), 500)

        if info is None:
            return _not_found()
        body = _dumps({name: info[name].to_dict() for name in sorted(info)})
        return json_response(body, 200)