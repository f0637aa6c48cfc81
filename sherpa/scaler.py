"""Scaling of job groups on a running scheduler job."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from sherpa.state import ScaleBackend, ScalingEventMessage, Source, Status


class Direction(str, Enum):
    """The direction in which a job group is scaled."""

    IN = "in"
    OUT = "out"

    def __str__(self) -> str:
        return self.value


@dataclass
class TaskGroup:
    """A group of tasks within a job and its running count."""

    name: str
    count: int = 1


@dataclass
class Job:
    """A scheduler job and its task groups."""

    id: str
    task_groups: list[TaskGroup] = field(default_factory=list)


@dataclass
class GroupReq:
    """A request to scale a single job group."""

    direction: Direction
    count: int = 0
    group_name: str = ""
    group_scaling_policy: Any = None

    def log_fields(self) -> dict[str, Any]:
        """Fields describing the request for structured logging."""
        return {"direction": str(self.direction), "count": self.count, "group": self.group_name}


@dataclass
class ScalingResponse:
    """The result of a successful scaling action."""

    id: uuid.UUID
    evaluation_id: str


class ScaleError(Exception):
    """A scaling action failed; status is the HTTP code to report."""

    def __init__(self, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.status = status


class JobNotFoundError(ScaleError):
    """The job to scale is not running."""

    def __init__(self, message: str = "job not found") -> None:
        super().__init__(message, status=404)


class _NomadClient(Protocol):
    def get_job(self, job_id: str) -> Job: ...

    def register_job(self, job: Job) -> str: ...


class Scaler:
    """Changes job group counts and registers the updated job."""

    def __init__(
        self,
        nomad_client: _NomadClient | None,
        state: ScaleBackend | None,
        strict: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.nomad_client = nomad_client
        self.state = state
        self.strict = strict
        self.logger = logger or logging.getLogger(__name__)

    def trigger(
        self, job_id: str, group_reqs: list[GroupReq], source: Source
    ) -> ScalingResponse | None:
        """Scale groups of one job.

        Returns None when no change was made, raises JobNotFoundError when the
        job is not running and ScaleError when the scheduler API fails.
        """
        job = self._get_job(job_id)
        if job is None:
            self.logger.info("job not found to be running: job=%s", job_id)
            raise JobNotFoundError()

        if self.strict:
            changes = self._trigger_strict(job, group_reqs)
        else:
            changes = self._trigger_lenient(job, group_reqs)
        if not changes:
            return None

        eval_id = ""
        api_error: Exception | None = None
        try:
            eval_id = self.nomad_client.register_job(job) or ""
        except Exception as exc:
            api_error = exc

        scale_id = self._send_scaling_event(job_id, eval_id, source, group_reqs, api_error)
        if api_error is not None:
            raise ScaleError(str(api_error), status=500) from api_error
        return ScalingResponse(id=scale_id, evaluation_id=eval_id)

    def _trigger_strict(self, job: Job, group_reqs: list[GroupReq]) -> bool:
        changes = False
        for req in group_reqs:
            policy = req.group_scaling_policy
            if policy is None or not policy.enabled:
                self.logger.debug(
                    "job group scaling policy is disabled: job=%s group=%s", job.id, req.group_name
                )
                break
            task_group = self.check_job_group_exists(job, req.group_name)
            if task_group is None:
                break
            new_count = self.new_group_count(task_group, req)
            try:
                self.check_new_group_count(new_count, req)
            except ValueError as exc:
                self.logger.debug("%s: job=%s group=%s", exc, job.id, req.group_name)
                break
            task_group.count = new_count
            changes = True
        return changes

    def _trigger_lenient(self, job: Job, group_reqs: list[GroupReq]) -> bool:
        changes = False
        for req in group_reqs:
            task_group = self.check_job_group_exists(job, req.group_name)
            if task_group is None:
                break
            changes = True
            task_group.count = self.new_group_count(task_group, req)
        return changes

    def new_group_count(self, task_group: TaskGroup, req: GroupReq) -> int:
        """The group count after applying the request."""
        if req.direction == Direction.IN:
            return task_group.count - req.count
        if req.direction == Direction.OUT:
            return task_group.count + req.count
        return 0

    def check_new_group_count(self, new_count: int, req: GroupReq) -> None:
        """Raise ValueError if the new count breaks the policy thresholds."""
        if req.direction == Direction.IN:
            if new_count < req.group_scaling_policy.min_count:
                raise ValueError("scaling action will break job group minimum threshold")
        elif req.direction == Direction.OUT:
            if new_count > req.group_scaling_policy.max_count:
                raise ValueError("scaling action will break job group maximum threshold")

    def _get_job(self, job_id: str) -> Job | None:
        try:
            return self.nomad_client.get_job(job_id)
        except Exception as exc:
            if "404" in str(exc):
                self.logger.info("failed to find job requested for scaling: %s", exc)
                return None
            self.logger.error("failed to call the Nomad jobs API: %s", exc)
            raise ScaleError(str(exc), status=500) from exc

    def check_job_group_exists(self, job: Job, group: str) -> TaskGroup | None:
        """Return the named task group of the job, or None."""
        for task_group in job.task_groups:
            if task_group.name == group:
                return task_group
        self.logger.warning(
            "task group not found within running Nomad job: job=%s group=%s", job.id, group
        )
        return None

    def _send_scaling_event(
        self,
        job: str,
        eval_id: str,
        source: Source,
        group_reqs: list[GroupReq],
        error: Exception | None,
    ) -> uuid.UUID:
        status = Status.COMPLETED if error is None else Status.FAILED
        scale_id = uuid.uuid4()
        for req in group_reqs:
            message = ScalingEventMessage(
                id=scale_id,
                group_name=req.group_name,
                eval_id=eval_id,
                source=source,
                time=time.time_ns(),
                status=status,
                count=req.count,
                direction=str(req.direction),
            )
            try:
                self.state.put_scaling_event(job, message)
            except Exception:
                self.logger.exception(
                    "failed to update state with scaling event: job=%s group=%s",
                    job,
                    req.group_name,
                )
        return scale_id