import json
import uuid
from dataclasses import dataclass

import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from sherpa.api_scale import (
    ScaleAPI,
    count_from_query,
    json_response,
    payload_or_policy_count,
)
from sherpa.scale_memory import MemoryScaleBackend
from sherpa.scaler import Direction, Job, TaskGroup
from sherpa.state import ScalingEventMessage, Source, Status


@dataclass
class _Policy:
    enabled: bool = True
    min_count: int = 0
    max_count: int = 0
    scale_in_count: int = 0
    scale_out_count: int = 0


class _Policies:
    def __init__(self, policy=None, error=None):
        self.policy = policy
        self.error = error

    def get_job_group_policy(self, job_id, group):
        if self.error is not None:
            raise self.error
        return self.policy


class _Nomad:
    def __init__(self, job=None, error=None, register_error=None):
        self.job = job
        self.error = error
        self.register_error = register_error
        self.registered = []

    def get_job(self, job_id):
        if self.error is not None:
            raise self.error
        return self.job

    def register_job(self, job):
        if self.register_error is not None:
            raise self.register_error
        self.registered.append(job)
        return "eval-1"


def _request(query="", method="PUT"):
    return Request(EnvironBuilder(method=method, path="/", query_string=query).get_environ())


def _job(count=4):
    return Job(id="example", task_groups=[TaskGroup(name="cache", count=count)])


def _api(policy=None, nomad=None, strict=False, state=None, policies=None):
    return ScaleAPI(
        policies or _Policies(policy),
        state if state is not None else MemoryScaleBackend(),
        nomad_client=nomad,
        strict_checking=strict,
    )


def test_payload_or_policy_count_payload_wins():
    assert payload_or_policy_count(13, _Policy(), Direction.IN) == 13


def test_payload_or_policy_count_no_policy():
    with pytest.raises(ValueError, match="no policy configured, specify a count to scale by"):
        payload_or_policy_count(0, None, Direction.IN)


def test_payload_or_policy_count_scale_in():
    assert payload_or_policy_count(0, _Policy(scale_in_count=3), Direction.IN) == 3


def test_payload_or_policy_count_scale_out():
    assert payload_or_policy_count(0, _Policy(scale_out_count=7), Direction.OUT) == 7


@pytest.mark.parametrize(
    "query, expected",
    [("count=5", 5), ("", 0), ("count=abc", 0), ("count=", 0), ("count=-2", -2)],
)
def test_count_from_query(query, expected):
    assert count_from_query(_request(query)) == expected


def test_json_response_headers():
    response = json_response('{"a":1}', 201)
    assert response.status_code == 201
    assert response.headers["Content-Type"] == "application/json; charset=utf-8"
    assert response.get_data(as_text=True) == '{"a":1}'


def test_in_job_group_scales_and_records_event():
    job = _job(4)
    nomad = _Nomad(job=job)
    state = MemoryScaleBackend()
    api = _api(policy=None, nomad=nomad, state=state)

    response = api.in_job_group(_request("count=2"), "example", "cache")

    assert response.status_code == 200
    body = json.loads(response.get_data())
    assert body["EvaluationID"] == "eval-1"
    assert job.task_groups[0].count == 2
    events = state.get_scaling_events()
    event = events[uuid.UUID(body["ID"])]["example:cache"]
    assert event.status == Status.COMPLETED
    assert event.details.count == 2
    assert event.details.direction == "in"


def test_out_job_group_with_query_count():
    job = _job(4)
    api = _api(nomad=_Nomad(job=job))
    response = api.out_job_group(_request("count=3"), "example", "cache")
    assert response.status_code == 200
    assert job.task_groups[0].count == 7


def test_out_job_group_falls_back_to_scale_in_count():
    job = _job(4)
    policy = _Policy(scale_in_count=2, scale_out_count=5, max_count=100)
    api = _api(policy=policy, nomad=_Nomad(job=job))
    response = api.out_job_group(_request(), "example", "cache")
    assert response.status_code == 200
    assert job.task_groups[0].count == 6


def test_strict_without_policy_is_forbidden():
    api = _api(policy=None, nomad=_Nomad(job=_job()), strict=True)
    response = api.in_job_group(_request("count=1"), "example", "cache")
    assert response.status_code == 403
    assert response.get_data(as_text=True) == "scale in forbidden, no scaling policy found\n"

    response = api.out_job_group(_request("count=1"), "example", "cache")
    assert response.status_code == 403
    assert response.get_data(as_text=True) == "scale out forbidden, no scaling policy found\n"


def test_strict_with_policy_respects_maximum():
    job = _job(4)
    api = _api(policy=_Policy(max_count=6), nomad=_Nomad(job=job), strict=True)
    response = api.out_job_group(_request("count=3"), "example", "cache")
    assert response.status_code == 304
    assert job.task_groups[0].count == 4


def test_missing_count_and_policy_is_bad_request():
    api = _api(policy=None, nomad=_Nomad(job=_job()))
    response = api.in_job_group(_request(), "example", "cache")
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "no policy configured, specify a count to scale by\n"


def test_job_not_found():
    api = _api(nomad=_Nomad(error=RuntimeError("Unexpected response code: 404")))
    response = api.in_job_group(_request("count=1"), "example", "cache")
    assert response.status_code == 404
    assert response.get_data(as_text=True) == "job not found\n"


def test_unknown_group_is_not_modified():
    api = _api(nomad=_Nomad(job=_job()))
    response = api.in_job_group(_request("count=1"), "example", "db")
    assert response.status_code == 304


def test_policy_backend_error():
    api = _api(policies=_Policies(error=RuntimeError("backend down")), nomad=_Nomad(job=_job()))
    response = api.in_job_group(_request("count=1"), "example", "cache")
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "backend down\n"


def test_register_failure_records_failed_event():
    state = MemoryScaleBackend()
    api = _api(nomad=_Nomad(job=_job(), register_error=RuntimeError("boom")), state=state)
    response = api.out_job_group(_request("count=1"), "example", "cache")
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "boom\n"
    (group,) = state.get_scaling_events().values()
    assert group["example:cache"].status == Status.FAILED


def _message(scale_id):
    return ScalingEventMessage(
        id=scale_id,
        group_name="cache",
        eval_id="eval-1",
        source=Source.API,
        time=1,
        status=Status.COMPLETED,
        count=1,
        direction="in",
    )


def test_status_list():
    state = MemoryScaleBackend()
    scale_id = uuid.uuid4()
    state.put_scaling_event("example", _message(scale_id))
    response = _api(state=state).status_list(_request(method="GET"))
    assert response.status_code == 200
    data = json.loads(response.get_data())
    assert data[str(scale_id)]["example:cache"]["Status"] == "Completed"
    assert data[str(scale_id)]["example:cache"]["Details"] == {"Count": 1, "Direction": "in"}


def test_status_list_empty():
    response = _api().status_list(_request(method="GET"))
    assert json.loads(response.get_data()) == {}


def test_status_info_found():
    state = MemoryScaleBackend()
    scale_id = uuid.uuid4()
    state.put_scaling_event("example", _message(scale_id))
    response = _api(state=state).status_info(_request(method="GET"), str(scale_id))
    assert response.status_code == 200
    data = json.loads(response.get_data())
    assert list(data) == ["example:cache"]
    assert data["example:cache"]["EvalID"] == "eval-1"


def test_status_info_unknown():
    response = _api().status_info(_request(method="GET"), str(uuid.uuid4()))
    assert response.status_code == 404


def test_status_info_invalid_id():
    response = _api().status_info(_request(method="GET"), "not-a-uuid")
    assert response.status_code == 500