# sherpa

A library for scaling the task groups of scheduler jobs in and out. It
records every scaling event in a state backend, lets several server
instances elect one leader, and provides werkzeug request handlers for
scaling, status and system endpoints that can be mounted on a WSGI router.

## Installing

```
pip install .
```

To run the tests as well:

```
pip install ".[test]"
pytest
```

## Modules

- `sherpa.state`: the data types `ScalingEvent`, `ScalingEventMessage`,
  `ScalingState`, `EventDetails`, `ClusterInfo`, `ClusterMember` and the
  enums `Source` (`API`, `INTERNAL_AUTOSCALER`) and `Status` (`COMPLETED`,
  `FAILED`). It also defines the abstract backend interfaces `ScaleBackend`,
  `ClusterBackend` and `BackendLock`, and `GARBAGE_COLLECTION_THRESHOLD`
  (24 hours, in nanoseconds).
- `sherpa.scale_memory`: `MemoryScaleBackend`, which keeps scaling events in
  process memory.
- `sherpa.cluster_memory`: `MemoryClusterBackend` and `MemoryClusterLock`,
  which keep cluster information in process memory.
  `supports_ha()` returns `False`.
- `sherpa.scale_consul`: `ConsulScaleBackend`, which stores events as JSON
  under `<path>state/events/<scale-id>/<job>:<group>`. It also stores the
  newest event per job group under `<path>state/latest-events/<job>:<group>`.
  `KeyValueStore` is a thread-safe in-process store with `get`, `list`,
  `keys`, `put` and `delete`. `KVPair` is a key, its value bytes and a
  session.
- `sherpa.cluster_consul`: `ConsulClusterBackend` and `ConsulClusterLock`
  on top of a `KeyValueStore`. The backend keeps cluster info under
  `<path>cluster/info` and leader entries under `<path>cluster/leader/<id>`.
  The lock is held by writing a session onto `<path>cluster/lock`. A monitor
  thread sets the "lost" event returned by `acquire` when the session is
  taken away.
- `sherpa.scaler`: `Scaler` applies `GroupReq` requests (`Direction.IN` or
  `Direction.OUT`) to the `TaskGroup`s of a `Job` and registers the job.
  - The scheduler client passed in must provide `get_job(job_id)` and
    `register_job(job)`; `register_job` returns an evaluation ID.
  - `trigger` returns a `ScalingResponse` or `None` when nothing changed.
    It raises `JobNotFoundError` when the client's error mentions `404`, and
    `ScaleError` (carrying an HTTP `status`) for other failures.
  - With `strict=True`, a request must carry a policy whose `enabled` is true
    and must stay within its `min_count` and `max_count`.
  - Each triggered scaling is written to the `ScaleBackend` with status
    `Completed` or `Failed`.
- `sherpa.gc`: `GarbageCollector.run()` blocks. It calls
  `run_garbage_collection()` on a `ScaleBackend` every `interval` seconds
  (600 by default) until `stop()` is called.
- `sherpa.api_scale`: `ScaleAPI` with the handlers `in_job_group`,
  `out_job_group`, `status_list` and `status_info`. It also provides the
  helpers `count_from_query`, `payload_or_policy_count` and `json_response`.
  - The count to scale by comes from the `count` request parameter. When that
    is missing or not positive, it comes from the policy's `scale_in_count`;
    `out_job_group` uses `scale_in_count` as well.
  - The policy backend passed in must provide
    `get_job_group_policy(job_id, group)`.
  - Responses are 200 with `{"ID", "EvaluationID"}`, 304 when nothing
    changed, 400 when no count can be found, 403 when strict checking finds
    no policy, 404 when the job is not running, and 500 on errors.
- `sherpa.system`: `SystemServer` with `get_health`, `get_info`,
  `get_leader` and `get_metrics`.
  - The `server` configuration object must have the attributes
    `internal_auto_scaler`, `strict_policy_checking`,
    `consul_storage_backend`, `api_policy_engine` and
    `nomad_meta_policy_engine`.
  - `get_metrics` returns whatever `telemetry.display_metrics(request)`
    returns, as JSON.
- `sherpa.ui`: `UIServer.get` serves a single HTML page. The page fetches
  `/v1/scale/status` and lists the events. `UIServer.redirect` answers with a
  303 to `/ui`.
- `sherpa.router`: `Route(name, method, pattern, handler)` with `{name}`
  path variables. `with_routes` builds a WSGI `Router` from a list of route
  lists. The router calls `handler(request, **path_variables)`.
- `sherpa.member`: `Member` takes part in leader election.
  - On creation it sets up or joins the cluster identity. A configured name
    that differs from the stored one raises `ClusterNameMismatchError`.
  - `run_leadership_loop()` blocks until `clear_leadership()` is called.
  - Leadership changes are put on the `updates` queue as
    `MembershipUpdate` messages.
  - `leader()` returns `(is_self, addr, advertise_addr)`.
- `sherpa.handlers`:
  - `leader_protected(member, handler)` serves a request on the leader. On a
    standby it answers with a 307 redirect to the leader's advertise address
    (the query string is dropped), or with a 503 when no leader is known.
  - `LoggingMiddleware` logs one line per request, including its response
    code.
  - The module also defines the route name and pattern constants, such as
    `ROUTE_SCALE_OUT_JOB_GROUP_PATTERN`.

## Example

```python
from werkzeug.test import Client

from sherpa.api_scale import ScaleAPI
from sherpa.router import Route, with_routes
from sherpa.scale_memory import MemoryScaleBackend
from sherpa.scaler import Job, TaskGroup


class Scheduler:
    def __init__(self):
        self.jobs = {"web": Job(id="web", task_groups=[TaskGroup(name="cache", count=1)])}

    def get_job(self, job_id):
        if job_id not in self.jobs:
            raise LookupError("Unexpected response code: 404 (job not found)")
        return self.jobs[job_id]

    def register_job(self, job):
        return "eval-1"


class NoPolicies:
    def get_job_group_policy(self, job_id, group):
        return None


scheduler = Scheduler()
api = ScaleAPI(NoPolicies(), MemoryScaleBackend(), nomad_client=scheduler)
app = with_routes([[
    Route("ScaleOutJobGroup", "PUT", "/v1/scale/out/{job_id}/{group}", api.out_job_group),
    Route("GetScalingStatus", "GET", "/v1/scale/status", api.status_list),
]])

client = Client(app)
resp = client.put("/v1/scale/out/web/cache?count=2")
assert resp.status_code == 200
assert resp.get_json()["EvaluationID"] == "eval-1"
assert scheduler.jobs["web"].task_groups[0].count == 3
```

## Scaling state

Each scaling event is stored under its scale ID, with one entry for each
`job:group`. The newest event for each job group is also kept separately.
Garbage collection drops events older than `GARBAGE_COLLECTION_THRESHOLD`.
It never touches the newest-event entries.

## What this package does not do

- There is no command and no server start-up. Signal handling, TLS and
  listeners are not included; mount the handlers on a WSGI server yourself.
- There is no network client for a scheduler or for Consul. `Scaler` takes
  any object with `get_job` and `register_job`. The key/value backends work
  on the in-process `KeyValueStore`.
- There are no scaling policy storage, no policy endpoints, no autoscaler, no
  telemetry sink and no configuration loading. Policies and telemetry are
  objects you supply.