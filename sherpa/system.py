"""HTTP endpoints describing the server: health, configuration, leadership and metrics."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from werkzeug.wrappers import Request, Response

from sherpa.api_scale import json_response

DEFAULT_HEALTH_RESP = '{"status":"ok"}'
DEFAULT_API_POLICY_RESP = "Sherpa API"
DEFAULT_META_POLICY_RESP = "Nomad Job Group Meta"
DEFAULT_DISABLED_POLICY_RESP = "Disabled"
DEFAULT_STORAGE_BACKEND = "In Memory"
DEFAULT_STORAGE_BACKEND_CONSUL = "Consul"


def _dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"))


def _error(message: str, status: int) -> Response:
    return Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")


@dataclass
class SystemInfoResp:
    """The server's configuration as reported by the info endpoint."""

    nomad_address: str
    policy_engine: str
    storage_backend: str
    internal_auto_scaling_engine: bool
    strict_policy_checking: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "NomadAddress": self.nomad_address,
            "PolicyEngine": self.policy_engine,
            "StorageBackend": self.storage_backend,
            "InternalAutoScalingEngine": self.internal_auto_scaling_engine,
            "StrictPolicyChecking": self.strict_policy_checking,
        }


@dataclass
class SystemLeaderResp:
    """Cluster leadership as reported by the leader endpoint."""

    is_self: bool
    ha_enabled: bool
    leader_address: str
    leader_cluster_address: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "IsSelf": self.is_self,
            "HAEnabled": self.ha_enabled,
            "LeaderAddress": self.leader_address,
            "LeaderClusterAddress": self.leader_cluster_address,
        }


class SystemServer:
    """Serves the system endpoints."""

    def __init__(
        self,
        nomad_address: str,
        server: Any,
        telemetry: Any = None,
        member: Any = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.nomad_address = nomad_address
        self.server = server
        self.telemetry = telemetry
        self.member = member
        self.logger = logger or logging.getLogger(__name__)

    def get_health(self, request: Request) -> Response:
        return json_response(DEFAULT_HEALTH_RESP, 200)

    def get_info(self, request: Request) -> Response:
        resp = SystemInfoResp(
            nomad_address=self.nomad_address,
            policy_engine=DEFAULT_DISABLED_POLICY_RESP,
            storage_backend=DEFAULT_STORAGE_BACKEND,
            internal_auto_scaling_engine=bool(self.server.internal_auto_scaler),
            strict_policy_checking=bool(self.server.strict_policy_checking),
        )
        if self.server.consul_storage_backend:
            resp.storage_backend = DEFAULT_STORAGE_BACKEND_CONSUL
        if self.server.api_policy_engine:
            resp.policy_engine = DEFAULT_API_POLICY_RESP
        if self.server.nomad_meta_policy_engine:
            resp.policy_engine = DEFAULT_META_POLICY_RESP
        return json_response(_dumps(resp.to_dict()), 200)

    def get_leader(self, request: Request) -> Response:
        try:
            is_self, addr, adv_addr = self.member.leader()
            resp = SystemLeaderResp(
                is_self=is_self,
                ha_enabled=self.member.is_ha(),
                leader_address=addr,
                leader_cluster_address=adv_addr,
            )
        except Exception as exc:
            self.logger.error("failed to get leadership information: %s", exc)
            return _error(str(exc), 500)
        return json_response(_dumps(resp.to_dict()), 200)

    def get_metrics(self, request: Request) -> Response:
        if self.telemetry is None:
            return _error("telemetry is not configured", 500)
        try:
            data = self.telemetry.display_metrics(request)
            body = _dumps(data)
        except Exception as exc:
            self.logger.error("failed to get latest telemetry data: %s", exc)
            return _error(str(exc), 500)
        return json_response(body, 200)