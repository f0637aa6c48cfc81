"""Route tables and the WSGI router that dispatches requests to their handlers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from werkzeug.exceptions import HTTPException
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

_VARIABLE = re.compile(r"\{(\w+)\}")


def _to_rule_path(pattern: str) -> str:
    return _VARIABLE.sub(r"<\1>", pattern)


@dataclass(frozen=True)
class Route:
    """A named endpoint: method, path pattern with {name} variables, and handler."""

    name: str
    method: str
    pattern: str
    handler: Callable[..., Response]


class Router:
    """Dispatches requests to route handlers, passing path variables as keywords."""

    def __init__(self, routes: Iterable[Route], logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.routes: list[Route] = []
        rules = []
        for route in routes:
            self.logger.info(
                "mounting route endpoint %s: method=%s path=%s",
                route.name,
                route.method,
                route.pattern,
            )
            rules.append(
                Rule(
                    _to_rule_path(route.pattern),
                    methods=[route.method],
                    endpoint=len(self.routes),
                )
            )
            self.routes.append(route)
        self._map = Map(rules, strict_slashes=True, merge_slashes=False)

    def dispatch(self, request: Request) -> Response | Any:
        adapter = self._map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
        except HTTPException as exc:
            return exc.get_response(request.environ)
        return self.routes[endpoint].handler(request, **values)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        response = self.dispatch(Request(environ))
        return response(environ, start_response)


def with_routes(
    routes: Iterable[Iterable[Route]], logger: logging.Logger | None = None
) -> Router:
    """Build a router from a table of route lists."""
    return Router((route for group in routes for route in group), logger)