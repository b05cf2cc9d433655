"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_route_matcher: Optional[Callable[[str], bool]] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    route_matcher: Callable[[str], bool],
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _route_matcher

    _get_conn = get_conn
    _route_matcher = route_matcher


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def match_route(path: str) -> bool:
    """Whether ``path`` is served by this application."""

    matcher = _require(_route_matcher, "route_matcher")
    return matcher(path)
