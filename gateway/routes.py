# routes.py
from typing import List, Optional, Tuple

from pydantic import BaseModel

from gateway.config import DEFAULT_SERVICE_URLS, GatewayConfig


class RouteEntry(BaseModel):
    """One prefix of the gateway and the upstream it is forwarded to."""

    prefix: str
    service: str
    upstream_url: str
    rewrite_to: str
    requires_auth: bool = True
    websocket: bool = False

    model_config = {"frozen": True}

    def matches(self, path: str) -> bool:
        # whole segments only: /api/ordersX is not /api/orders
        return path == self.prefix or path.startswith(self.prefix + "/")

    def rewrite(self, path: str) -> str:
        """Swap the gateway prefix for the service-local one (``/api/auth/x`` -> ``/auth/x``)."""
        return self.rewrite_to + path[len(self.prefix):]

    def upstream_target(self, path: str, query: str = "") -> str:
        url = self.upstream_url.rstrip("/") + self.rewrite(path)
        if query:
            url = f"{url}?{query}"
        return url

    def websocket_target(self, path: str, query: str = "") -> str:
        url = self.upstream_target(path, query)
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        return url


class RouteTable:
    """Immutable prefix table, matched longest prefix first."""

    def __init__(self, entries: List[RouteEntry]):
        prefixes = [entry.prefix for entry in entries]
        if len(prefixes) != len(set(prefixes)):
            raise ValueError("Duplicate route prefix in route table")
        self._entries: Tuple[RouteEntry, ...] = tuple(
            sorted(entries, key=lambda entry: len(entry.prefix), reverse=True)
        )

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, path: str) -> Optional[RouteEntry]:
        for entry in self._entries:
            if entry.matches(path):
                return entry
        return None


def default_routes(config: GatewayConfig) -> RouteTable:
    urls = {**DEFAULT_SERVICE_URLS, **config.service_urls}
    return RouteTable([
        RouteEntry(prefix="/api/auth", service="user", upstream_url=urls["user"],
                   rewrite_to="/auth", requires_auth=False),
        RouteEntry(prefix="/api/restaurants", service="restaurant", upstream_url=urls["restaurant"],
                   rewrite_to="/restaurants"),
        RouteEntry(prefix="/api/orders", service="order", upstream_url=urls["order"],
                   rewrite_to="/orders"),
        RouteEntry(prefix="/api/payments", service="payment", upstream_url=urls["payment"],
                   rewrite_to="/payments"),
        RouteEntry(prefix="/api/notifications", service="notification", upstream_url=urls["notification"],
                   rewrite_to="/notifications", websocket=True),
    ])
