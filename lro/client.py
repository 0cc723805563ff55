from __future__ import annotations

from typing import Any, TypeVar, cast

import httpx

from .models import ObjectRef, Resource, parse_object, to_wire
from .settings import settings
from .store import ERRORS_BY_REASON, StoreError, StoreUnavailable

R = TypeVar("R", bound=Resource)


class HttpStore:
    """Store contract spoken over the LRO HTTP API.

    Pass ``client`` to reuse a configured ``httpx.Client`` (or a FastAPI
    ``TestClient``); otherwise one is created for ``base_url``.
    """

    def __init__(self, base_url: str | None = None, client: httpx.Client | None = None, timeout_s: float = 10.0):
        self.client = client or httpx.Client(base_url=(base_url or settings.api_url).rstrip("/"), timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, kind: str, ref: ObjectRef | None, **kwargs: Any) -> httpx.Response:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise StoreUnavailable(kind, ref, f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 500:
            raise StoreUnavailable(kind, ref, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            try:
                data = resp.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            cls = ERRORS_BY_REASON.get(data.get("reason") or "", StoreError)
            raise cls(kind, ref, str(data.get("detail", f"HTTP {resp.status_code}")))
        return resp

    def get(self, kind: type[R], ref: ObjectRef) -> R:
        resp = self._request("GET", f"/apis/{kind.KIND}/{ref.namespace}/{ref.name}", kind.KIND, ref)
        return cast(R, parse_object(resp.json()))

    def create(self, obj: R) -> R:
        resp = self._request("POST", f"/apis/{obj.kind}", obj.kind, obj.ref, json=to_wire(obj))
        return cast(R, parse_object(resp.json()))

    def update(self, obj: R) -> R:
        path = f"/apis/{obj.kind}/{obj.metadata.namespace}/{obj.metadata.name}"
        resp = self._request("PUT", path, obj.kind, obj.ref, json=to_wire(obj))
        return cast(R, parse_object(resp.json()))

    def delete(self, kind: type[Resource], ref: ObjectRef) -> None:
        self._request("DELETE", f"/apis/{kind.KIND}/{ref.namespace}/{ref.name}", kind.KIND, ref)

    def list(self, kind: type[R], namespace: str | None = None) -> list[R]:
        params = {"namespace": namespace} if namespace else None
        resp = self._request("GET", f"/apis/{kind.KIND}", kind.KIND, None, params=params)
        return [cast(R, parse_object(item)) for item in resp.json()["items"]]
