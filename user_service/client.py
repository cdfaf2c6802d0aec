"""
HTTP client for the user service.

Usage:
    with UserClient("http://localhost:10100") as client:
        client.add_entity("User-0", "Entity-0")
        client.get_entities("User-0")
"""

from typing import List, Optional

import httpx

from user_service.models.user import AddEntityRequest, GetEntitiesRequest, GetEntitiesResponse

DEFAULT_TIMEOUT = 5.0


class UserClientError(Exception):
    """Raised when the service answers with a non-2xx status."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


class UserClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> "UserClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def add_entity(self, user_id: str, entity_id: str) -> None:
        rq = AddEntityRequest(user_id=user_id, entity_id=entity_id)
        self._post("/v1/user/entities/add", rq.model_dump())

    def get_entities(self, user_id: str) -> List[str]:
        rq = GetEntitiesRequest(user_id=user_id)
        body = self._post("/v1/user/entities/get", rq.model_dump())
        return GetEntitiesResponse.model_validate(body).entity_ids

    def health(self) -> bool:
        try:
            resp = self._http.get("/healthz")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200 and resp.json().get("status") == "ok"

    def close(self) -> None:
        self._http.close()

    def _post(self, path: str, payload: dict) -> dict:
        resp = self._http.post(path, json=payload)
        if resp.status_code >= 400:
            raise _client_error(resp)
        return resp.json()


def _client_error(resp: httpx.Response) -> UserClientError:
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        error = {}
    return UserClientError(
        resp.status_code,
        error.get("code", "http_error"),
        error.get("message", resp.text),
    )
