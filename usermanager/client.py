"""HTTP client for the user management REST API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

DEFAULT_API_URL = "http://localhost:5001/api"

UserPayload = Dict[str, Any]


class UserClientError(RuntimeError):
    """Raised when the service rejects a request or cannot be reached."""

    def __init__(self, status_code: Optional[int], message: str, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error = error


class UserClient:
    """Thin wrapper over the ``/users`` endpoints.

    ``client`` may be any :class:`httpx.Client`, which lets tests pass a
    FastAPI ``TestClient`` together with a relative ``base_url`` such as
    ``"/api"``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def __enter__(self) -> "UserClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}/users{path}"
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UserClientError(None, f"Failed to contact user service: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            message = str(payload.get("message") or f"Request failed with status {response.status_code}")
            error = payload.get("error")
            raise UserClientError(response.status_code, message, str(error) if error is not None else None)
        return response

    def list_users(self) -> List[UserPayload]:
        return self._request("GET", "").json()

    def get_user(self, user_id: str) -> UserPayload:
        return self._request("GET", f"/{user_id}").json()

    def create_user(self, name: str, email: str, password: str) -> UserPayload:
        body = {"name": name, "email": email, "password": password}
        return self._request("POST", "", json=body).json()

    def update_user(self, user_id: str, **changes: str) -> UserPayload:
        return self._request("PUT", f"/{user_id}", json=changes).json()

    def delete_user(self, user_id: str) -> str:
        payload = self._request("DELETE", f"/{user_id}").json()
        return str(payload.get("message", ""))


__all__ = ["UserClient", "UserClientError", "DEFAULT_API_URL"]
