"""
HTTP client for the backlog board API.

Thin wrapper over requests: JSON in, JSON out, the project secret in the
X-Project-Secret header, and every failure raised as ApiError.
"""
from typing import Any, Dict, List, Optional

import requests

SECRET_HEADER = "X-Project-Secret"


class ApiError(Exception):
    """Request rejected by the server (status_code set) or never answered (None)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BacklogClient:
    """Calls the /api routes of a backlog server.

    base_url includes the /api prefix, e.g. http://localhost:5000/api
    """

    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(
        self,
        path: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        secret_key: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if secret_key:
            headers[SECRET_HEADER] = secret_key

        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ApiError(f"Request failed: {e}") from e

        if not response.ok:
            try:
                data = response.json()
            except ValueError:
                data = None
            message = data.get("error") if isinstance(data, dict) else None
            raise ApiError(
                message or f"Request failed with status {response.status_code}",
                response.status_code,
            )

        if response.status_code == 204:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Invalid response from server.", response.status_code) from e

    # ── Projects ──

    def create_project(self, name: str, secret_key: str) -> Dict[str, Any]:
        return self._request("/projects", "POST", {"name": name, "secretKey": secret_key})

    def access_project(self, secret_key: str) -> Dict[str, Any]:
        return self._request("/access", "POST", {"secretKey": secret_key})

    def list_projects(self) -> List[Dict[str, Any]]:
        return self._request("/projects")["projects"]

    def fetch_project(self, project_id: str, secret_key: str) -> Dict[str, Any]:
        return self._request(f"/projects/{project_id}", secret_key=secret_key)

    def delete_project(self, project_id: str, secret_key: str) -> None:
        self._request(f"/projects/{project_id}", "DELETE", secret_key=secret_key)

    # ── Items ──

    def fetch_columns(self, project_id: str, secret_key: str) -> Dict[str, Any]:
        return self._request(f"/projects/{project_id}/items", secret_key=secret_key)

    def create_item(self, project_id: str, secret_key: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(f"/projects/{project_id}/items", "POST", item, secret_key)

    def update_item(
        self, project_id: str, secret_key: str, item_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self._request(f"/projects/{project_id}/items/{item_id}", "PATCH", updates, secret_key)

    def delete_item(self, project_id: str, secret_key: str, item_id: str) -> None:
        self._request(f"/projects/{project_id}/items/{item_id}", "DELETE", secret_key=secret_key)

    def reorder_items(
        self, project_id: str, secret_key: str, columns: Dict[str, List[str]]
    ) -> Dict[str, Any]:
        data = self._request(
            f"/projects/{project_id}/items/reorder", "POST", {"columns": columns}, secret_key
        )
        if not isinstance(data, dict) or not isinstance(data.get("columns"), dict):
            raise ApiError("Invalid response from server: no columns.")
        return data
