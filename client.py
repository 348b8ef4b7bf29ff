"""HTTP client for the order endpoints, used by the checkout flow."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from settings import API_BASE_URL

logger = logging.getLogger("coursecart.client")


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class OrdersApi:
    """Thin wrapper over the REST surface. Any `httpx.Client` works, including FastAPI's TestClient."""

    def __init__(self, token: str, http: Optional[httpx.Client] = None, base_url: str = API_BASE_URL):
        self.http = http or httpx.Client(base_url=base_url)
        self.token = token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise ApiError(0, "Network error, please try again") from exc
        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("detail") or body.get("error") or response.text
            except ValueError:
                message = response.text
            raise ApiError(response.status_code, str(message))
        return response.json()

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/auth/me")

    def create_order(self, course_id: str, amount: float) -> Dict[str, Any]:
        return self._request("POST", "/orders", json={"courseId": course_id, "amount": amount})["order"]

    def complete_payment(self, order_id: str, status: str = "delivered") -> Dict[str, Any]:
        return self._request("PUT", f"/orders/complete-payment/{order_id}", json={"status": status})["order"]

    def my_orders(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/orders/my-orders")["orders"]
