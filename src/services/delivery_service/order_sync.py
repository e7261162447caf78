from typing import Any, Optional

import httpx

from src.common.constants import OrderStatus, TypeMsg
from src.common.exceptions import UpstreamUnavailable
from src.common.logger import log_info, log_warning


class OrderServiceClient:
    """
    Talks to the order service: status mirror and order details for reads.

    Best-effort: one call, bounded by a timeout, no retry. A failure is
    logged and reported as False (or None); the delivery write it follows stands.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, timeout: float = 5.0):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def mirror_order_status(self, order_id: str, status: OrderStatus, token: Optional[str] = None) -> bool:
        try:
            await self._request(
                "PATCH",
                f"/api/orders/{order_id}/status",
                json={"status": status.value},
                token=token,
            )
        except UpstreamUnavailable as e:
            await log_warning(f"Order {order_id} status mirror ({status.value}) skipped: {e.message}")
            return False
        except Exception as e:
            await log_warning(f"Order {order_id} status mirror ({status.value}) failed: {e!r}")
            return False

        await log_info(f"Order {order_id} status mirrored as {status.value}", type_msg=TypeMsg.DEBUG)
        return True

    async def get_order(self, order_id: str, token: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Order details to attach to a delivery read; None when the order service can't help."""
        try:
            response = await self._request("GET", f"/api/orders/{order_id}", token=token)
            order = response.json()
        except UpstreamUnavailable as e:
            await log_warning(f"Order {order_id} details unavailable: {e.message}")
            return None
        except Exception as e:
            await log_warning(f"Order {order_id} details unavailable: {e!r}")
            return None

        if not isinstance(order, dict):
            await log_warning(f"Order {order_id} details ignored: unexpected payload")
            return None
        return order

    async def _request(self, method: str, path: str, json: Any = None, token: Optional[str] = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"Order service answered {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Order service unreachable: {e.__class__.__name__}") from e
        return response
