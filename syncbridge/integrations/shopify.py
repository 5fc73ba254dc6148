# syncbridge/integrations/shopify.py
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from syncbridge.core.enums import PlatformName
from syncbridge.core.exceptions import PlatformAPIError
from syncbridge.integrations.base import StorefrontClient

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ShopifyClient(StorefrontClient):
    """
    Thin Shopify Admin REST client.

    Every call raises PlatformAPIError on a non-2xx response, carrying the
    status code and any Retry-After so the rate gate can react. Pagination is
    not followed; callers get the first page (250 records).
    """

    PAGE_LIMIT = 250

    def __init__(self, shop_url: str, access_token: str, api_version: str = "2024-01", timeout: float = 30.0):
        shop = shop_url.replace("https://", "").replace("http://", "").rstrip("/")
        self.base_url = f"https://{shop}/admin/api/{api_version}"
        self.access_token = access_token
        self.timeout = timeout
        logger.info(f"Initializing ShopifyClient for {shop} (API {api_version})")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """
        Make a request to the Shopify Admin API

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (without base URL)
            data: Request payload for POST/PUT requests
            params: Query parameters

        Returns:
            Dict: Response data

        Raises:
            PlatformAPIError: If the API request fails
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")
        if data:
            logger.debug(f"Data: {json.dumps(data)[:500]}...")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method=method,
                url=url,
                headers=self._get_headers(),
                json=data,
                params=params,
            )

        if response.status_code >= 400:
            logger.error(f"Shopify API error {response.status_code}: {response.text[:500]}")
            raise PlatformAPIError(
                f"Shopify {method} {endpoint} failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
                platform=PlatformName.SHOPIFY.value,
                headers=dict(response.headers),
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def list_products(self, product_ids=None, updated_since=None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": self.PAGE_LIMIT}
        if product_ids:
            params["ids"] = ",".join(str(p) for p in product_ids)
        if updated_since:
            params["updated_at_min"] = updated_since.isoformat()
        data = await self._make_request("GET", "products.json", params=params)
        return data.get("products", [])

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._make_request("GET", f"products/{product_id}.json")
        except PlatformAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return data.get("product")

    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._make_request("POST", "products.json", data={"product": payload})
        return data.get("product", {})

    async def update_product(self, product_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._make_request("PUT", f"products/{product_id}.json", data={"product": {"id": product_id, **payload}})
        return data.get("product", {})

    async def get_locations(self) -> List[Dict[str, Any]]:
        data = await self._make_request("GET", "locations.json")
        return data.get("locations", [])

    async def get_inventory_level(self, inventory_item_id: str, location_id: str) -> int:
        data = await self._make_request(
            "GET",
            "inventory_levels.json",
            params={"inventory_item_ids": inventory_item_id, "location_ids": location_id},
        )
        levels = data.get("inventory_levels", [])
        return int(levels[0].get("available") or 0) if levels else 0

    async def set_inventory_level(self, inventory_item_id: str, location_id: str, available: int) -> Dict[str, Any]:
        data = await self._make_request(
            "POST",
            "inventory_levels/set.json",
            data={"location_id": location_id, "inventory_item_id": inventory_item_id, "available": available},
        )
        return data.get("inventory_level", {})

    async def list_orders(
        self,
        order_ids: Optional[List[str]] = None,
        created_since: Optional[datetime] = None,
        created_until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": self.PAGE_LIMIT, "status": "any"}
        if order_ids:
            params["ids"] = ",".join(str(o) for o in order_ids)
        if created_since:
            params["created_at_min"] = created_since.isoformat()
        if created_until:
            params["created_at_max"] = created_until.isoformat()
        data = await self._make_request("GET", "orders.json", params=params)
        return data.get("orders", [])
