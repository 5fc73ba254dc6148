# syncbridge/integrations/netsuite.py
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from syncbridge.core.enums import PlatformName
from syncbridge.core.exceptions import PlatformAPIError
from syncbridge.integrations.base import ErpClient

logger = logging.getLogger(__name__)


class NetSuiteClient(ErpClient):
    """
    Thin NetSuite REST record client.

    Authentication is a pre-issued bearer token; token refresh happens outside
    this service. Record creation answers 204 with a Location header, from
    which the new internal id is read.
    """

    def __init__(self, account_id: str, access_token: str, timeout: float = 30.0):
        host = account_id.lower().replace("_", "-")
        self.base_url = f"https://{host}.suitetalk.api.netsuite.com/services/rest/record/v1"
        self.access_token = access_token
        self.timeout = timeout
        logger.info(f"Initializing NetSuiteClient for account {account_id}")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "transient",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """
        Make a request to the NetSuite REST API

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
            logger.error(f"NetSuite API error {response.status_code}: {response.text[:500]}")
            retry_after = response.headers.get("Retry-After")
            raise PlatformAPIError(
                f"NetSuite {method} {endpoint} failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                platform=PlatformName.NETSUITE.value,
                headers=dict(response.headers),
            )

        if response.status_code == 204 or not response.content:
            location = response.headers.get("Location")
            return {"id": location.rstrip("/").rsplit("/", 1)[-1]} if location else {}
        return response.json()

    async def _list_ids(self, record_type: str, query: Optional[str] = None) -> List[str]:
        params: Dict[str, Any] = {"limit": 1000}
        if query:
            params["q"] = query
        data = await self._make_request("GET", record_type, params=params)
        return [str(item["id"]) for item in data.get("items", [])]

    async def search_items(self, item_ids=None, modified_since=None) -> List[Dict[str, Any]]:
        if item_ids:
            ids = [str(i) for i in item_ids]
        else:
            query = None
            if modified_since:
                query = f'lastModifiedDate AFTER "{modified_since.strftime("%m/%d/%Y %I:%M %p")}"'
            ids = await self._list_ids("inventoryItem", query)

        items = []
        for item_id in ids:
            item = await self.get_item(item_id)
            if item is not None:
                items.append(item)
        return items

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._make_request("GET", f"inventoryItem/{item_id}", params={"expandSubResources": "true"})
        except PlatformAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def create_item(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._make_request("POST", "inventoryItem", data=payload)

    async def update_item(self, item_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self._make_request("PATCH", f"inventoryItem/{item_id}", data=payload)
        return {"id": str(item_id), **payload}

    async def get_inventory(self, item_id: str) -> List[Dict[str, Any]]:
        data = await self._make_request("GET", f"inventoryItem/{item_id}/locations", params={"expandSubResources": "true"})
        return data.get("items", [])

    async def set_inventory_quantity(self, item_id: str, quantity: int) -> Dict[str, Any]:
        # NetSuite has no "set"; post an adjustment for the difference
        locations = await self.get_inventory(item_id)
        current = sum(int(loc.get("quantityAvailable") or 0) for loc in locations)
        adjustment = quantity - current
        if adjustment == 0:
            return {"id": str(item_id), "adjustment": 0}
        location = locations[0].get("location") if locations else None
        payload = {
            "inventory": {"items": [{
                "item": {"id": str(item_id)},
                "adjustQtyBy": adjustment,
                "location": location,
            }]},
            "memo": "Inventory sync from storefront",
        }
        return await self._make_request("POST", "inventoryAdjustment", data=payload)

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ids = await self._list_ids("customer", f'email IS "{email}"')
        if not ids:
            return None
        return await self._make_request("GET", f"customer/{ids[0]}")

    async def create_customer(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._make_request("POST", "customer", data=payload)

    async def create_sales_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._make_request("POST", "salesOrder", data=payload)

    async def get_sales_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._make_request("GET", f"salesOrder/{order_id}", params={"expandSubResources": "true"})
        except PlatformAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def update_sales_order(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self._make_request("PATCH", f"salesOrder/{order_id}", data=payload)
        return {"id": str(order_id), **payload}
