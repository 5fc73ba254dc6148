"""
Platform client boundary.

The reconciler talks to the storefront and the ERP only through these
interfaces. Records go in and out in each platform's own JSON shape; the
normalizers in ``syncbridge.services.sync.normalizers`` translate between them.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional


class StorefrontClient(ABC):
    """Shopify Admin API surface used by the sync engine."""

    @abstractmethod
    async def list_products(
        self,
        product_ids: Optional[List[str]] = None,
        updated_since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Products with their variants"""
        pass

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a product; the response includes its id and variants"""
        pass

    @abstractmethod
    async def update_product(self, product_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_locations(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_inventory_level(self, inventory_item_id: str, location_id: str) -> int:
        """Available quantity of one inventory item at one location"""
        pass

    @abstractmethod
    async def set_inventory_level(self, inventory_item_id: str, location_id: str, available: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def list_orders(
        self,
        order_ids: Optional[List[str]] = None,
        created_since: Optional[datetime] = None,
        created_until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        pass


class ErpClient(ABC):
    """NetSuite REST surface used by the sync engine."""

    @abstractmethod
    async def search_items(
        self,
        item_ids: Optional[List[str]] = None,
        modified_since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_item(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_item(self, item_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_inventory(self, item_id: str) -> List[Dict[str, Any]]:
        """Per-location inventory rows, each with quantityAvailable"""
        pass

    @abstractmethod
    async def set_inventory_quantity(self, item_id: str, quantity: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_customer(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def create_sales_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_sales_order(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_sales_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        pass
