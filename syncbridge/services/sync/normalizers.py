# syncbridge/services/sync/normalizers.py
"""
Translation between platform record shapes and a common catalog record.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from syncbridge.core.enums import PlatformName

# Fields compared between source and target to build diff-based updates
SYNCED_FIELDS = ("sku", "name", "description", "price", "is_active")


@dataclass
class CatalogVariant:
    variant_id: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = None
    inventory_item_id: Optional[str] = None
    quantity: int = 0


@dataclass
class CatalogRecord:
    platform: PlatformName
    external_id: str
    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    quantity: int = 0
    is_active: bool = True
    attributes: Dict[str, Any] = field(default_factory=dict)
    variants: List[CatalogVariant] = field(default_factory=list)

    def synced_values(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in SYNCED_FIELDS}

    def mirror_values(self) -> Dict[str, Any]:
        """Column values for the local products mirror."""
        return {
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "inventory_quantity": self.quantity,
            "is_active": self.is_active,
            "attributes": self.attributes,
        }


Transform = Callable[[CatalogRecord, PlatformName], CatalogRecord]


def identity_transform(record: CatalogRecord, target: PlatformName) -> CatalogRecord:
    return record


def _to_float(value) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def normalize_shopify_product(product: Dict[str, Any]) -> CatalogRecord:
    variants = [
        CatalogVariant(
            variant_id=str(v["id"]) if v.get("id") is not None else None,
            sku=v.get("sku") or None,
            price=_to_float(v.get("price")),
            inventory_item_id=str(v["inventory_item_id"]) if v.get("inventory_item_id") is not None else None,
            quantity=int(v.get("inventory_quantity") or 0),
        )
        for v in product.get("variants") or []
    ]
    first = variants[0] if variants else CatalogVariant()
    return CatalogRecord(
        platform=PlatformName.SHOPIFY,
        external_id=str(product["id"]),
        sku=first.sku,
        name=product.get("title"),
        description=product.get("body_html"),
        price=first.price,
        quantity=sum(v.quantity for v in variants),
        is_active=product.get("status", "active") == "active",
        attributes={
            "vendor": product.get("vendor"),
            "product_type": product.get("product_type"),
            "tags": product.get("tags"),
        },
        variants=variants,
    )


def netsuite_location_rows(item_or_rows: Any) -> List[Dict[str, Any]]:
    """Location rows from an item (expanded sub-resource) or a bare list."""
    if isinstance(item_or_rows, list):
        return item_or_rows
    locations = (item_or_rows or {}).get("locations") or []
    if isinstance(locations, dict):
        return locations.get("items", [])
    return locations


def netsuite_quantity(item_or_rows: Any) -> int:
    return sum(int(row.get("quantityAvailable") or 0) for row in netsuite_location_rows(item_or_rows))


def normalize_netsuite_item(item: Dict[str, Any]) -> CatalogRecord:
    return CatalogRecord(
        platform=PlatformName.NETSUITE,
        external_id=str(item["id"]),
        sku=item.get("itemId"),
        name=item.get("displayName") or item.get("itemId"),
        description=item.get("salesDescription") or item.get("description"),
        price=_to_float(item.get("basePrice")),
        quantity=netsuite_quantity(item),
        is_active=not item.get("isInactive", False),
        attributes={
            "upc_code": item.get("upcCode"),
            "weight": item.get("weight"),
        },
    )


def normalize(record: Dict[str, Any], platform: PlatformName) -> CatalogRecord:
    if PlatformName(platform) == PlatformName.SHOPIFY:
        return normalize_shopify_product(record)
    return normalize_netsuite_item(record)


def build_create_payload(record: CatalogRecord, target: PlatformName) -> Dict[str, Any]:
    if PlatformName(target) == PlatformName.SHOPIFY:
        return {
            "title": record.name,
            "body_html": record.description or "",
            "status": "active" if record.is_active else "draft",
            "variants": [{
                "sku": record.sku,
                "price": f"{record.price:.2f}" if record.price is not None else None,
                "inventory_management": "shopify",
            }],
        }
    return {
        "itemId": record.sku or record.name,
        "displayName": record.name,
        "salesDescription": record.description,
        "basePrice": record.price,
        "isInactive": not record.is_active,
    }


def diff_fields(source: CatalogRecord, target: CatalogRecord) -> Dict[str, Any]:
    """Synced fields whose source value differs from the target's."""
    current = target.synced_values()
    return {name: value for name, value in source.synced_values().items() if current.get(name) != value}


def build_update_payload(changes: Dict[str, Any], target_record: CatalogRecord) -> Dict[str, Any]:
    """Platform payload carrying only the changed fields."""
    if target_record.platform == PlatformName.SHOPIFY:
        payload: Dict[str, Any] = {}
        if "name" in changes:
            payload["title"] = changes["name"]
        if "description" in changes:
            payload["body_html"] = changes["description"] or ""
        if "is_active" in changes:
            payload["status"] = "active" if changes["is_active"] else "draft"
        variant_changes: Dict[str, Any] = {}
        if "sku" in changes:
            variant_changes["sku"] = changes["sku"]
        if "price" in changes and changes["price"] is not None:
            variant_changes["price"] = f"{changes['price']:.2f}"
        if variant_changes and target_record.variants:
            payload["variants"] = [{"id": target_record.variants[0].variant_id, **variant_changes}]
        return payload

    field_map = {
        "sku": "itemId",
        "name": "displayName",
        "description": "salesDescription",
        "price": "basePrice",
    }
    payload = {field_map[name]: value for name, value in changes.items() if name in field_map}
    if "is_active" in changes:
        payload["isInactive"] = not changes["is_active"]
    return payload
