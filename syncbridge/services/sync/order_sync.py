# syncbridge/services/sync/order_sync.py
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from syncbridge.core.enums import (
    ChangeOperation,
    ChangeSource,
    EntityType,
    MappingKind,
    MappingStatus,
    PlatformName,
    SnapshotType,
    SyncDataType,
)
from syncbridge.core.exceptions import MappingError, PlatformAPIError, ValidationError
from syncbridge.services.batch_runner import run_batched
from syncbridge.services.currency import ConversionResult
from syncbridge.services.sync.context import SyncContext
from syncbridge.services.sync.product_sync import leg_direction
from syncbridge.services.sync.types import PassResult, SyncFilters

logger = logging.getLogger(__name__)


def sales_order_key(order_id: str) -> str:
    """Snapshot key for an ERP sales order, kept apart from catalog entity ids."""
    return f"salesOrder/{order_id}"


class OrderSyncService:
    """
    Storefront orders become ERP sales orders. Orders only flow
    Shopify -> NetSuite; the reverse leg is reported and skipped.
    """

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx

    async def sync(
        self,
        source: PlatformName,
        target: PlatformName,
        filters: SyncFilters,
        since: Optional[datetime] = None,
    ) -> PassResult:
        source, target = PlatformName(source), PlatformName(target)
        result = PassResult(SyncDataType.ORDERS, leg_direction(source, target))

        if source != PlatformName.SHOPIFY:
            result.warnings.append(
                f"Order sync runs from Shopify to NetSuite only; skipped {source.value} -> {target.value}"
            )
            return result

        orders = await self.ctx.call(
            source,
            self.ctx.storefront.list_orders,
            order_ids=filters.order_ids,
            created_since=since,
            created_until=filters.date_to,
        )
        logger.info(f"Order sync: {len(orders)} Shopify order(s)")

        async def process(order: Dict[str, Any]) -> str:
            return await self.sync_order(order, result)

        outcomes = await run_batched(orders, process, await self.ctx.concurrency(target))

        result.items_processed = len(orders)
        for outcome in outcomes:
            if outcome.success:
                result.items_succeeded += 1
            else:
                result.record_failure(str(outcome.item.get("id")), outcome.error)
        return result

    async def sync_order(self, order: Dict[str, Any], result: Optional[PassResult] = None) -> str:
        """
        Create or update the NetSuite sales order for one Shopify order.

        Args:
            order: Shopify order resource
            result: Pass result that collects conversion warnings

        Returns:
            "create" or "update"
        """
        ctx = self.ctx
        started = time.monotonic()
        order_id = str(order["id"])
        order_number = str(order.get("name") or order.get("order_number") or order_id)
        total = float(order.get("total_price") or 0)
        currency = (order.get("currency") or ctx.settings.BASE_CURRENCY).upper()

        mapping = await ctx.mappings.find_or_create_mapping(
            MappingKind.ORDER, ctx.user_id, PlatformName.SHOPIFY, order_id, PlatformName.NETSUITE,
            extra={"order_number": order_number, "currency": currency, "total_amount": total},
        )
        target_id = ctx.mappings.resolve_target(mapping)
        before = None

        try:
            customer_id = await self.resolve_customer(order)
            conversion = await self.convert_total(total, currency, result)
            lines = await self.build_lines(order, conversion.exchange_rate)
            payload = {
                "entity": {"id": customer_id},
                "otherRefNum": order_number,
                "tranDate": str(order.get("created_at") or "")[:10] or None,
                "currency": {"refName": conversion.base_currency},
                "exchangeRate": conversion.exchange_rate,
                "memo": f"Shopify order {order_number}",
                "item": {"items": lines},
            }

            if target_id is None:
                created = await ctx.call(PlatformName.NETSUITE, ctx.erp.create_sales_order, payload)
                if not created or created.get("id") is None:
                    raise PlatformAPIError(
                        f"NetSuite create returned no id for Shopify order {order_id}",
                        platform=PlatformName.NETSUITE.value,
                    )
                target_id = str(created["id"])
                await ctx.mappings.bind_target(MappingKind.ORDER, mapping.id, target_id)
                operation = ChangeOperation.CREATE
            else:
                previous = await ctx.call(PlatformName.NETSUITE, ctx.erp.get_sales_order, target_id)
                before = await ctx.snapshots.snapshot_data(
                    ctx.user_id, sales_order_key(target_id), PlatformName.NETSUITE,
                    previous or {}, SnapshotType.PRE_SYNC, ctx.sync_log_id,
                )
                await ctx.call(PlatformName.NETSUITE, ctx.erp.update_sales_order, target_id, payload)
                await ctx.mappings.mark_status(MappingKind.ORDER, mapping.id, MappingStatus.COMPLETED)
                operation = ChangeOperation.UPDATE

            await ctx.mappings.update_fields(
                MappingKind.ORDER,
                mapping.id,
                currency=conversion.original_currency,
                total_amount=conversion.original_amount,
                base_currency=conversion.base_currency,
                exchange_rate=conversion.exchange_rate,
                converted_amount=conversion.converted_amount,
            )
        except Exception as exc:
            logger.error(f"Order sync failed for Shopify order {order_id}: {exc}")
            await ctx.mappings.mark_status(MappingKind.ORDER, mapping.id, MappingStatus.FAILED, str(exc))
            await ctx.record_history(
                EntityType.ORDER, order_id, target_id, PlatformName.NETSUITE,
                "create" if target_id is None else "update", "failed", started, error=str(exc),
            )
            raise

        await ctx.change_tracker.log_change(
            ctx.user_id,
            EntityType.ORDER,
            target_id,
            PlatformName.NETSUITE,
            operation,
            new_value={
                "order_number": order_number,
                "total": conversion.converted_amount,
                "currency": conversion.base_currency,
                "lines": len(lines),
            },
            change_source=ChangeSource.SYNC,
            sync_log_id=ctx.sync_log_id,
            triggered_by=f"shopify:{order_id}",
            before_snapshot_id=before.id if before is not None else None,
        )
        await ctx.record_history(
            EntityType.ORDER, order_id, target_id, PlatformName.NETSUITE, operation.value, "success", started,
        )
        logger.info(f"Shopify order {order_number} -> NetSuite sales order {target_id} ({operation.value})")
        return operation.value

    async def resolve_customer(self, order: Dict[str, Any]) -> str:
        """
        NetSuite customer id for the order's buyer, creating the customer if needed.
        Orders of one buyer in the same batch resolve one at a time.
        """
        customer = order.get("customer") or {}
        email = customer.get("email") or order.get("email")
        if not email:
            raise ValidationError(f"Shopify order {order.get('id')} has no customer email")
        source_id = str(customer.get("id") or email)

        async with self.ctx.lock_for(MappingKind.CUSTOMER.value, source_id):
            return await self._resolve_customer(order, customer, email, source_id)

    async def _resolve_customer(self, order: Dict[str, Any], customer: Dict[str, Any], email: str, source_id: str) -> str:
        ctx = self.ctx
        mapping = await ctx.mappings.find_or_create_mapping(
            MappingKind.CUSTOMER, ctx.user_id, PlatformName.SHOPIFY, source_id, PlatformName.NETSUITE,
            extra={"email": email},
        )
        existing_id = ctx.mappings.resolve_target(mapping)
        if existing_id:
            return existing_id

        found = await ctx.call(PlatformName.NETSUITE, ctx.erp.find_customer_by_email, email)
        if found:
            customer_id = str(found["id"])
        else:
            billing = order.get("billing_address") or {}
            created = await ctx.call(PlatformName.NETSUITE, ctx.erp.create_customer, {
                "email": email,
                "firstName": customer.get("first_name") or billing.get("first_name"),
                "lastName": customer.get("last_name") or billing.get("last_name"),
                "companyName": billing.get("company"),
                "phone": customer.get("phone") or billing.get("phone"),
            })
            if not created or created.get("id") is None:
                raise PlatformAPIError(
                    f"NetSuite create returned no id for customer {email}",
                    platform=PlatformName.NETSUITE.value,
                )
            customer_id = str(created["id"])
            logger.info(f"Created NetSuite customer {customer_id} for {email}")

        await ctx.mappings.bind_target(MappingKind.CUSTOMER, mapping.id, customer_id)
        return customer_id

    async def convert_total(
        self,
        amount: float,
        currency: str,
        result: Optional[PassResult] = None,
    ) -> ConversionResult:
        """Convert into the base currency, keeping the original amount when conversion fails."""
        base = self.ctx.settings.BASE_CURRENCY.upper()
        if currency == base:
            return ConversionResult(amount, currency, amount, base, 1.0)

        try:
            if self.ctx.currency is None:
                raise ValidationError("No currency service configured")
            return await self.ctx.currency.convert(amount, currency, base)
        except Exception as exc:
            message = f"Currency conversion {currency}->{base} failed ({exc}); using original amount"
            logger.warning(message)
            if result is not None:
                result.warnings.append(message)
            return ConversionResult(amount, currency, amount, base, 1.0)

    async def build_lines(self, order: Dict[str, Any], exchange_rate: float) -> List[Dict[str, Any]]:
        """
        NetSuite sales order lines. Every line must map to a known item.

        Raises:
            MappingError: a line's product has never been synced
        """
        ctx = self.ctx
        lines = []
        for line in order.get("line_items") or []:
            product_id = str(line.get("product_id"))
            mapping = await ctx.mappings.get_mapping(MappingKind.ITEM, ctx.user_id, PlatformName.SHOPIFY, product_id)
            item_id = ctx.mappings.resolve_target(mapping)
            if item_id is None:
                reverse = await ctx.mappings.find_by_target(MappingKind.ITEM, ctx.user_id, PlatformName.SHOPIFY, product_id)
                item_id = reverse.source_system_id if reverse is not None else None
            if item_id is None:
                raise MappingError(f"No NetSuite item mapped for Shopify product {product_id} (sku {line.get('sku')})")

            lines.append({
                "item": {"id": item_id},
                "quantity": int(line.get("quantity") or 0),
                "rate": round(float(line.get("price") or 0) * exchange_rate, 2),
            })
        return lines
