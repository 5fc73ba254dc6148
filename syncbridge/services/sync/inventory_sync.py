# syncbridge/services/sync/inventory_sync.py
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from syncbridge.core.enums import (
    ChangeOperation,
    ChangeSource,
    EntityType,
    MappingKind,
    PlatformName,
    SnapshotType,
    SyncDataType,
)
from syncbridge.core.exceptions import MappingError, SyncError, ValidationError
from syncbridge.services.batch_runner import run_batched
from syncbridge.services.sync.context import SyncContext
from syncbridge.services.sync.normalizers import netsuite_quantity
from syncbridge.services.sync.product_sync import leg_direction
from syncbridge.services.sync.types import PassResult, SyncFilters

logger = logging.getLogger(__name__)


def inventory_key(external_id: str) -> str:
    """Snapshot key for stock held on a record that has no catalog mirror row."""
    return f"inventory/{external_id}"


@dataclass
class InventoryPair:
    shopify_id: str
    netsuite_id: str

    def id_on(self, platform: PlatformName) -> str:
        return self.shopify_id if platform == PlatformName.SHOPIFY else self.netsuite_id


class InventorySyncService:
    """
    Stock level pass over mapped items. The source quantity is written to the
    target when the two differ by more than the threshold.
    """

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self._location_id: Optional[str] = None

    async def _pairs(self, product_ids: Optional[Sequence[str]] = None) -> List[InventoryPair]:
        """Bound item mappings from both directions, one pair per linked item."""
        mappings = await self.ctx.mappings.list_bound(MappingKind.ITEM, self.ctx.user_id)
        wanted = {str(p) for p in product_ids} if product_ids else None

        pairs: Dict[Tuple[str, str], InventoryPair] = {}
        for mapping in mappings:
            if mapping.source_platform == PlatformName.SHOPIFY.value:
                pair = InventoryPair(mapping.source_system_id, mapping.target_system_id)
            else:
                pair = InventoryPair(mapping.target_system_id, mapping.source_system_id)
            if wanted and pair.shopify_id not in wanted and pair.netsuite_id not in wanted:
                continue
            pairs.setdefault((pair.shopify_id, pair.netsuite_id), pair)
        return list(pairs.values())

    async def _shopify_location(self) -> str:
        if self._location_id is None:
            locations = await self.ctx.call(PlatformName.SHOPIFY, self.ctx.storefront.get_locations)
            if not locations:
                raise SyncError("Shopify store has no inventory locations")
            self._location_id = str(locations[0]["id"])
        return self._location_id

    async def _shopify_inventory_item(self, shopify_id: str) -> str:
        product = await self.ctx.call(PlatformName.SHOPIFY, self.ctx.storefront.get_product, shopify_id)
        if product is None:
            raise MappingError(f"Mapped Shopify product {shopify_id} no longer exists")
        for variant in product.get("variants") or []:
            if variant.get("inventory_item_id") is not None:
                return str(variant["inventory_item_id"])
        raise ValidationError(f"Shopify product {shopify_id} has no inventory-tracked variant")

    async def _read_quantities(self, pair: InventoryPair) -> Dict[str, Any]:
        ctx = self.ctx
        location_id = await self._shopify_location()
        inventory_item_id = await self._shopify_inventory_item(pair.shopify_id)
        shopify_qty = await ctx.call(
            PlatformName.SHOPIFY, ctx.storefront.get_inventory_level, inventory_item_id, location_id,
        )
        rows = await ctx.call(PlatformName.NETSUITE, ctx.erp.get_inventory, pair.netsuite_id)
        return {
            "location_id": location_id,
            "inventory_item_id": inventory_item_id,
            PlatformName.SHOPIFY: int(shopify_qty),
            PlatformName.NETSUITE: netsuite_quantity(rows),
        }

    async def sync(
        self,
        source: PlatformName,
        target: PlatformName,
        filters: SyncFilters,
        threshold: Optional[int] = None,
    ) -> PassResult:
        """
        Push stock levels from ``source`` to ``target`` for every mapped item.

        Args:
            source: Platform whose quantity is authoritative
            target: Platform to update
            filters: Product ids (either side) and the full-sync flag
            threshold: Absolute differences up to this many units are left
                alone unless ``filters.full_sync`` is set

        Returns:
            PassResult whose ``quantity_updates`` counts remote writes
        """
        source, target = PlatformName(source), PlatformName(target)
        if threshold is None:
            threshold = filters.inventory_threshold
        if threshold is None:
            threshold = self.ctx.settings.INVENTORY_SYNC_THRESHOLD

        result = PassResult(SyncDataType.INVENTORY, leg_direction(source, target))
        pairs = await self._pairs(filters.product_ids)
        logger.info(f"Inventory sync {source.value} -> {target.value}: {len(pairs)} mapped item(s), threshold {threshold}")

        async def process(pair: InventoryPair) -> bool:
            return await self.sync_pair(pair, source, target, threshold, filters.full_sync)

        outcomes = await run_batched(pairs, process, await self.ctx.concurrency(target))

        result.items_processed = len(pairs)
        for outcome in outcomes:
            if outcome.success:
                result.items_succeeded += 1
                if outcome.value:
                    result.quantity_updates += 1
                else:
                    result.items_skipped += 1
            else:
                result.record_failure(outcome.item.id_on(source), outcome.error)
        return result

    async def sync_pair(
        self,
        pair: InventoryPair,
        source: PlatformName,
        target: PlatformName,
        threshold: int,
        full_sync: bool = False,
    ) -> bool:
        """Returns True when the target quantity was written."""
        ctx = self.ctx
        started = time.monotonic()
        source_id, target_id = pair.id_on(source), pair.id_on(target)

        try:
            levels = await self._read_quantities(pair)
            source_qty, target_qty = levels[source], levels[target]
            delta = source_qty - target_qty

            if delta == 0 or (not full_sync and abs(delta) <= threshold):
                logger.debug(f"Inventory {source.value}:{source_id}={source_qty} vs {target.value}:{target_id}={target_qty}; no update")
                await ctx.record_history(
                    EntityType.INVENTORY, source_id, target_id, target, "skip", "success", started,
                    details={"source_quantity": source_qty, "target_quantity": target_qty},
                )
                return False

            await ctx.update_mirror_quantity(target, target_id, target_qty)
            before = await self._capture(target, target_id, target_qty, SnapshotType.PRE_SYNC)

            if target == PlatformName.SHOPIFY:
                await ctx.call(
                    target, ctx.storefront.set_inventory_level,
                    levels["inventory_item_id"], levels["location_id"], source_qty,
                )
            else:
                await ctx.call(target, ctx.erp.set_inventory_quantity, target_id, source_qty)
        except Exception as exc:
            logger.error(f"Inventory sync failed for {source.value}:{source_id}: {exc}")
            await ctx.record_history(
                EntityType.INVENTORY, source_id, target_id, target, "update", "failed", started, error=str(exc),
            )
            raise

        await ctx.update_mirror_quantity(target, target_id, source_qty)
        after = await self._capture(target, target_id, source_qty, SnapshotType.POST_SYNC)
        await ctx.change_tracker.log_change(
            ctx.user_id,
            EntityType.INVENTORY,
            target_id,
            target,
            ChangeOperation.UPDATE,
            field_name="inventory_quantity",
            old_value=target_qty,
            new_value=source_qty,
            change_source=ChangeSource.SYNC,
            sync_log_id=ctx.sync_log_id,
            triggered_by=f"{source.value}:{source_id}",
            before_snapshot_id=before.id,
            after_snapshot_id=after.id,
        )
        await ctx.record_metric(
            "inventory_sync",
            "quantity_update",
            delta,
            unit="units",
            platform=target,
            tags={"source_id": source_id, "target_id": target_id, "sync_log_id": ctx.sync_log_id},
        )
        await ctx.record_history(
            EntityType.INVENTORY, source_id, target_id, target, "update", "success", started,
            details={"old_quantity": target_qty, "new_quantity": source_qty, "delta": delta},
        )
        logger.info(f"Inventory {target.value}:{target_id} {target_qty} -> {source_qty} ({delta:+d})")
        return True

    async def _capture(self, platform: PlatformName, external_id: str, quantity: int, snapshot_type: SnapshotType):
        """Snapshot the stock state of a target record: its mirror row when there is one."""
        ctx = self.ctx
        if await ctx.get_mirror(platform, external_id) is not None:
            return await ctx.snapshots.snapshot(ctx.user_id, external_id, platform, snapshot_type, ctx.sync_log_id)
        return await ctx.snapshots.snapshot_data(
            ctx.user_id, inventory_key(external_id), platform,
            {"inventory_quantity": quantity}, snapshot_type, ctx.sync_log_id,
        )

    async def get_inventory_discrepancies(
        self,
        product_ids: Optional[Sequence[str]] = None,
        threshold: int = 0,
    ) -> List[Dict[str, Any]]:
        """Mapped items whose stock differs by more than ``threshold``, without writing anything."""
        discrepancies = []
        for pair in await self._pairs(product_ids):
            try:
                levels = await self._read_quantities(pair)
            except Exception as exc:
                logger.warning(f"Could not read inventory for {pair}: {exc}")
                discrepancies.append({
                    "shopify_id": pair.shopify_id,
                    "netsuite_id": pair.netsuite_id,
                    "error": str(exc),
                })
                continue

            difference = levels[PlatformName.NETSUITE] - levels[PlatformName.SHOPIFY]
            if abs(difference) > threshold:
                discrepancies.append({
                    "shopify_id": pair.shopify_id,
                    "netsuite_id": pair.netsuite_id,
                    "shopify_quantity": levels[PlatformName.SHOPIFY],
                    "netsuite_quantity": levels[PlatformName.NETSUITE],
                    "difference": difference,
                })
        return discrepancies
