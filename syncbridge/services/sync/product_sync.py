# syncbridge/services/sync/product_sync.py
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Optional

from syncbridge.core.enums import (
    ChangeOperation,
    ChangeSource,
    EntityType,
    MappingKind,
    MappingStatus,
    PlatformName,
    SnapshotType,
    SyncDataType,
    SyncDirection,
)
from syncbridge.core.exceptions import PlatformAPIError
from syncbridge.services.batch_runner import run_batched
from syncbridge.services.change_tracker import FieldChange
from syncbridge.services.sync.context import SyncContext
from syncbridge.services.sync.normalizers import (
    CatalogRecord,
    build_create_payload,
    build_update_payload,
    diff_fields,
    normalize,
)
from syncbridge.services.sync.types import PassResult, SyncFilters

logger = logging.getLogger(__name__)


def leg_direction(source: PlatformName, target: PlatformName) -> SyncDirection:
    return SyncDirection(f"{PlatformName(source).value}_to_{PlatformName(target).value}")


class ProductSyncService:
    """
    Catalog pass for one direction: create what the target lacks, push
    field-level differences for what it already has.
    """

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx

    async def _list_source(self, source: PlatformName, filters: SyncFilters, since: Optional[datetime]):
        if source == PlatformName.SHOPIFY:
            return await self.ctx.call(
                source, self.ctx.storefront.list_products,
                product_ids=filters.product_ids, updated_since=since,
            )
        return await self.ctx.call(
            source, self.ctx.erp.search_items,
            item_ids=filters.product_ids, modified_since=since,
        )

    async def _get_target(self, target: PlatformName, target_id: str):
        if target == PlatformName.SHOPIFY:
            return await self.ctx.call(target, self.ctx.storefront.get_product, target_id)
        return await self.ctx.call(target, self.ctx.erp.get_item, target_id)

    async def _create_target(self, target: PlatformName, payload):
        if target == PlatformName.SHOPIFY:
            return await self.ctx.call(target, self.ctx.storefront.create_product, payload)
        return await self.ctx.call(target, self.ctx.erp.create_item, payload)

    async def _update_target(self, target: PlatformName, target_id: str, payload):
        if target == PlatformName.SHOPIFY:
            return await self.ctx.call(target, self.ctx.storefront.update_product, target_id, payload)
        return await self.ctx.call(target, self.ctx.erp.update_item, target_id, payload)

    async def sync(
        self,
        source: PlatformName,
        target: PlatformName,
        filters: SyncFilters,
        since: Optional[datetime] = None,
    ) -> PassResult:
        """
        Reconcile catalog records from ``source`` into ``target``.

        Args:
            source: Platform records are read from
            target: Platform records are written to
            filters: Explicit product ids and the full-sync flag
            since: Only consider source records changed after this time

        Returns:
            PassResult with per-item counts and errors
        """
        source, target = PlatformName(source), PlatformName(target)
        result = PassResult(SyncDataType.PRODUCTS, leg_direction(source, target))

        raw_records = await self._list_source(source, filters, since)
        records = [normalize(raw, source) for raw in raw_records]
        logger.info(f"Product sync {source.value} -> {target.value}: {len(records)} candidate record(s)")

        async def process(record: CatalogRecord) -> str:
            return await self.sync_record(record, target)

        outcomes = await run_batched(records, process, await self.ctx.concurrency(target))

        result.items_processed = len(records)
        for outcome in outcomes:
            if outcome.success:
                result.items_succeeded += 1
                if outcome.value == "skip":
                    result.items_skipped += 1
            else:
                result.record_failure(outcome.item.external_id, outcome.error)
        return result

    async def sync_record(self, record: CatalogRecord, target: PlatformName) -> str:
        """
        Create or update the target counterpart of one source record.

        Returns:
            "create", "update" or "skip"
        """
        ctx = self.ctx
        started = time.monotonic()
        target = PlatformName(target)

        await ctx.upsert_mirror(record)
        mapping = await ctx.mappings.find_or_create_mapping(
            MappingKind.ITEM, ctx.user_id, record.platform, record.external_id, target,
            extra={"sku": record.sku},
        )
        pushed = ctx.transform(record, target)
        target_id = ctx.mappings.resolve_target(mapping)

        try:
            if target_id is None:
                operation, target_id = "create", await self._create(record, pushed, target, mapping.id)
            else:
                existing = await self._get_target(target, target_id)
                if existing is None:
                    logger.warning(
                        f"{target.display_name} record {target_id} mapped from {record.platform.value}:"
                        f"{record.external_id} is gone; recreating it"
                    )
                    operation, target_id = "create", await self._create(record, pushed, target, mapping.id, rebind=True)
                else:
                    operation = await self._update(pushed, normalize(existing, target), mapping.id)
        except Exception as exc:
            logger.error(f"Product sync failed for {record.platform.value}:{record.external_id}: {exc}")
            await ctx.mappings.mark_status(MappingKind.ITEM, mapping.id, MappingStatus.FAILED, str(exc))
            await ctx.record_history(
                EntityType.PRODUCT, record.external_id, target_id, target,
                "create" if target_id is None else "update", "failed", started, error=str(exc),
            )
            raise

        await ctx.record_history(
            EntityType.PRODUCT, record.external_id, target_id, target, operation, "success", started,
        )
        return operation

    async def _create(
        self,
        record: CatalogRecord,
        pushed: CatalogRecord,
        target: PlatformName,
        mapping_id: int,
        rebind: bool = False,
    ) -> str:
        ctx = self.ctx
        created = await self._create_target(target, build_create_payload(pushed, target))
        if not created or created.get("id") is None:
            raise PlatformAPIError(
                f"{target.display_name} create returned no id for {record.platform.value}:{record.external_id}",
                platform=target.value,
            )
        new_id = str(created["id"])

        await ctx.mappings.bind_target(
            MappingKind.ITEM, mapping_id, new_id, rebind=rebind, metadata={"sync_log_id": ctx.sync_log_id},
        )
        await ctx.mappings.link_reverse(
            MappingKind.ITEM, ctx.user_id, record.platform, record.external_id, target, new_id,
        )
        await ctx.upsert_mirror(replace(pushed, platform=target, external_id=new_id))
        await ctx.change_tracker.log_change(
            ctx.user_id,
            EntityType.PRODUCT,
            new_id,
            target,
            ChangeOperation.CREATE,
            new_value=pushed.synced_values(),
            change_source=ChangeSource.SYNC,
            sync_log_id=ctx.sync_log_id,
            triggered_by=f"{record.platform.value}:{record.external_id}",
        )
        logger.info(f"Created {target.value} record {new_id} from {record.platform.value}:{record.external_id}")
        return new_id

    async def _update(self, pushed: CatalogRecord, current: CatalogRecord, mapping_id: int) -> str:
        ctx = self.ctx
        target = current.platform

        await ctx.upsert_mirror(current)
        changes = diff_fields(pushed, current)
        if not changes:
            await ctx.mappings.mark_status(MappingKind.ITEM, mapping_id, MappingStatus.COMPLETED)
            return "skip"

        before = await ctx.snapshots.snapshot(
            ctx.user_id, current.external_id, target, SnapshotType.PRE_SYNC, ctx.sync_log_id,
        )
        await self._update_target(target, current.external_id, build_update_payload(changes, current))
        await ctx.upsert_mirror(replace(current, **changes))
        after = await ctx.snapshots.snapshot(
            ctx.user_id, current.external_id, target, SnapshotType.POST_SYNC, ctx.sync_log_id,
        )

        await ctx.change_tracker.log_batch([
            FieldChange(
                user_id=ctx.user_id,
                entity_type=EntityType.PRODUCT,
                entity_id=current.external_id,
                platform=target,
                operation=ChangeOperation.UPDATE,
                field_name=name,
                old_value=getattr(current, name),
                new_value=value,
                sync_log_id=ctx.sync_log_id,
                triggered_by=f"{pushed.platform.value}:{pushed.external_id}",
                before_snapshot_id=before.id,
                after_snapshot_id=after.id,
            )
            for name, value in changes.items()
        ], ChangeSource.SYNC)
        await ctx.mappings.mark_status(MappingKind.ITEM, mapping_id, MappingStatus.COMPLETED)
        logger.info(f"Updated {target.value} record {current.external_id}: {', '.join(changes)}")
        return "update"
