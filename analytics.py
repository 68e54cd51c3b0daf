"""
SealDeal - Analytics Export
BigQuery streaming export of flattened analyses, plus reconciliation of pending rows
"""

import asyncio
import logging
from typing import Any, Dict, List

from google.cloud import bigquery

from exceptions import AnalyticsExportError
from flattener import flatten_record

logger = logging.getLogger(__name__)

# Firestore bookkeeping fields that are not table columns
_LOCAL_FIELDS = ("exported", "exportedAt")


def to_table_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in _LOCAL_FIELDS}


class AnalyticsExporter:
    """Append-only writes and ad-hoc queries against the analyses table"""

    def __init__(self, client: bigquery.Client, table_id: str):
        self._client = client
        self.table_id = table_id

    def _insert_sync(self, rows: List[Dict[str, Any]]) -> list:
        # analysisId doubles as insertId, so a re-sent row is deduplicated
        return self._client.insert_rows_json(
            self.table_id,
            rows,
            row_ids=[row["analysisId"] for row in rows],
        )

    async def export(self, rows: List[Dict[str, Any]]):
        if not rows:
            return
        errors = await asyncio.to_thread(self._insert_sync, [to_table_row(r) for r in rows])
        if errors:
            raise AnalyticsExportError(errors)
        logger.info(f"[Analytics] Exported {len(rows)} row(s) to {self.table_id}")

    def _query_sync(self, sql: str) -> List[Dict[str, Any]]:
        return [dict(row.items()) for row in self._client.query(sql).result()]

    async def query(self, sql: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, sql)


async def export_row(store, exporter: AnalyticsExporter, row: Dict[str, Any]) -> bool:
    """
    Secondary write after the Firestore commit. A failure leaves the
    analytics doc with exported=False for the next backfill to pick up.
    """
    try:
        await exporter.export([row])
    except Exception as e:
        logger.error(f"[Analytics] Export of {row['analysisId']} deferred: {e}")
        return False

    await store.mark_exported(row["analysisId"])
    return True


async def backfill_analytics(store, exporter: AnalyticsExporter) -> Dict[str, Any]:
    """
    Rebuild missing analytics docs from stored analyses, then export every
    row still marked exported=False.
    """
    analyses = await store.list_all_analyses()
    deal_names: Dict[str, str] = {}
    processed = 0

    for record in analyses:
        if await store.get_analytics(record.id) is not None:
            continue
        if record.deal_id not in deal_names:
            deal = await store.get_deal(record.deal_id)
            deal_names[record.deal_id] = deal.deal_name if deal else "Unknown Deal"
        await store.save_analytics(flatten_record(record, deal_names[record.deal_id]), exported=False)
        processed += 1

    exported = 0
    for row in await store.list_analytics(exported=False):
        if await export_row(store, exporter, row):
            exported += 1

    logger.info(f"[Analytics] Backfill: {processed} rebuilt, {exported} exported of {len(analyses)} analyses")
    return {"success": True, "processedCount": processed, "exportedCount": exported}


async def list_analytics(store, limit: int = 10) -> Dict[str, Any]:
    rows = await store.list_analytics(limit=limit)
    return {"success": True, "count": len(rows), "analytics": rows}
