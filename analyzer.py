"""
SealDeal - Deal Analysis Pipeline
Ingest documents, prompt the model, validate, flatten, persist, export
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from analysis_parser import parse_analysis
from analytics import export_row
from exceptions import (
    AnalysisFailedError, ConflictError, IllegalTransitionError,
    InvalidArgumentError, NotFoundError,
)
from flattener import flatten_analysis
from ingestor import presentation_parts, text_documents
from models import (
    DEFAULT_PROCESSING_LEASE_SECONDS, AnalysisRecord, Deal, DealDocument, DealStatus,
)
from prompts import build_analysis_prompt
from storage import parse_upload_path

logger = logging.getLogger(__name__)

INTERRUPTED = "Analysis was interrupted before it completed."
REJECTED_UPLOAD = "Upload does not belong to a deal owned by its uploader."
MISSING_UPLOAD = "Uploaded object does not exist."


class DealAnalysisPipeline:
    """
    AwaitingUpload/Analyzed/Error_* -> Processing -> Analyzed | failure_status

    Collaborators are passed in so tests can swap any of them.
    """

    def __init__(
        self,
        store,
        ingestor,
        model,
        exporter,
        benchmark_industry: str = "SaaS",
        benchmark_limit: int = 10,
        processing_lease_seconds: float = DEFAULT_PROCESSING_LEASE_SECONDS,
    ):
        self.store = store
        self.ingestor = ingestor
        self.model = model
        self.exporter = exporter
        self.benchmark_industry = benchmark_industry
        self.benchmark_limit = benchmark_limit
        self.processing_lease_seconds = processing_lease_seconds

    async def run(
        self,
        deal_id: str,
        uid: str,
        failure_status: DealStatus = DealStatus.ERROR_ANALYSIS_FAILED,
    ) -> Dict[str, Any]:
        log_extra = {"deal_id": deal_id}
        logger.info(f"[Pipeline] Starting comprehensive analysis for deal {deal_id}", extra=log_extra)

        deal = await self.store.get_deal(deal_id)
        if deal is None:
            raise NotFoundError("Deal", deal_id)

        try:
            await self.store.update_status(
                deal_id, DealStatus.PROCESSING, lease_seconds=self.processing_lease_seconds
            )
        except IllegalTransitionError as e:
            raise ConflictError(f"Analysis already in progress for deal {deal_id}.") from e

        try:
            analysis_id, row = await self._analyze(deal, uid)
        except Exception as e:
            logger.error(f"[Pipeline] Analysis failed for deal {deal_id}: {e}", exc_info=True, extra=log_extra)
            await self._mark_failed(deal_id, failure_status, str(e))
            raise AnalysisFailedError(deal_id, str(e)) from e
        except BaseException:
            # Cancelled or interrupted; release PROCESSING before unwinding
            logger.error(f"[Pipeline] Analysis interrupted for deal {deal_id}", extra=log_extra)
            await asyncio.shield(self._mark_failed(deal_id, failure_status, INTERRUPTED))
            raise

        exported = await export_row(self.store, self.exporter, row)
        logger.info(
            f"[Pipeline] Deal {deal_id} analyzed (analysis {analysis_id}, exported={exported})",
            extra=log_extra,
        )

        return {
            "success": True,
            "message": "Analysis completed successfully.",
            "analysisId": analysis_id,
            "exported": exported,
        }

    async def _analyze(self, deal: Deal, uid: str) -> Tuple[str, Dict[str, Any]]:
        documents = await self.store.list_documents(deal.id)
        if not documents:
            raise InvalidArgumentError(f"No documents found for deal {deal.id}.")

        processed = await self.ingestor.ingest(documents)
        benchmarks = await self.store.list_benchmarks(self.benchmark_industry, self.benchmark_limit)

        prompt = build_analysis_prompt(text_documents(processed), benchmarks)
        parts = [{"text": prompt}, *presentation_parts(processed)]
        logger.info(f"[Pipeline] Prompt: {len(prompt)} chars, {len(parts) - 1} attachment(s)", extra={"deal_id": deal.id})

        response_text = await self.model.generate(parts)
        result = parse_analysis(response_text)

        analysis_id = self.store.new_analysis_id(deal.id)
        record = AnalysisRecord(
            **result.model_dump(),
            id=analysis_id,
            deal_id=deal.id,
            created_by=uid,
            source_files=[d.file_name for d in documents],
        )
        row = flatten_analysis(
            result,
            analysis_id=analysis_id,
            deal_id=deal.id,
            deal_name=deal.deal_name,
            created_by=uid,
            analyzed_at=record.analyzed_at,
            source_files=record.source_files,
        )

        await self.store.save_analysis(record, row)
        return analysis_id, row

    async def _mark_failed(self, deal_id: str, failure_status: DealStatus, reason: str):
        try:
            await self.store.update_status(deal_id, failure_status, message=reason)
        except Exception as e:
            # The original failure is what the caller needs to see; the lease frees the deal later
            logger.error(f"[Pipeline] Could not record {failure_status.value} on deal {deal_id}: {e}", extra={"deal_id": deal_id})

    async def process_uploaded_file(self, object_name: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Object-finalize handler. Paths other than uploads/{uid}/{dealId}/{file}
        are ignored. The path's uid must own the deal and the object must exist
        before the document is registered.
        """
        upload = parse_upload_path(object_name)
        if upload is None:
            logger.debug(f"[Pipeline] Ignoring object {object_name}")
            return None

        deal = await self.store.get_deal(upload.deal_id)
        if deal is None or deal.owner_id != upload.user_id:
            logger.warning(f"[Pipeline] Rejected {object_name}: user {upload.user_id} does not own deal {upload.deal_id}", extra={"deal_id": upload.deal_id})
            return {"success": False, "message": REJECTED_UPLOAD}

        if not await self.ingestor.exists(upload.storage_path):
            logger.warning(f"[Pipeline] Rejected {object_name}: object does not exist", extra={"deal_id": upload.deal_id})
            return {"success": False, "message": MISSING_UPLOAD}

        await self.store.add_document(
            upload.deal_id,
            DealDocument(file_name=upload.file_name, storage_path=upload.storage_path),
        )
        logger.info(f"[Pipeline] Registered {upload.file_name} for deal {upload.deal_id}", extra={"deal_id": upload.deal_id})

        try:
            return await self.run(
                upload.deal_id,
                upload.user_id,
                failure_status=DealStatus.ERROR_PROCESSING_FAILED,
            )
        except ConflictError as e:
            logger.warning(f"[Pipeline] {e.message} {upload.file_name} is registered for the next run.", extra={"deal_id": upload.deal_id})
            return {"success": False, "message": e.message}
        except AnalysisFailedError as e:
            return {"success": False, "message": e.reason}


async def get_comparison_data(store, deal_ids: Any) -> Dict[str, Any]:
    """Latest analysis for each requested deal, fetched concurrently"""
    if not deal_ids or not isinstance(deal_ids, list):
        raise InvalidArgumentError("An array of 'dealIds' must be provided.", "dealIds")

    async def _one(deal_id: str) -> Dict[str, Any]:
        deal, analysis = await asyncio.gather(
            store.get_deal(deal_id),
            store.latest_analysis(deal_id),
        )
        return {
            "dealId": deal_id,
            "dealName": deal.deal_name if deal else "Unknown",
            "analysis": analysis.model_dump(mode="json", by_alias=True) if analysis else None,
        }

    data: List[Dict[str, Any]] = await asyncio.gather(*(_one(d) for d in deal_ids))
    return {"success": True, "data": list(data)}
