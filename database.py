"""
SealDeal - Deal Store
Firestore persistence for deals, documents, analyses, benchmarks, roles and chat
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from google.cloud import firestore

from exceptions import NotFoundError
from models import (
    AnalysisRecord, Benchmark, ChatMessage, Deal, DealDocument, DealStatus,
    DEFAULT_PROCESSING_LEASE_SECONDS, UserRole, processing_lease_expired,
    transition, utcnow,
)

logger = logging.getLogger(__name__)

DEALS = "deals"
DOCUMENTS = "documents"
ANALYSIS = "analysis"
ANALYTICS = "analytics"
BENCHMARKS = "benchmarks"
CHAT_SESSIONS = "chat_sessions"
MESSAGES = "messages"
USERS = "users"


def document_id(storage_path: str) -> str:
    return hashlib.sha256(storage_path.encode("utf-8")).hexdigest()[:32]


class DealStore:
    """All document-database access goes through here"""

    def __init__(self, client: firestore.AsyncClient):
        self._db = client

    def _deal_ref(self, deal_id: str):
        return self._db.collection(DEALS).document(deal_id)

    # === Deals ===

    async def create_deal(self, deal: Deal) -> str:
        _, ref = await self._db.collection(DEALS).add(
            deal.model_dump(by_alias=True, exclude={"id"})
        )
        logger.info(f"[DealStore] Created deal {ref.id} ({deal.deal_name})")
        return ref.id

    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        snapshot = await self._deal_ref(deal_id).get()
        if not snapshot.exists:
            return None
        return Deal.model_validate({**snapshot.to_dict(), "id": snapshot.id})

    async def list_deals(self, owner_id: str, limit: int = 50) -> List[Deal]:
        query = (
            self._db.collection(DEALS)
            .where(filter=firestore.FieldFilter("ownerId", "==", owner_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [
            Deal.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            async for snapshot in query.stream()
        ]

    async def update_status(
        self,
        deal_id: str,
        target: DealStatus,
        message: Optional[str] = None,
        lease_seconds: float = DEFAULT_PROCESSING_LEASE_SECONDS,
    ) -> DealStatus:
        """
        Transactional status change. The stored status is re-read inside the
        transaction, so two overlapping runs cannot both enter PROCESSING.
        Entering PROCESSING stamps processingStartedAt; a claim older than
        lease_seconds may be taken over by a new run.
        """
        ref = self._deal_ref(deal_id)

        @firestore.async_transactional
        async def _apply(transaction):
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError("Deal", deal_id)
            data = snapshot.to_dict()
            current = DealStatus(data["status"])
            expired = processing_lease_expired(data.get("processingStartedAt"), lease_seconds)
            new_status = transition(current, target, lease_expired=expired)
            transaction.update(ref, {
                "status": new_status.value,
                "statusMessage": message,
                "processingStartedAt": utcnow() if new_status is DealStatus.PROCESSING else None,
            })
            return current

        previous = await _apply(self._db.transaction())
        logger.info(f"[DealStore] Deal {deal_id}: {previous.value} -> {target.value}")
        return previous

    # === Documents ===

    async def add_document(self, deal_id: str, document: DealDocument) -> str:
        """Keyed by storage path, so a redelivered upload event is a no-op overwrite"""
        doc_id = document_id(document.storage_path)
        await self._deal_ref(deal_id).collection(DOCUMENTS).document(doc_id).set(
            document.model_dump(by_alias=True, exclude={"id"})
        )
        return doc_id

    async def list_documents(self, deal_id: str) -> List[DealDocument]:
        return [
            DealDocument.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            async for snapshot in self._deal_ref(deal_id).collection(DOCUMENTS).stream()
        ]

    # === Analyses ===

    def new_analysis_id(self, deal_id: str) -> str:
        """Pre-allocate an id so the nested and flat copies share it"""
        return self._deal_ref(deal_id).collection(ANALYSIS).document().id

    async def save_analysis(self, record: AnalysisRecord, row: Dict[str, Any]) -> str:
        """
        Nested analysis, flat analytics row and ANALYZED status are written in
        one transaction: either all three land or none does.
        """
        deal_ref = self._deal_ref(record.deal_id)
        analysis_ref = deal_ref.collection(ANALYSIS).document(record.id)
        analytics_ref = self._db.collection(ANALYTICS).document(record.id)

        @firestore.async_transactional
        async def _write(transaction):
            snapshot = await deal_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError("Deal", record.deal_id)
            new_status = transition(DealStatus(snapshot.get("status")), DealStatus.ANALYZED)
            transaction.set(analysis_ref, record.to_document())
            transaction.set(analytics_ref, {**row, "exported": False})
            transaction.update(deal_ref, {
                "status": new_status.value,
                "statusMessage": None,
                "processingStartedAt": None,
            })

        await _write(self._db.transaction())
        logger.info(f"[DealStore] Analysis {record.id} saved for deal {record.deal_id}")
        return record.id

    async def list_analyses(self, deal_id: str, limit: Optional[int] = None) -> List[AnalysisRecord]:
        """Most recent first"""
        query = self._deal_ref(deal_id).collection(ANALYSIS).order_by(
            "analyzedAt", direction=firestore.Query.DESCENDING
        )
        if limit:
            query = query.limit(limit)
        return [
            AnalysisRecord.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            async for snapshot in query.stream()
        ]

    async def latest_analysis(self, deal_id: str) -> Optional[AnalysisRecord]:
        analyses = await self.list_analyses(deal_id, limit=1)
        return analyses[0] if analyses else None

    async def list_all_analyses(self) -> List[AnalysisRecord]:
        return [
            AnalysisRecord.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            async for snapshot in self._db.collection_group(ANALYSIS).stream()
        ]

    # === Analytics ===

    async def get_analytics(self, analysis_id: str) -> Optional[Dict[str, Any]]:
        snapshot = await self._db.collection(ANALYTICS).document(analysis_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    async def save_analytics(self, row: Dict[str, Any], exported: bool = False):
        await self._db.collection(ANALYTICS).document(row["analysisId"]).set({**row, "exported": exported})

    async def mark_exported(self, analysis_id: str):
        await self._db.collection(ANALYTICS).document(analysis_id).update(
            {"exported": True, "exportedAt": utcnow()}
        )

    async def list_analytics(
        self,
        limit: Optional[int] = None,
        exported: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        query = self._db.collection(ANALYTICS)
        if exported is not None:
            query = query.where(filter=firestore.FieldFilter("exported", "==", exported))
        if limit:
            query = query.limit(limit)
        return [snapshot.to_dict() async for snapshot in query.stream()]

    # === Benchmarks ===

    async def add_benchmark(self, benchmark: Benchmark) -> str:
        _, ref = await self._db.collection(BENCHMARKS).add(benchmark.model_dump(by_alias=True))
        return ref.id

    async def list_benchmarks(self, industry: str, limit: int = 10) -> List[Benchmark]:
        query = (
            self._db.collection(BENCHMARKS)
            .where(filter=firestore.FieldFilter("industry", "==", industry))
            .limit(limit)
        )
        return [Benchmark.model_validate(snapshot.to_dict()) async for snapshot in query.stream()]

    # === Users ===

    async def get_user_role(self, uid: str) -> Optional[UserRole]:
        snapshot = await self._db.collection(USERS).document(uid).get()
        if not snapshot.exists:
            return None
        role = snapshot.to_dict().get("role")
        return UserRole(role) if role else None

    async def set_user_role(self, uid: str, role: UserRole, set_by: Optional[str] = None):
        await self._db.collection(USERS).document(uid).set(
            {"role": role.value, "updatedBy": set_by, "updatedAt": utcnow()},
            merge=True,
        )

    # === Chat ===

    async def add_chat_message(self, session_id: str, message: ChatMessage) -> str:
        _, ref = await (
            self._db.collection(CHAT_SESSIONS).document(session_id)
            .collection(MESSAGES).add(message.model_dump())
        )
        return ref.id
