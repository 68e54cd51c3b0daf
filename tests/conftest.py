"""
Pytest fixtures: in-memory stand-ins for Firestore, Cloud Storage, the model
endpoint and BigQuery, wired the same way build_services wires the real ones.
"""

import itertools
import json
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from analyzer import DealAnalysisPipeline
from chat_agent import ChatAgent
from config import Settings
from database import document_id
from dependencies import ServiceContainer
from enhanced_chat_agent import EnhancedChatAgent
from exceptions import AnalyticsExportError, NotFoundError
from ingestor import DocumentIngestor
from models import (
    DEFAULT_PROCESSING_LEASE_SECONDS, AnalysisRecord, Benchmark, ChatMessage, Deal,
    DealDocument, DealStatus, UserRole, processing_lease_expired, transition, utcnow,
)


SAMPLE_ANALYSIS = {
    "metrics": {
        "arr": {"value": 500000, "source_quote": "ARR of $500K", "notes": None},
        "cac": {"value": 100, "source_quote": "CAC is $100", "notes": None},
        "ltv": {"value": 300, "source_quote": None, "notes": "ARPU / churn"},
    },
    "swot_analysis": {
        "strengths": ["Experienced founders", "Sticky product"],
        "weaknesses": ["Single sales channel"],
        "opportunities": ["Mid-market expansion"],
        "threats": [],
    },
    "risk_flags": ["High churn"],
    "benchmarking_summary": "ARR is above the peer median.",
    "investment_memo": {
        "executive_summary": "Acme sells workflow software to logistics teams.",
        "growth_potential": "Expansion revenue is strong.",
        "investment_recommendation": "Proceed with Caution",
    },
}


def wrap_in_prose(data: Dict[str, Any]) -> str:
    """How the model tends to answer: JSON inside a markdown fence"""
    return f"Here is the analysis you asked for:\n```json\n{json.dumps(data)}\n```\nLet me know if you need more."


class InMemoryStore:
    """Dict-backed stand-in with the DealStore interface and lifecycle checks"""

    def __init__(self):
        self.deals: Dict[str, Deal] = {}
        self.documents: Dict[str, List[DealDocument]] = defaultdict(list)
        self.analyses: Dict[str, List[AnalysisRecord]] = defaultdict(list)
        self.analytics: Dict[str, Dict[str, Any]] = {}
        self.benchmarks: List[Benchmark] = []
        self.roles: Dict[str, UserRole] = {}
        self.messages: Dict[str, List[ChatMessage]] = defaultdict(list)
        self.status_history: Dict[str, List[DealStatus]] = defaultdict(list)
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def seed_deal(
        self,
        deal_name: str = "Acme",
        owner_id: str = "user-1",
        status: DealStatus = DealStatus.AWAITING_UPLOAD,
        files: Optional[List[str]] = None,
        processing_started_at=None,
    ) -> str:
        deal_id = self._next_id("deal")
        if status is DealStatus.PROCESSING and processing_started_at is None:
            processing_started_at = utcnow()
        self.deals[deal_id] = Deal(
            id=deal_id,
            deal_name=deal_name,
            owner_id=owner_id,
            status=status,
            processing_started_at=processing_started_at,
        )
        for name in files or []:
            path = f"uploads/{owner_id}/{deal_id}/{name}"
            self.documents[deal_id].append(DealDocument(id=document_id(path), file_name=name, storage_path=path))
        return deal_id

    # Deals

    async def create_deal(self, deal: Deal) -> str:
        deal_id = self._next_id("deal")
        self.deals[deal_id] = deal.model_copy(update={"id": deal_id})
        return deal_id

    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        return self.deals.get(deal_id)

    async def list_deals(self, owner_id: str, limit: int = 50) -> List[Deal]:
        owned = [d for d in self.deals.values() if d.owner_id == owner_id]
        return sorted(owned, key=lambda d: d.created_at, reverse=True)[:limit]

    async def update_status(
        self,
        deal_id: str,
        target: DealStatus,
        message: Optional[str] = None,
        lease_seconds: float = DEFAULT_PROCESSING_LEASE_SECONDS,
    ) -> DealStatus:
        deal = self.deals.get(deal_id)
        if deal is None:
            raise NotFoundError("Deal", deal_id)
        previous = deal.status
        expired = processing_lease_expired(deal.processing_started_at, lease_seconds)
        deal.status = transition(previous, target, lease_expired=expired)
        deal.status_message = message
        deal.processing_started_at = utcnow() if deal.status is DealStatus.PROCESSING else None
        self.status_history[deal_id].append(deal.status)
        return previous

    # Documents

    async def add_document(self, deal_id: str, document: DealDocument) -> str:
        doc_id = document_id(document.storage_path)
        kept = [d for d in self.documents[deal_id] if d.id != doc_id]
        self.documents[deal_id] = kept + [document.model_copy(update={"id": doc_id})]
        return doc_id

    async def list_documents(self, deal_id: str) -> List[DealDocument]:
        return list(self.documents[deal_id])

    # Analyses

    def new_analysis_id(self, deal_id: str) -> str:
        return self._next_id("analysis")

    async def save_analysis(self, record: AnalysisRecord, row: Dict[str, Any]) -> str:
        deal = self.deals.get(record.deal_id)
        if deal is None:
            raise NotFoundError("Deal", record.deal_id)
        new_status = transition(deal.status, DealStatus.ANALYZED)
        self.analyses[record.deal_id].append(record)
        self.analytics[record.id] = {**row, "exported": False}
        deal.status = new_status
        deal.status_message = None
        deal.processing_started_at = None
        self.status_history[record.deal_id].append(new_status)
        return record.id

    async def list_analyses(self, deal_id: str, limit: Optional[int] = None) -> List[AnalysisRecord]:
        ordered = sorted(self.analyses[deal_id], key=lambda a: a.analyzed_at, reverse=True)
        return ordered[:limit] if limit else ordered

    async def latest_analysis(self, deal_id: str) -> Optional[AnalysisRecord]:
        analyses = await self.list_analyses(deal_id, limit=1)
        return analyses[0] if analyses else None

    async def list_all_analyses(self) -> List[AnalysisRecord]:
        return [a for records in self.analyses.values() for a in records]

    # Analytics

    async def get_analytics(self, analysis_id: str) -> Optional[Dict[str, Any]]:
        return self.analytics.get(analysis_id)

    async def save_analytics(self, row: Dict[str, Any], exported: bool = False):
        self.analytics[row["analysisId"]] = {**row, "exported": exported}

    async def mark_exported(self, analysis_id: str):
        self.analytics[analysis_id]["exported"] = True

    async def list_analytics(self, limit: Optional[int] = None, exported: Optional[bool] = None) -> List[Dict[str, Any]]:
        rows = [r for r in self.analytics.values() if exported is None or r["exported"] == exported]
        return rows[:limit] if limit else rows

    # Benchmarks

    async def add_benchmark(self, benchmark: Benchmark) -> str:
        self.benchmarks.append(benchmark)
        return self._next_id("benchmark")

    async def list_benchmarks(self, industry: str, limit: int = 10) -> List[Benchmark]:
        return [b for b in self.benchmarks if b.industry == industry][:limit]

    # Users & chat

    async def get_user_role(self, uid: str) -> Optional[UserRole]:
        return self.roles.get(uid)

    async def set_user_role(self, uid: str, role: UserRole, set_by: Optional[str] = None):
        self.roles[uid] = role

    async def add_chat_message(self, session_id: str, message: ChatMessage) -> str:
        self.messages[session_id].append(message)
        return self._next_id("message")


class FakeStorage:
    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files = dict(files or {})

    async def download(self, path: str) -> bytes:
        if path not in self.files:
            raise FileNotFoundError(f"No such object: {path}")
        return self.files[path]

    async def exists(self, path: str) -> bool:
        return path in self.files


class FakeModel:
    """Replays queued responses in call order; exceptions in the queue are raised"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def generate(self, parts, web_grounded=False) -> str:
        self.calls.append({"parts": parts, "web_grounded": web_grounded})
        if not self.responses:
            raise AssertionError("Unexpected model call")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def generate_text(self, prompt, web_grounded=False) -> str:
        return await self.generate([{"text": prompt}], web_grounded=web_grounded)


class FakeExporter:
    def __init__(self):
        self.rows: List[Dict[str, Any]] = []
        self.queries: List[str] = []
        self.query_results: List[Dict[str, Any]] = []
        self.fail = False

    async def export(self, rows):
        if self.fail:
            raise AnalyticsExportError([{"index": 0, "errors": [{"reason": "invalid"}]}])
        self.rows.extend(rows)

    async def query(self, sql):
        self.queries.append(sql)
        return self.query_results


class FakeTokenVerifier:
    def __init__(self, tokens: Optional[Dict[str, Dict[str, Any]]] = None):
        self.tokens = tokens or {}

    async def verify(self, token: str) -> Dict[str, Any]:
        if token not in self.tokens:
            raise ValueError("Token signature mismatch")
        return self.tokens[token]


async def no_sleep(_seconds):
    return None


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def exporter():
    return FakeExporter()


@pytest.fixture
def pipeline(store, storage, model, exporter):
    return DealAnalysisPipeline(store=store, ingestor=DocumentIngestor(storage), model=model, exporter=exporter)


@pytest.fixture
def chat_agent(store, model, exporter):
    return ChatAgent(
        store=store,
        model=model,
        exporter=exporter,
        analytics_table="test-project.deal_analysis.analyses",
        benchmark_table="test-project.genhackathon.InvestmentVC",
        sleep=no_sleep,
    )


@pytest.fixture
def enhanced_chat_agent(store, model, chat_agent):
    return EnhancedChatAgent(store=store, model=model, chat_agent=chat_agent)


@pytest.fixture
def services(store, pipeline, exporter, chat_agent, enhanced_chat_agent):
    return ServiceContainer(
        settings=Settings(GCP_PROJECT_ID="test-project"),
        store=store,
        pipeline=pipeline,
        exporter=exporter,
        chat_agent=chat_agent,
        enhanced_chat_agent=enhanced_chat_agent,
        token_verifier=FakeTokenVerifier({
            "analyst-token": {"user_id": "user-1", "email": "analyst@example.com"},
            "admin-token": {"sub": "admin-1", "email": "admin@example.com"},
        }),
        push_verifier=FakeTokenVerifier({
            "push-token": {"email": "eventarc@test-project.iam.gserviceaccount.com", "email_verified": True},
        }),
    )


@pytest.fixture
def client(services):
    from server import create_app
    return TestClient(create_app(services=services))


@pytest.fixture
def analyst_headers():
    return {"Authorization": "Bearer analyst-token"}


@pytest.fixture
def admin_headers(store):
    store.roles["admin-1"] = UserRole.ADMIN
    return {"Authorization": "Bearer admin-token"}


@pytest.fixture
def push_headers():
    return {"Authorization": "Bearer push-token"}
