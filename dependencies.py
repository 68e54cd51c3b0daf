"""
SealDeal - Service Wiring
Builds every client once from settings and hands them to the app explicitly
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from google.cloud import bigquery, firestore
from google.cloud import storage as gcs

from ai_client import GenerativeModelClient
from analyzer import DealAnalysisPipeline
from analytics import AnalyticsExporter
from auth import FirebaseTokenVerifier, PushTokenVerifier, cached_auth_request
from chat_agent import ChatAgent
from config import Settings
from database import DealStore
from enhanced_chat_agent import EnhancedChatAgent
from ingestor import DocumentIngestor
from storage import DocumentStorage

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: DealStore
    pipeline: DealAnalysisPipeline
    exporter: AnalyticsExporter
    chat_agent: ChatAgent
    enhanced_chat_agent: EnhancedChatAgent
    token_verifier: FirebaseTokenVerifier
    push_verifier: Optional[PushTokenVerifier] = None

    async def aclose(self):
        for model in {self.pipeline.model, self.chat_agent.model, self.enhanced_chat_agent.model}:
            if hasattr(model, "aclose"):
                await model.aclose()


def build_firestore_client(settings: Settings) -> firestore.AsyncClient:
    if settings.FIRESTORE_EMULATOR_HOST:
        # The client library reads FIRESTORE_EMULATOR_HOST from the environment
        logger.info(f"[Services] Emulator detected! Using Firestore at {settings.FIRESTORE_EMULATOR_HOST}")
    return firestore.AsyncClient(project=settings.GCP_PROJECT_ID)


def build_services(settings: Settings) -> ServiceContainer:
    store = DealStore(build_firestore_client(settings))
    storage = DocumentStorage(gcs.Client(project=settings.GCP_PROJECT_ID), settings.STORAGE_BUCKET)
    exporter = AnalyticsExporter(bigquery.Client(project=settings.GCP_PROJECT_ID), settings.analytics_table_id)

    def model(name: str) -> GenerativeModelClient:
        return GenerativeModelClient(
            project_id=settings.GCP_PROJECT_ID,
            location=settings.GCP_LOCATION,
            model=name,
            timeout=settings.MODEL_TIMEOUT_SECONDS,
        )

    pipeline = DealAnalysisPipeline(
        store=store,
        ingestor=DocumentIngestor(storage),
        model=model(settings.ANALYSIS_MODEL),
        exporter=exporter,
        benchmark_industry=settings.BENCHMARK_INDUSTRY,
        benchmark_limit=settings.BENCHMARK_LIMIT,
        processing_lease_seconds=settings.PROCESSING_LEASE_SECONDS,
    )
    chat_agent = ChatAgent(
        store=store,
        model=model(settings.CHAT_MODEL),
        exporter=exporter,
        analytics_table=settings.analytics_table_id,
        benchmark_table=settings.public_benchmark_table_id,
    )
    enhanced_chat_agent = EnhancedChatAgent(
        store=store,
        model=model(settings.ENHANCED_CHAT_MODEL),
        chat_agent=chat_agent,
    )

    auth_request = cached_auth_request()
    push_verifier = None
    if settings.PUSH_AUDIENCE:
        push_verifier = PushTokenVerifier(settings.PUSH_AUDIENCE, settings.PUSH_SERVICE_ACCOUNT, request=auth_request)

    logger.info(f"[Services] Initialized for project {settings.GCP_PROJECT_ID} ({settings.GCP_LOCATION})")
    return ServiceContainer(
        settings=settings,
        store=store,
        pipeline=pipeline,
        exporter=exporter,
        chat_agent=chat_agent,
        enhanced_chat_agent=enhanced_chat_agent,
        token_verifier=FirebaseTokenVerifier(settings.GCP_PROJECT_ID, request=auth_request),
        push_verifier=push_verifier,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
