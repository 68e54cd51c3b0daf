"""
SealDeal - Configuration
Environment-driven settings for GCP clients, models and the API server
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "SealDeal"
    VERSION: str = "2.0.0"

    # Google Cloud
    GCP_PROJECT_ID: str = "genai-hackathon-aicommanders"
    GCP_LOCATION: str = "asia-south1"
    STORAGE_BUCKET: Optional[str] = None
    FIRESTORE_EMULATOR_HOST: Optional[str] = None

    # Storage event push authentication (OIDC audience and sender service account)
    PUSH_AUDIENCE: Optional[str] = None
    PUSH_SERVICE_ACCOUNT: Optional[str] = None

    # Models
    ANALYSIS_MODEL: str = "gemini-1.5-flash-002"
    CHAT_MODEL: str = "gemini-1.5-flash-002"
    ENHANCED_CHAT_MODEL: str = "gemini-1.5-pro"
    MODEL_TIMEOUT_SECONDS: float = 540.0
    # A PROCESSING claim older than this is treated as abandoned
    PROCESSING_LEASE_SECONDS: float = 900.0

    # Analytics
    BIGQUERY_DATASET: str = "deal_analysis"
    BIGQUERY_TABLE: str = "analyses"
    PUBLIC_BENCHMARK_TABLE: str = "genhackathon.InvestmentVC"

    # Prompt context
    BENCHMARK_INDUSTRY: str = "SaaS"
    BENCHMARK_LIMIT: int = 10

    # Server
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    PORT: int = 8080
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @property
    def analytics_table_id(self) -> str:
        return f"{self.GCP_PROJECT_ID}.{self.BIGQUERY_DATASET}.{self.BIGQUERY_TABLE}"

    @property
    def public_benchmark_table_id(self) -> str:
        return f"{self.GCP_PROJECT_ID}.{self.PUBLIC_BENCHMARK_TABLE}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
