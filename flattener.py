"""
SealDeal - Result Flattener
Nested analysis -> one denormalized analytics row
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from models import METRIC_NAMES, AnalysisRecord, AnalysisResult


def _metric_columns(result: AnalysisResult) -> Dict[str, Any]:
    columns = {}
    for name in METRIC_NAMES:
        metric = getattr(result.metrics, name)
        columns[f"metrics_{name}_value"] = metric.value if metric else None
        columns[f"metrics_{name}_source"] = metric.source_quote if metric else None
    return columns


def flatten_analysis(
    result: AnalysisResult,
    *,
    analysis_id: str,
    deal_id: str,
    deal_name: str,
    created_by: str,
    analyzed_at: datetime,
    source_files: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Map every metric leaf to metrics_<name>_value / metrics_<name>_source,
    plus memo fields, SWOT lists and their counts.
    """
    swot = result.swot_analysis
    memo = result.investment_memo

    row: Dict[str, Any] = {
        "analysisId": analysis_id,
        "dealId": deal_id,
        "dealName": deal_name,
        "createdBy": created_by,
        "analyzedAt": analyzed_at.isoformat(),
        "sourceFiles": list(source_files or []),
    }
    row.update(_metric_columns(result))
    row.update({
        "investment_recommendation": memo.investment_recommendation.value,
        "executive_summary": memo.executive_summary,
        "growth_potential": memo.growth_potential,
        "benchmarking_summary": result.benchmarking_summary,
        "strengths": list(swot.strengths),
        "weaknesses": list(swot.weaknesses),
        "opportunities": list(swot.opportunities),
        "threats": list(swot.threats),
        "risk_flags": list(result.risk_flags),
        "strengths_count": len(swot.strengths),
        "weaknesses_count": len(swot.weaknesses),
        "opportunities_count": len(swot.opportunities),
        "threats_count": len(swot.threats),
        "risk_flags_count": len(result.risk_flags),
    })
    return row


def flatten_record(record: AnalysisRecord, deal_name: str) -> Dict[str, Any]:
    """Flatten an already persisted analysis (backfill path)"""
    return flatten_analysis(
        record,
        analysis_id=record.id,
        deal_id=record.deal_id,
        deal_name=deal_name,
        created_by=record.created_by,
        analyzed_at=record.analyzed_at,
        source_files=record.source_files,
    )
