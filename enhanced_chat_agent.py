"""
SealDeal - Enhanced Chat Agent
Four-way intent routing: SQL, retrieval over analytics rows, expert panel, web insights
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from analysis_parser import extract_json_object
from exceptions import SealDealError
from models import ChatMessage
from prompts import (
    EXPERT_PROMPTS, build_enhanced_insights_prompt, build_enhanced_intent_prompt,
    build_expert_prompt, build_rag_prompt, build_synthesis_prompt,
)

logger = logging.getLogger(__name__)

INTENTS = ("data_query", "comparison", "insights", "recommendation")
DEFAULT_CLASSIFICATION = ("insights", 0.5, [])
INSIGHTS_UNAVAILABLE = "Market insights are temporarily unavailable. Please try again later."


def _usd(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return "$" + f"{value:,.2f}".rstrip("0").rstrip(".")


def _joined(values: Any) -> str:
    return ", ".join(values) if isinstance(values, list) and values else "None identified"


def row_to_text(row: Dict[str, Any]) -> str:
    """Analytics row -> natural-language context document"""
    ratio = row.get("metrics_ltv_cac_ratio_value")
    return f"""Deal Analysis: {row.get('dealName')}

Financial Metrics:
- Annual Recurring Revenue (ARR): {_usd(row.get('metrics_arr_value'))}
- Monthly Recurring Revenue (MRR): {_usd(row.get('metrics_mrr_value'))}
- Lifetime Value (LTV): {_usd(row.get('metrics_ltv_value'))}
- LTV/CAC Ratio: {ratio if ratio is not None else 'N/A'}

Investment Assessment:
{row.get('executive_summary') or ''}

Growth Potential:
{row.get('growth_potential') or ''}

Market Benchmarking:
{row.get('benchmarking_summary') or ''}

Strengths: {_joined(row.get('strengths'))}
Weaknesses: {_joined(row.get('weaknesses'))}
Opportunities: {_joined(row.get('opportunities'))}
Threats: {_joined(row.get('threats'))}
Risk Flags: {_joined(row.get('risk_flags'))}

Final Recommendation: {row.get('investment_recommendation') or 'Pending'}""".strip()


class EnhancedChatAgent:
    def __init__(self, store, model, chat_agent):
        self.store = store
        self.model = model
        self.chat_agent = chat_agent

    async def classify_intent(self, message: str) -> Tuple[str, float, List[str]]:
        try:
            text = await self.model.generate_text(build_enhanced_intent_prompt(message))
            data = extract_json_object(text)
            intent = data.get("intent")
            if intent not in INTENTS:
                intent = "insights"
            confidence = float(data.get("confidence", 0.5))
            entities = [str(e) for e in data.get("entities") or []]
        except (SealDealError, ValueError, TypeError) as e:
            logger.error(f"[EnhancedChat] Intent classification failed: {e}")
            return DEFAULT_CLASSIFICATION
        return intent, confidence, entities

    async def retrieve_relevant_documents(self, entities: List[str]) -> List[str]:
        """Keyword match on entities; falls back to the first rows"""
        knowledge_base = [(row, row_to_text(row)) for row in await self.store.list_analytics()]

        relevant = knowledge_base
        if entities:
            lowered = [e.lower() for e in entities]
            relevant = [
                (row, text) for row, text in knowledge_base
                if any(e in text.lower() or e in str(row.get("dealName", "")).lower() for e in lowered)
            ]

        if not relevant:
            relevant = knowledge_base[:5]

        return [text for _, text in relevant[:3]]

    async def process_rag_query(self, message: str, intent: str, entities: List[str]) -> str:
        documents = await self.retrieve_relevant_documents(entities)
        return await self.model.generate_text(build_rag_prompt(message, intent, entities, documents))

    async def process_complex_query(self, message: str, intent: str) -> str:
        """Expert panel fan-out; one failing expert fails the whole answer"""
        roles = list(EXPERT_PROMPTS)
        answers = await asyncio.gather(
            *(self.model.generate_text(build_expert_prompt(role, message, intent)) for role in roles)
        )
        return await self.model.generate_text(build_synthesis_prompt(dict(zip(roles, answers))))

    async def process_insights_query(self, message: str) -> str:
        try:
            return await self.model.generate_text(build_enhanced_insights_prompt(message), web_grounded=True)
        except SealDealError as e:
            logger.error(f"[EnhancedChat] Insights query failed: {e}")
            return INSIGHTS_UNAVAILABLE

    async def process_data_query(self, message: str) -> str:
        _, _, formatted = await self.chat_agent.answer_data_query(message)
        return formatted

    async def process_message(self, session_id: str, message: str) -> Dict[str, Any]:
        await self.store.add_chat_message(session_id, ChatMessage(role="user", text=message))

        intent, confidence, entities = await self.classify_intent(message)
        logger.info(f"[EnhancedChat] Intent {intent} (confidence {confidence}) entities={entities}")

        if intent == "data_query":
            response = await self.process_data_query(message)
        elif intent == "comparison":
            response = await self.process_rag_query(message, intent, entities)
        elif intent == "recommendation":
            response = await self.process_complex_query(message, intent)
        else:
            response = await self.process_insights_query(message)

        await self.store.add_chat_message(
            session_id,
            ChatMessage(
                role="assistant",
                text=response,
                metadata={
                    "intent": intent,
                    "confidence": confidence,
                    "entities": entities,
                    "processingMethod": "sql" if intent == "data_query" else "rag",
                },
            ),
        )

        return {
            "response": response,
            "intent": intent,
            "confidence": confidence,
            "entities": entities,
            "success": True,
        }
