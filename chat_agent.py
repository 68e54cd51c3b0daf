"""
SealDeal - Chat Agent
Routes a chat message to text-to-SQL over the analytics table or a web-grounded answer
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Tuple

from ai_client import generate_with_retry
from chat_format import format_results
from exceptions import ModelResponseError
from models import ChatMessage
from prompts import build_insights_prompt, build_intent_prompt, build_sql_prompt

logger = logging.getLogger(__name__)

DATA_QUERY = "data_query"
INSIGHTS_QUERY = "insights_query"
NOT_APPLICABLE = "N/A"
NO_INSIGHTS = "I was unable to find any information on that topic."

_READ_ONLY_SQL = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def clean_sql(text: str) -> str:
    return re.sub(r"```sql|```", "", text.strip()).strip()


def normalize_intent(text: str) -> str:
    intent = text.strip().strip("`\"'.").strip().lower()
    return DATA_QUERY if intent == DATA_QUERY else INSIGHTS_QUERY


class ChatAgent:
    def __init__(self, store, model, exporter, analytics_table: str, benchmark_table: str, sleep=asyncio.sleep):
        self.store = store
        self.model = model
        self.exporter = exporter
        self.analytics_table = analytics_table
        self.benchmark_table = benchmark_table
        self._sleep = sleep

    async def classify_intent(self, message: str) -> str:
        text = await self.model.generate_text(build_intent_prompt(message))
        intent = normalize_intent(text)
        logger.info(f"[Chat] Intent classified as: {intent}")
        return intent

    async def generate_sql(self, message: str) -> str:
        prompt = build_sql_prompt(message, self.analytics_table, self.benchmark_table)
        text = await generate_with_retry(lambda: self.model.generate_text(prompt), sleep=self._sleep)

        sql = clean_sql(text)
        if not sql:
            raise ModelResponseError("Could not generate a valid SQL query.")
        if not _READ_ONLY_SQL.match(sql):
            raise ModelResponseError("Generated query is not a read-only SELECT statement.", raw_text=sql)
        return sql

    async def answer_data_query(self, message: str) -> Tuple[str, List[Dict[str, Any]], str]:
        sql = await self.generate_sql(message)
        logger.info(f"[Chat] Running SQL: {sql}")
        rows = await self.exporter.query(sql)
        return sql, rows, format_results(rows)

    async def answer_insights(self, message: str) -> str:
        try:
            return await self.model.generate_text(build_insights_prompt(message), web_grounded=True)
        except ModelResponseError:
            return NO_INSIGHTS

    async def respond(self, session_id: str, message: str) -> Dict[str, Any]:
        await self.store.add_chat_message(session_id, ChatMessage(role="user", text=message))

        intent = await self.classify_intent(message)

        if intent == DATA_QUERY:
            sql, rows, formatted = await self.answer_data_query(message)
            await self.store.add_chat_message(
                session_id,
                ChatMessage(role="assistant", text=formatted, sql=sql, result=formatted),
            )
            return {"sql": sql, "result": rows, "formatted": formatted}

        formatted = await self.answer_insights(message)
        await self.store.add_chat_message(
            session_id,
            ChatMessage(role="assistant", text=formatted, sql=NOT_APPLICABLE, result=formatted),
        )
        return {"sql": NOT_APPLICABLE, "formatted": formatted}
