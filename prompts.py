"""
SealDeal - Prompt Assembler
Prompt templates for deal analysis and the chat agents
"""

import json
from typing import Dict, List

from ingestor import ProcessedDocument
from models import Benchmark


ANALYSIS_PROMPT = """Act as a world-class venture capital analyst. Your task is to perform a comprehensive due diligence analysis of a startup based on a collection of provided documents (which may include pitch decks, financial models, etc.) and peer benchmark data.

**Crucially, you must cross-reference information across all provided documents to check for inconsistencies.**

Perform the following steps in order and structure your response in the specified JSON format.

1.  **Metric Extraction & Calculation**:
    - Identify and extract key financial and traction metrics.
    - Understand concepts, not just keywords (e.g., "Lifetime Value" is LTV).
    - If a primary metric isn't stated, calculate it from its components if possible (e.g., LTV = ARPU / Churn Rate).
    - For each metric, provide the "value" and the exact "source_quote" from the document that supports it. If calculated, explain in the "notes".

2.  **SWOT Analysis**:
    - Based on the documents, generate a concise Strengths, Weaknesses, Opportunities, and Threats analysis. Each should be a short bullet point.

3.  **Risk Assessment**:
    - Analyze the documents for common investment red flags: inflated or poorly defined market size (TAM/SAM/SOM), unrealistic growth projections, high churn, weak unit economics (LTV:CAC), or key metrics missing entirely.
    - List any identified risks as clear, concise strings in the "risk_flags" array.

4.  **Benchmarking & Market Context**:
    - Compare the startup's key metrics (especially ARR and LTV:CAC ratio) against the provided benchmark data.
    - In the "benchmarking_summary", state whether the startup is performing below, at, or above the median for its peers and provide brief context.

5.  **Investment Memo Synthesis**:
    - **Executive Summary**: Write a brief, neutral, 2-3 sentence executive summary of the investment opportunity.
    - **Growth Potential**: Write a 2-3 sentence summary of the startup's growth potential and strategy.
    - **Recommendation**: Provide a final "investment_recommendation" from one of the following options: "Strong Candidate", "Proceed with Caution", "Further Diligence Required", or "Pass".

**RESPONSE FORMAT**:
- Respond ONLY with a valid JSON object that strictly adheres to the schema below. Do not include any text or markdown formatting outside of the JSON structure.

--- [BENCHMARK DATA FOR CONTEXT] ---
{benchmarks}

--- [PROCESSED TEXT DOCUMENTS] ---
{documents}

**JSON SCHEMA**:
{{
  "metrics": {{
    "arr": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }},
    "mrr": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }},
    "cac": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }},
    "ltv": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }},
    "ltv_cac_ratio": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }},
    "gross_margin": {{ "value": number | null, "source_quote": "string | null", "notes": "string | null" }}
  }},
  "swot_analysis": {{
    "strengths": ["List of strengths."],
    "weaknesses": ["List of weaknesses."],
    "opportunities": ["List of opportunities."],
    "threats": ["List of threats."]
  }},
  "risk_flags": ["List of identified risk factors."],
  "benchmarking_summary": "A one-sentence analysis comparing the startup to its peers.",
  "investment_memo": {{
    "executive_summary": "A 2-3 sentence summary of the investment opportunity.",
    "growth_potential": "A 2-3 sentence summary of the startup's growth potential.",
    "investment_recommendation": "One of the four specified recommendation options."
  }}
}}"""


def document_banner(document: ProcessedDocument) -> str:
    return (
        f"--- [START OF DOCUMENT: {document.file_name}] ---\n"
        f"{document.data}\n"
        f"--- [END OF DOCUMENT: {document.file_name}] ---"
    )


def join_text_documents(documents: List[ProcessedDocument]) -> str:
    return "\n\n".join(document_banner(d) for d in documents)


def build_analysis_prompt(text_documents: List[ProcessedDocument], benchmarks: List[Benchmark]) -> str:
    """
    Single prompt embedding instructions, benchmark rows and all document text.
    Inputs are passed through unchanged; no truncation is applied.
    """
    benchmark_rows = [b.model_dump(mode="json", by_alias=True) for b in benchmarks]
    return ANALYSIS_PROMPT.format(
        benchmarks=json.dumps(benchmark_rows),
        documents=join_text_documents(text_documents),
    )


# === Chat agent ===

INTENT_PROMPT = """Your task is to classify the user's intent. Respond with only one of two possible values: "data_query" or "insights_query".
- "data_query": The user is asking for specific data points, numbers, or lists from their internal database (e.g., "What is the ARR for Test 1?", "List all deals").
- "insights_query": The user is asking for general knowledge, trends, explanations, or information that requires up-to-date, external world knowledge (e.g., "What are the latest trends in the SaaS market?", "Explain LTV/CAC ratio").
User message: "{message}"
Intent:"""


SQL_SCHEMA = """Table 1: `{analytics_table}` (This table contains the user's private, analyzed deals).
Key Columns & Common Synonyms:
- dealName: STRING (The display name of the deal. Synonyms: "deal name", "company name")
- metrics_arr_value: FLOAT (Annual Recurring Revenue in USD. Synonyms: "ARR", "annual revenue")
- metrics_mrr_value: FLOAT (Monthly Recurring Revenue in USD. Synonyms: "MRR", "monthly revenue")
- metrics_cac_value: FLOAT (Customer Acquisition Cost in USD. Synonyms: "CAC", "acquisition cost")
- metrics_ltv_value: FLOAT (Customer Lifetime Value in USD. Synonyms: "LTV", "lifetime value")
- metrics_ltv_cac_ratio_value: FLOAT (Ratio of LTV to Customer Acquisition Cost. Synonyms: "LTV/CAC ratio", "ltv cac")
- metrics_gross_margin_value: FLOAT (Gross margin. Synonyms: "margin", "gross margin")
- investment_recommendation: STRING (e.g., "Strong Candidate", "Pass". Synonyms: "recommendation", "verdict")
- strengths: STRING (REPEATED)
- risk_flags: STRING (REPEATED. Synonyms: "risks", "flags", "red flags")
- risk_flags_count: INTEGER (Number of risk flags)

Table 2: `{benchmark_table}` (This table contains public, historical data about VC investments for benchmarking).
Key Columns & Common Synonyms:
- name: STRING (The official company name. Synonyms: "company", "organization")
- market: STRING (The industry market, e.g., 'Hospitality', 'Education'. Synonyms: "industry", "sector")
- funding_total_usd: FLOAT (Total venture funding in USD. Synonyms: "total funding", "investment")"""


SQL_PROMPT = """You are a world-class BigQuery SQL expert. Your task is to convert a natural language question into a single, valid BigQuery SQL query.

RULES:
1.  You have access to two tables. Use the following detailed schemas:
{schema}
2.  You can join these tables on `{analytics_table}`.dealName = `{benchmark_table}`.name.
3.  You MUST map natural language terms and acronyms to the correct technical column names based on the schema descriptions and synonyms. For example, if a user asks for "LTV", you must query the "metrics_ltv_value" column.
4.  Prioritize querying `{analytics_table}` if the question refers to the user's own deals (e.g., "Test 1", "my deals").
5.  Respond ONLY with the raw SQL query. Do not include any other text, formatting, or explanations.

Example 1 (Querying User's Deals with Synonym and Case-Insensitivity):
Question: "What is the LTV for test 1?"
SQL: SELECT metrics_ltv_value FROM `{analytics_table}` WHERE LOWER(dealName) = 'test 1'

Example 2 (Querying Public Data):
Question: "list the top 5 companies in the Hospitality sector by total funding"
SQL: SELECT name, funding_total_usd FROM `{benchmark_table}` WHERE market = 'Hospitality' ORDER BY funding_total_usd DESC LIMIT 5

---
Now, convert the following question based on all the rules above:
Question: "{message}"
SQL:"""


INSIGHTS_PROMPT = """Act as an expert investment analyst. The user is asking for market insights or explanations.
Answer the following question in a comprehensive, well-structured, and helpful way.
Use your general knowledge and the provided search results to formulate your answer.
Format your response using Markdown.
Question: "{message}\""""


def build_intent_prompt(message: str) -> str:
    return INTENT_PROMPT.format(message=message)


def build_sql_prompt(message: str, analytics_table: str, benchmark_table: str) -> str:
    schema = SQL_SCHEMA.format(analytics_table=analytics_table, benchmark_table=benchmark_table)
    return SQL_PROMPT.format(
        schema=schema,
        analytics_table=analytics_table,
        benchmark_table=benchmark_table,
        message=message,
    )


def build_insights_prompt(message: str) -> str:
    return INSIGHTS_PROMPT.format(message=message)


# === Enhanced chat agent ===

ENHANCED_INTENT_PROMPT = """As an expert intent classifier for a venture capital AI assistant, analyze the user's message and classify it into one of these categories:

1. "data_query": User wants specific data points, metrics, or factual information about deals
2. "comparison": User wants to compare multiple deals or benchmark against market data
3. "insights": User wants market analysis, trends, or explanations about investment concepts
4. "recommendation": User wants investment advice or decision support

Additionally, extract any deal names, company names, or metrics mentioned.

User message: "{message}"

Respond with JSON:
{{
  "intent": "category",
  "confidence": 0.95,
  "entities": ["extracted entities"]
}}"""


RAG_PROMPT = """You are SealDeal AI, an expert venture capital analyst with access to comprehensive deal data.

Context from deal database:
{context}

User question: {message}
Query intent: {intent}
Mentioned entities: {entities}

Provide a comprehensive, data-driven response using the context above. Include specific metrics and references to the deals mentioned. Format your response in markdown for better readability.

If comparing deals, create a clear comparison table. If analyzing trends, reference specific examples from the data."""


# role -> system instruction, fanned out in parallel
EXPERT_PROMPTS: Dict[str, str] = {
    "dataAnalyst": "You are a data analyst. Extract and analyze quantitative metrics from the query.",
    "marketExpert": "You are a market expert. Provide industry context and competitive analysis.",
    "riskAssessor": "You are a risk assessor. Identify potential risks and red flags.",
    "investmentAdvisor": "You are an investment advisor. Provide actionable investment recommendations.",
}


SYNTHESIS_PROMPT = """Synthesize the following expert analyses into a comprehensive investment insight:

{analyses}

Provide a unified, actionable response that combines all perspectives. Format in markdown."""


ENHANCED_INSIGHTS_PROMPT = """You are SealDeal AI, an expert venture capital analyst. Provide comprehensive market insights for the following query.

Use your knowledge of venture capital, startup ecosystems, and market trends to provide actionable intelligence.

Query: {message}

Provide a detailed, well-structured response in markdown format."""


def build_enhanced_intent_prompt(message: str) -> str:
    return ENHANCED_INTENT_PROMPT.format(message=message)


def build_rag_prompt(message: str, intent: str, entities: List[str], context_documents: List[str]) -> str:
    return RAG_PROMPT.format(
        context="\n\n---\n\n".join(context_documents),
        message=message,
        intent=intent,
        entities=", ".join(entities),
    )


def build_expert_prompt(role: str, message: str, intent: str) -> str:
    return f"{EXPERT_PROMPTS[role]}\n\nUser query: {message}\nIntent: {intent}"


def build_synthesis_prompt(responses: Dict[str, str]) -> str:
    analyses = "\n\n".join(f"{role.upper()}:\n{text}" for role, text in responses.items())
    return SYNTHESIS_PROMPT.format(analyses=analyses)


def build_enhanced_insights_prompt(message: str) -> str:
    return ENHANCED_INSIGHTS_PROMPT.format(message=message)
