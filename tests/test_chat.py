import json

import pytest

from chat_format import NO_RESULTS, compact_usd, format_header, format_results, format_value
from enhanced_chat_agent import row_to_text
from exceptions import ModelAPIError, ModelResponseError, ServiceUnavailableError


ACME_ROW = {
    "analysisId": "a-1",
    "dealName": "Acme",
    "metrics_arr_value": 500000,
    "metrics_mrr_value": None,
    "metrics_ltv_value": 3000,
    "metrics_ltv_cac_ratio_value": 3.0,
    "executive_summary": "Workflow software for logistics.",
    "strengths": ["Team"],
    "risk_flags": [],
    "investment_recommendation": "Strong Candidate",
    "exported": True,
}
BETA_ROW = {**ACME_ROW, "analysisId": "a-2", "dealName": "Beta", "executive_summary": "Payments for clinics."}


def test_empty_result():
    assert format_results([]) == NO_RESULTS


def test_single_count_becomes_a_sentence():
    assert format_results([{"f0_": 12}]) == "There are 12 deals analyzed in the database."
    assert format_results([{"deal_count": 3}]) == "There are 3 deals analyzed in the database."


def test_single_metric_becomes_a_sentence():
    assert format_results([{"metrics_arr_value": 1500000}]) == "The ARR is $1.5M."


def test_multiple_rows_become_a_table():
    table = format_results([
        {"dealName": "Acme", "metrics_arr_value": 500000},
        {"dealName": "Beta", "metrics_arr_value": None},
    ])
    assert table.splitlines() == [
        "| DEALNAME | ARR |",
        "| --- | --- |",
        "| Acme | $500K |",
        "| Beta | N/A |",
    ]


def test_value_formatting():
    assert compact_usd(2500) == "$2.5K"
    assert compact_usd(999) == "$999"
    assert format_value("metrics_ltv_cac_ratio_value", 3.14159) == "3.142"
    assert format_value("strengths_count", 12000) == "12,000"
    assert format_value("strengths", ["Team", "Moat"]) == "Team, Moat"
    assert format_header("metrics_gross_margin_value") == "GROSS MARGIN"


def test_row_to_text_reads_like_a_report():
    text = row_to_text(ACME_ROW)
    assert text.startswith("Deal Analysis: Acme")
    assert "Annual Recurring Revenue (ARR): $500,000" in text
    assert "Monthly Recurring Revenue (MRR): N/A" in text
    assert "Risk Flags: None identified" in text
    assert text.endswith("Final Recommendation: Strong Candidate")


# === ChatAgent ===

@pytest.mark.asyncio
async def test_data_query_runs_generated_sql(store, model, exporter, chat_agent):
    model.queue("data_query", "```sql\nSELECT dealName, metrics_arr_value FROM t\n```")
    exporter.query_results = [
        {"dealName": "Acme", "metrics_arr_value": 500000},
        {"dealName": "Beta", "metrics_arr_value": 2000000},
    ]

    response = await chat_agent.respond("session-1", "What is the ARR of each deal?")

    assert response["sql"] == "SELECT dealName, metrics_arr_value FROM t"
    assert exporter.queries == [response["sql"]]
    assert response["result"] == exporter.query_results
    assert "| Beta | $2M |" in response["formatted"]

    user, assistant = store.messages["session-1"]
    assert user.role == "user"
    assert assistant.sql == response["sql"]


@pytest.mark.asyncio
async def test_other_intents_get_a_web_grounded_answer(store, model, chat_agent):
    model.queue("insights_query", "Vertical SaaS multiples compressed in 2023.")

    response = await chat_agent.respond("session-1", "How are SaaS valuations trending?")

    assert response == {"sql": "N/A", "formatted": "Vertical SaaS multiples compressed in 2023."}
    assert model.calls[1]["web_grounded"] is True


@pytest.mark.asyncio
async def test_empty_grounded_answer_falls_back(model, chat_agent):
    model.queue("insights_query", ModelResponseError("Model returned an invalid response."))

    response = await chat_agent.respond("session-1", "Anything new?")

    assert response["formatted"] == "I was unable to find any information on that topic."


@pytest.mark.asyncio
async def test_write_statements_are_refused(model, exporter, chat_agent):
    model.queue("data_query", "DELETE FROM t WHERE true")

    with pytest.raises(ModelResponseError):
        await chat_agent.respond("session-1", "Remove everything")

    assert exporter.queries == []


@pytest.mark.asyncio
async def test_persistent_rate_limit_surfaces_as_unavailable(model, chat_agent):
    model.queue("data_query", *(ModelAPIError(429, "quota") for _ in range(3)))

    with pytest.raises(ServiceUnavailableError):
        await chat_agent.respond("session-1", "Count the deals")


# === EnhancedChatAgent ===

def _classification(intent, entities=(), confidence=0.9):
    return json.dumps({"intent": intent, "confidence": confidence, "entities": list(entities)})


@pytest.mark.asyncio
async def test_comparison_uses_matching_deals_as_context(store, model, enhanced_chat_agent):
    store.analytics = {"a-1": ACME_ROW, "a-2": BETA_ROW}
    model.queue(_classification("comparison", ["acme"]), "Acme leads on ARR.")

    response = await enhanced_chat_agent.process_message("session-2", "How does Acme compare?")

    assert response["response"] == "Acme leads on ARR."
    assert response["intent"] == "comparison"
    assert response["entities"] == ["acme"]
    prompt = model.calls[1]["parts"][0]["text"]
    assert "Deal Analysis: Acme" in prompt
    assert "Deal Analysis: Beta" not in prompt


@pytest.mark.asyncio
async def test_unmatched_entities_fall_back_to_any_deals(store, enhanced_chat_agent):
    store.analytics = {"a-1": ACME_ROW, "a-2": BETA_ROW}

    documents = await enhanced_chat_agent.retrieve_relevant_documents(["Gamma"])

    assert len(documents) == 2


@pytest.mark.asyncio
async def test_recommendation_consults_four_experts(store, model, enhanced_chat_agent):
    model.queue(_classification("recommendation"), "data", "market", "risk", "advice", "Invest with caution.")

    response = await enhanced_chat_agent.process_message("session-2", "Should we invest in Acme?")

    assert response["response"] == "Invest with caution."
    synthesis = model.calls[-1]["parts"][0]["text"]
    for role in ("DATAANALYST", "MARKETEXPERT", "RISKASSESSOR", "INVESTMENTADVISOR"):
        assert role in synthesis

    assistant = store.messages["session-2"][-1]
    assert assistant.metadata["processingMethod"] == "rag"


@pytest.mark.asyncio
async def test_data_intent_reuses_sql_path(store, model, exporter, enhanced_chat_agent):
    model.queue(_classification("data_query"), "SELECT COUNT(*) FROM t")
    exporter.query_results = [{"f0_": 4}]

    response = await enhanced_chat_agent.process_message("session-2", "How many deals?")

    assert response["response"] == "There are 4 deals analyzed in the database."
    assert store.messages["session-2"][-1].metadata["processingMethod"] == "sql"


@pytest.mark.asyncio
async def test_unparseable_classification_defaults_to_insights(model, enhanced_chat_agent):
    model.queue("not json at all", "Fintech is consolidating.")

    response = await enhanced_chat_agent.process_message("session-2", "What's happening in fintech?")

    assert (response["intent"], response["confidence"], response["entities"]) == ("insights", 0.5, [])
    assert model.calls[1]["web_grounded"] is True
