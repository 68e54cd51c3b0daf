"""
SealDeal - Chat Result Formatting
Turns BigQuery rows into a sentence or a markdown table
"""

import re
from decimal import Decimal
from typing import Any, Dict, List

CURRENCY_METRICS = ("arr", "mrr", "cac", "ltv")
NO_RESULTS = "No results found for your query."

_COMPACT_UNITS = ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _trim_decimals(number: float, digits: int) -> str:
    return f"{number:,.{digits}f}".rstrip("0").rstrip(".")


def compact_usd(value: float) -> str:
    """1500000 -> $1.5M, 2500 -> $2.5K"""
    value = float(value)
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    for threshold, suffix in _COMPACT_UNITS:
        if magnitude >= threshold:
            return f"{sign}${_trim_decimals(magnitude / threshold, 2)}{suffix}"
    return f"{sign}${_trim_decimals(magnitude, 2)}"


def format_header(header: str) -> str:
    """metrics_arr_value -> ARR"""
    return re.sub(r"metrics_|_value|_source", " ", header).replace("_", " ").strip().upper()


def format_value(key: str, value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if not _is_number(value):
        return str(value)

    if "ratio" not in key.lower() and any(metric in key.lower() for metric in CURRENCY_METRICS):
        return compact_usd(value)
    if isinstance(value, int):
        return f"{value:,}"
    return _trim_decimals(float(value), 3)


def format_results(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return NO_RESULTS

    # Single value -> conversational sentence
    if len(rows) == 1 and len(rows[0]) == 1:
        key, value = next(iter(rows[0].items()))
        if "count" in key or key.startswith("f0_"):
            return f"There are {value} deals analyzed in the database."
        return f"The {format_header(key)} is {format_value(key, value)}."

    headers = list(rows[0].keys())
    lines = [
        f"| {' | '.join(format_header(h) for h in headers)} |",
        f"| {' | '.join('---' for _ in headers)} |",
    ]
    for row in rows:
        lines.append(f"| {' | '.join(format_value(h, row.get(h)) for h in headers)} |")
    return "\n".join(lines)
