"""System prompts and history rendering for the generation backend."""

import json
import logging
from collections.abc import Iterable
from typing import Any

logger = logging.getLogger(__name__)

DATA_CONTEXT_INLINE_ROWS = 5

_ANALYST_PROMPT = """You are a DATA ANALYST helping users understand their {dialect} database. You analyze data, find insights, and answer business questions.

## Your Role
- Be a business analyst, not just a query generator
- When asked "what's in my database?" provide insights: key metrics, trends, notable data
- Calculate totals, averages, growth rates, comparisons
- Identify patterns and anomalies in the data

## Response Rules
1. ALWAYS include exactly one ```{fence} block for any data question - the application executes it and displays the results
2. For follow-ups ("what about the second one?") write a NEW query - don't just state values
3. Keep explanations brief - the data table speaks for itself
4. Never output [DATA_CONTEXT] tags or raw data values

## {dialect} Syntax
{notes}
- Prefer read-only queries unless the user explicitly asks to change data

## Chart-Friendly Results
Column order matters for visualization:
1. FIRST: Label column (name, title, date) - human-readable text
2. SECOND+: Value columns (amounts, counts, percentages)
Use names, not IDs: join to get display names.

## Sorting
- "Top/best/highest" -> sort by value descending
- "Bottom/worst/lowest" -> sort by value ascending
- Time series -> sort by date ascending

## Scope
Only answer database/data questions. Politely redirect other topics."""

_SCHEMA_SUFFIX = """

The user's database has the following schema:
{schema}

IMPORTANT: Use this schema to understand the database structure. Use the EXACT table and column names as shown above."""

_NO_SCHEMA_SUFFIX = """

No database schema is available. You can help with general query questions or ask the user to connect a database."""

_TABULAR_PROMPT = """You are a DATA ANALYST helping with an uploaded tabular data source.

Answer questions about the data in plain language, with brief explanations. [DATA_CONTEXT] tags show previous results - use them for context but NEVER output them.{context}"""

_QUERY_GENERATION_PROMPT = """You are an expert {dialect} query generator. Given a database schema and a natural language question, generate a valid {dialect} query.

Database Schema:
{schema}

Rules:
1. Only generate read-only queries unless explicitly asked for modifications
2. Use proper syntax for {dialect}
3. Include appropriate JOINs when needed
4. Use parameterized queries where applicable
5. Return ONLY the query, no explanations

If the question cannot be answered with the given schema, respond with: ERROR: [explanation]"""

QUERY_ERROR_SENTINEL = "ERROR:"


def build_analyst_prompt(
    schema_context: str | None,
    dialect_name: str,
    fence_tag: str = "sql",
    prompt_notes: str = "",
) -> str:
    """Build the conversational system prompt for a database-bound turn.

    Args:
        schema_context: Raw schema text, or None when unavailable.
        dialect_name: Display name of the engine's query language.
        fence_tag: Code-fence tag the model should put its query under.
        prompt_notes: Engine-specific syntax guidance lines.

    Returns:
        The complete system prompt.
    """
    prompt = _ANALYST_PROMPT.format(
        dialect=dialect_name,
        fence=fence_tag,
        notes=prompt_notes or "- Use standard syntax for this engine",
    )
    if schema_context:
        return prompt + _SCHEMA_SUFFIX.format(schema=schema_context)
    return prompt + _NO_SCHEMA_SUFFIX


def build_tabular_prompt(source_context: str | None) -> str:
    """Build the system prompt for a conversation bound to a tabular source."""
    context = f"\n\nData source description:\n{source_context}" if source_context else ""
    return _TABULAR_PROMPT.format(context=context)


def build_query_generation_prompt(schema_context: str, dialect_name: str = "SQL") -> str:
    """Build the bare query-generation prompt with the ``ERROR:`` sentinel."""
    return _QUERY_GENERATION_PROMPT.format(dialect=dialect_name, schema=schema_context)


def is_generation_refusal(response_text: str) -> bool:
    """Return True if a query-generation reply is the ``ERROR:`` sentinel."""
    return response_text.lstrip().upper().startswith(QUERY_ERROR_SENTINEL)


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def format_data_context(result_json: str | None) -> str | None:
    """Render a stored result as a ``[DATA_CONTEXT: ...]`` suffix.

    Up to five rows are inlined as ``col=value`` pairs; larger results
    only report their row count. Failures, empty results and unparseable
    payloads produce no suffix.
    """
    if not result_json:
        return None
    try:
        data = json.loads(result_json)
    except (json.JSONDecodeError, TypeError):
        logger.debug("Skipping data context for unparseable result payload")
        return None
    if not isinstance(data, dict):
        return None
    rows = data.get("rows")
    if not isinstance(rows, list) or not rows:
        return None

    if len(rows) <= DATA_CONTEXT_INLINE_ROWS:
        lines = [
            ", ".join(f"{k}={_format_value(v)}" for k, v in row.items())
            for row in rows
            if isinstance(row, dict)
        ]
        return f"[DATA_CONTEXT: {len(rows)} row(s): {' | '.join(lines)}]"
    return f"[DATA_CONTEXT: Query returned {len(rows)} rows]"


def build_history(messages: Iterable[Any]) -> list[tuple[str, str]]:
    """Replay stored messages as (role, content) pairs in creation order.

    Assistant messages that carry a result get a data-context suffix so
    follow-up questions can refer to earlier answers.

    Args:
        messages: Message rows already ordered by sequence.
    """
    history: list[tuple[str, str]] = []
    for message in messages:
        content = message.content
        if message.role == "assistant":
            suffix = format_data_context(message.result_json)
            if suffix:
                content = f"{content}\n{suffix}"
        history.append((message.role, content))
    return history
