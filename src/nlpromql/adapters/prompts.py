"""Prompt templates for synonym generation, query understanding and PromQL generation."""

from __future__ import annotations

import json
from typing import Any


_SYNONYM_RULES = """\
Rules:
1. Produce single words only. Split names on '_' and find synonyms for each part as well as for the whole.
2. Include nouns and verbs that operators would type when asking about this {kind}.
3. Stay close to the meaning of the name{description_rule}.
4. Prefer vocabulary used on dashboards, in alerts and in runbooks.
5. Return between 5 and 10 distinct synonyms per {kind}; never repeat one.
6. Use every input name exactly as given as a key of the result; do not add names."""

METRIC_SYNONYM_PROMPT = (
    "You receive Prometheus metric names, each with its HELP text (which may be empty).\n"
    "Suggest the words a person might use to refer to each metric.\n\n"
    + _SYNONYM_RULES.format(kind="metric", description_rule="; rely on the HELP text when it is present")
    + "\n\nMetrics:\n{payload}\n"
)

LABEL_SYNONYM_PROMPT = (
    "You receive Prometheus label names.\n"
    "Suggest the words a person might use to refer to each label.\n\n"
    + _SYNONYM_RULES.format(kind="label", description_rule="")
    + "\n\nLabels:\n{payload}\n"
)

QUERY_UNDERSTANDING_PROMPT = """\
Read the monitoring question below and list the words that could name Prometheus metrics,
label names and label values.

Question: {user_query}

Rules:
1. For every relevant term add at least 10 related single words (no separators) that someone
   might use for the same thing in a monitoring context.
2. Skip words that only express PromQL operations or aggregation (total, number, sum, count, avg,
   quantile, rate, irate, increase, topk, bottomk, time, all, any) as well as stop words and punctuation.
3. When the question names a metric, treat the remaining nouns as possible label names.
4. A specific value next to a label ("dev environment", "prometheus server") is a label value
   ("dev", "prometheus") paired with a label name ("environment", "server").
5. Questions such as "check everything for x" concern labels and values only; leave metric names empty.
"""

PROMQL_SYSTEM_PROMPT = """\
You are a Prometheus expert who writes PromQL for questions asked in plain language.

Every request has four sections, each JSON:

1. Relevant Metrics: metric name -> label name -> {"match_score", "sample_values"}.
   Only use label names listed under a metric together with that metric. Higher match_score
   means more relevant. sample_values shows up to 5 values; similar values may be used.
2. Relevant Labels: label name -> {"match_score", "sample_values"}. Use these when a query
   needs no specific metric.
3. Relevant History: metric name -> label name -> value, taken from queries that worked before.
   Prefer metrics that appear here.
4. User Query: the question to answer.

Decide whether the question needs metrics, labels or both, then write the PromQL queries that
answer it best, using only metric/label combinations from the sections above. If every section
is empty, return no queries.

Score each query by relevance (history first, then match_score) and report, for each query, the
metric -> label -> value pairs it uses (empty when it uses no metric).
"""

PROMQL_USER_TEMPLATE = """\
# Relevant Metrics
{relevant_metrics}

# Relevant Labels
{relevant_labels}

# Relevant History
{relevant_history}

# User Query
{user_query}
"""


def _as_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True)


def metric_synonym_prompt(batch: dict[str, str]) -> str:
    return METRIC_SYNONYM_PROMPT.format(payload=_as_json(batch))


def label_synonym_prompt(batch: list[str]) -> str:
    return LABEL_SYNONYM_PROMPT.format(payload=_as_json(batch))


def query_understanding_prompt(user_query: str) -> str:
    return QUERY_UNDERSTANDING_PROMPT.format(user_query=user_query)


def promql_user_prompt(
    user_query: str,
    relevant_metrics: dict[str, Any],
    relevant_labels: dict[str, Any],
    relevant_history: dict[str, Any],
) -> str:
    return PROMQL_USER_TEMPLATE.format(
        relevant_metrics=_as_json(relevant_metrics),
        relevant_labels=_as_json(relevant_labels),
        relevant_history=_as_json(relevant_history),
        user_query=user_query,
    )
