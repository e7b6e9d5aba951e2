"""
spec-reconciler — unit tests for the consistency checker

File: tests/unit/consistency/test_checker.py
Last updated: 2026-10-17

Purpose
- Validate target enumeration, verdict interpretation and memoisation.

What this test file should cover
- Contradiction checks target parent/child and sibling pairs only.
- Contradictions default to error severity; other categories to warning.
- Re-checking an unchanged snapshot issues no new oracle calls and yields the
  same report.
- Oracle failures surface as warnings instead of aborting the check.
"""

from __future__ import annotations

import pytest

from spec_reconciler.consistency.checker import ConsistencyChecker, merge_issues
from spec_reconciler.domain.models import (
    Confidence,
    Issue,
    IssueCategory,
    IssueKind,
    Severity,
)
from spec_reconciler.oracle.base import BackoffConfig, OracleCapability
from spec_reconciler.oracle.client import OracleClient
from spec_reconciler.oracle.scripted import ScriptedOracle, ScriptRule
from spec_reconciler.spec_graph.builder import build_spec_graph_from_texts
from spec_reconciler.spec_graph.graph import SpecGraph

_CORPUS = {
    "product.md": "# Product\nA todo app.\n",
    "create.md": "# Create\nspecifies: product.md#product\n\nItems must have titles.\n",
    "delete.md": "# Delete\nspecifies: product.md#product\n\nItems are never deleted.\n",
}


async def _no_sleep(_: float) -> None:
    return None


def _graph() -> SpecGraph:
    return build_spec_graph_from_texts(_CORPUS).graph


def _checker(oracle: ScriptedOracle, *categories: IssueKind) -> ConsistencyChecker:
    client = OracleClient(oracle, backoff=BackoffConfig(max_retries=0), sleep=_no_sleep)
    return ConsistencyChecker(client, categories=categories or (IssueKind.CONTRADICTION,))


def test_contradiction_targets_pairs_only() -> None:
    checker = _checker(ScriptedOracle())
    targets = checker.targets(_graph())

    assert [target.node_ids for target in targets] == [
        ("create.md#create", "delete.md#delete"),
        ("create.md#create", "product.md#product"),
        ("delete.md#delete", "product.md#product"),
    ]


def test_single_node_categories_target_every_node() -> None:
    checker = _checker(ScriptedOracle(), IssueKind.GAP)
    assert len(checker.targets(_graph())) == 3


async def test_contradiction_becomes_blocking_error() -> None:
    oracle = ScriptedOracle(
        rules=[
            ScriptRule(
                capability=OracleCapability.ANALYZE,
                focus=("create.md#create", "delete.md#delete"),
                constraints={"category": "contradiction"},
                respond={
                    "verdict": "contradiction",
                    "issues": [
                        {
                            "explanation": "titles required but deletion forbidden",
                            "locations": ["create.md#create", "delete.md#delete"],
                            "confidence": "high",
                        }
                    ],
                },
            )
        ]
    )
    report = await _checker(oracle).check(_graph())

    assert not report.is_consistent
    (issue,) = report.errors
    assert issue.kind is IssueKind.CONTRADICTION
    assert issue.category is IssueCategory.SEMANTIC
    assert issue.locations == ("create.md#create", "delete.md#delete")
    assert issue.confidence is Confidence.HIGH


async def test_unknown_locations_fall_back_to_target() -> None:
    oracle = ScriptedOracle(
        lambda request: {
            "verdict": "gap",
            "issues": [{"locations": ["nowhere.md#x"], "explanation": "missing"}],
        }
        if request.context.focus == ("create.md#create",)
        else None
    )
    report = await _checker(oracle, IssueKind.GAP).check(_graph())

    (issue,) = report.issues
    assert issue.severity is Severity.WARNING
    assert issue.locations == ("create.md#create",)
    assert report.is_consistent


async def test_locations_outside_the_call_context_are_dropped() -> None:
    chain = build_spec_graph_from_texts(
        {
            "a.md": "# A\nRoot.\n",
            "b.md": "# B\nspecifies: a.md#a\n\nMiddle.\n",
            "c.md": "# C\nspecifies: b.md#b\n\nLeaf.\n",
        }
    ).graph
    oracle = ScriptedOracle(
        lambda request: {
            "verdict": "gap",
            "issues": [{"locations": ["a.md#a", "c.md#c", "b.md#b->a.md#a"]}],
        }
        if request.context.focus == ("a.md#a",)
        else None
    )
    report = await _checker(oracle, IssueKind.GAP).check(chain)

    (issue,) = report.issues
    assert issue.locations == ("a.md#a", "b.md#b->a.md#a")


async def test_ambiguous_verdict_caps_confidence() -> None:
    oracle = ScriptedOracle(
        lambda request: {"verdict": "ambiguous", "issues": [{"confidence": "high"}]}
    )
    report = await _checker(oracle, IssueKind.AMBIGUITY).check(_graph())

    assert report.issues
    assert {issue.confidence for issue in report.issues} == {Confidence.MEDIUM}


async def test_recheck_of_unchanged_snapshot_is_memoised() -> None:
    oracle = ScriptedOracle(
        lambda request: {"verdict": "gap", "issues": [{"explanation": "vague"}]}
    )
    checker = _checker(oracle, IssueKind.GAP, IssueKind.CONTRADICTION)
    graph = _graph()

    first = await checker.check(graph)
    calls_after_first = len(oracle.requests)
    second = await checker.check(graph)

    assert first == second
    assert len(oracle.requests) == calls_after_first


@pytest.mark.parametrize("max_concurrency", [1, 4])
async def test_siblings_sharing_a_neighbourhood_keep_their_own_verdicts(
    max_concurrency: int,
) -> None:
    oracle = ScriptedOracle(
        lambda request: {"verdict": "gap", "issues": [{"explanation": "no title rules"}]}
        if request.context.focus == ("delete.md#delete",)
        else None
    )
    client = OracleClient(oracle, backoff=BackoffConfig(max_retries=0), sleep=_no_sleep)
    checker = ConsistencyChecker(
        client, categories=(IssueKind.GAP,), max_concurrency=max_concurrency
    )
    graph = _graph()

    first = await checker.check(graph)
    second = await checker.check(graph)

    assert [issue.locations for issue in first.of_kind(IssueKind.GAP)] == [
        ("delete.md#delete",)
    ]
    assert first.to_json() == second.to_json()
    assert len(oracle.requests) == len(graph)


async def test_adding_an_unrelated_node_checks_only_that_node() -> None:
    oracle = ScriptedOracle()
    checker = _checker(oracle, IssueKind.GAP)
    graph = _graph()
    await checker.check(graph)
    before = len(oracle.requests)

    extended = build_spec_graph_from_texts({**_CORPUS, "other.md": "# Other\nUnrelated.\n"}).graph
    await checker.check(extended)

    assert len(oracle.requests) == before + 1


async def test_oracle_failure_becomes_warning() -> None:
    oracle = ScriptedOracle(
        rules=[ScriptRule(capability=OracleCapability.ANALYZE, fail="unavailable")]
    )
    report = await _checker(oracle, IssueKind.GAP).check(_graph())

    assert report.is_consistent
    assert {issue.kind for issue in report.issues} == {IssueKind.ORACLE_FAILURE}
    assert all(issue.severity is Severity.WARNING for issue in report.issues)


async def test_structural_issues_are_merged_into_report() -> None:
    build = build_spec_graph_from_texts(
        {"a.md": "# A\nspecifies: b.md#b\n\nx\n", "b.md": "# B\nspecifies: a.md#a\n\ny\n"}
    )
    report = await _checker(ScriptedOracle(), IssueKind.GAP).check(build.graph, build.issues)

    assert [issue.kind for issue in report.errors] == [IssueKind.CYCLE]
    assert report.of_kind("cycle") == report.errors


def test_merge_keeps_most_severe_duplicate() -> None:
    warning = Issue(
        kind=IssueKind.GAP, severity=Severity.WARNING, locations=("a",), explanation="w"
    )
    error = Issue(kind=IssueKind.GAP, severity=Severity.ERROR, locations=("a",), explanation="e")
    assert merge_issues([warning, error]) == (error,)
