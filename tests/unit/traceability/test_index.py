"""
spec-reconciler — unit tests for the traceability index

File: tests/unit/traceability/test_index.py
Last updated: 2026-10-17

Purpose
- Validate oracle-derived links between spec nodes and code units.

What this test file should cover
- Bidirectional queries ordered by confidence.
- Excluded units never reach the oracle and never carry links.
- Unknown unit paths in oracle answers are discarded.
- Pair cache reuse across builds and wholesale reset on rebuild.
- Keyword narrowing for large inventories.
- Oracle failures are recorded per node.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from spec_reconciler.code_artifact.exclusions import ExclusionList
from spec_reconciler.code_artifact.snapshot import CodeSnapshot
from spec_reconciler.domain.models import Confidence, SpecNode
from spec_reconciler.oracle.base import (
    BackoffConfig,
    DocumentRole,
    OracleCapability,
    OracleRequest,
)
from spec_reconciler.oracle.client import OracleClient
from spec_reconciler.oracle.scripted import ScriptedOracle, ScriptRule
from spec_reconciler.spec_graph.builder import build_spec_graph_from_texts
from spec_reconciler.spec_graph.graph import SpecGraph
from spec_reconciler.traceability.index import (
    TraceabilityIndex,
    keyword_tokens,
    narrow_candidates,
)

_CORPUS = {
    "app.md": "# App\nA todo service.\n",
    "items.md": "# Items\nspecifies: app.md#app\n\nItems are stored in a list.\n",
}
_CODE = {
    "src/items.py": "ITEMS = []\n",
    "src/app.py": "from items import ITEMS\n",
    "build/generated.py": "x = 1\n",
}


async def _no_sleep(_: float) -> None:
    return None


def _graph() -> SpecGraph:
    return build_spec_graph_from_texts(_CORPUS).graph


def _offered(request: OracleRequest) -> list[str]:
    (inventory,) = request.context.by_role(DocumentRole.INVENTORY)
    return [row["path"] for row in json.loads(inventory.content)]


def _tracer(mapping: Mapping[str, list[tuple[str, str]]]) -> ScriptedOracle:
    def respond(request: OracleRequest) -> dict[str, object] | None:
        if request.capability is not OracleCapability.TRACE:
            return None
        pairs = mapping.get(request.context.focus[0], [])
        return {"links": [{"path": path, "confidence": conf} for path, conf in pairs]}

    return ScriptedOracle(respond)


def _index(oracle: ScriptedOracle, **kwargs: object) -> TraceabilityIndex:
    client = OracleClient(oracle, backoff=BackoffConfig(max_retries=0), sleep=_no_sleep)
    return TraceabilityIndex(client, **kwargs)  # type: ignore[arg-type]


_LINKS = {
    "app.md#app": [("src/app.py", "high"), ("src/items.py", "low")],
    "items.md#items": [("src/items.py", "high")],
}


async def test_links_are_queryable_both_ways() -> None:
    index = await _index(_tracer(_LINKS)).build(_graph(), CodeSnapshot.from_texts(_CODE))

    forward = index.spec_to_code("app.md#app")
    assert [(unit.path, conf) for unit, conf in forward] == [
        ("src/app.py", Confidence.HIGH),
        ("src/items.py", Confidence.LOW),
    ]
    backward = index.code_to_spec("src/items.py")
    assert [(node.node_id, conf) for node, conf in backward] == [
        ("items.md#items", Confidence.HIGH),
        ("app.md#app", Confidence.LOW),
    ]
    assert index.image() == frozenset({"src/app.py", "src/items.py"})
    assert index.units_for(["app.md#app"], primary_only=True) == {"src/app.py"}
    assert len(index.links()) == 3


async def test_excluded_units_are_never_offered() -> None:
    oracle = _tracer({"app.md#app": [("build/generated.py", "high")]})
    index = await _index(oracle, exclusions=ExclusionList.parse("build/")).build(
        _graph(), CodeSnapshot.from_texts(_CODE)
    )

    for request in oracle.requests_for(OracleCapability.TRACE):
        assert "build/generated.py" not in _offered(request)
    assert index.image() == frozenset()


async def test_unknown_paths_are_discarded() -> None:
    oracle = _tracer({"app.md#app": [("src/ghost.py", "high"), ("src/app.py", "medium")]})
    index = await _index(oracle).build(_graph(), CodeSnapshot.from_texts(_CODE))

    assert index.image() == frozenset({"src/app.py"})


async def test_pair_cache_skips_oracle_on_unchanged_inputs() -> None:
    oracle = _tracer(_LINKS)
    index = _index(oracle)
    graph = _graph()
    code = CodeSnapshot.from_texts(_CODE)

    await index.build(graph, code)
    first_links = index.links()
    await index.build(graph, code)

    assert index.stats().oracle_calls == 0
    assert index.links() == first_links


async def test_changed_unit_is_re_offered_alone() -> None:
    oracle = _tracer(_LINKS)
    index = _index(oracle)
    graph = _graph()
    await index.build(graph, CodeSnapshot.from_texts(_CODE))
    oracle.requests.clear()

    await index.build(graph, CodeSnapshot.from_texts({**_CODE, "src/app.py": "changed\n"}))

    offered = {request.context.focus[0]: _offered(request) for request in oracle.requests}
    assert offered == {"app.md#app": ["src/app.py"], "items.md#items": ["src/app.py"]}


async def test_rebuild_discards_cached_pairs() -> None:
    oracle = _tracer(_LINKS)
    index = _index(oracle)
    graph = _graph()
    code = CodeSnapshot.from_texts(_CODE)
    await index.build(graph, code)
    oracle.requests.clear()

    await index.rebuild(graph, code)

    assert index.stats().oracle_calls == len(graph)
    assert len(oracle.requests_for(OracleCapability.TRACE)) == len(graph)


async def test_identical_units_keep_separate_cached_pairs() -> None:
    oracle = _tracer({"app.md#app": [("alpha/__init__.py", "high")]})
    index = _index(oracle)
    graph = _graph()
    code = CodeSnapshot.from_texts({"alpha/__init__.py": "", "beta/__init__.py": ""})

    await index.build(graph, code)
    calls = len(oracle.requests)
    await index.build(graph, code)

    assert len(oracle.requests) == calls
    assert index.image() == frozenset({"alpha/__init__.py"})
    assert index.code_to_spec("beta/__init__.py") == []


async def test_with_exclusions_drops_existing_links() -> None:
    index = await _index(_tracer(_LINKS)).build(_graph(), CodeSnapshot.from_texts(_CODE))
    index.with_exclusions(ExclusionList.parse("src/items.py"))

    assert index.image() == frozenset({"src/app.py"})
    assert index.spec_to_code("items.md#items") == []


async def test_large_inventory_is_narrowed_by_keywords() -> None:
    code = {f"src/module_{n}.py": "pass\n" for n in range(5)}
    code["src/items_store.py"] = "pass\n"
    oracle = _tracer({})
    index = await _index(oracle, narrowing_threshold=3).build(
        _graph(), CodeSnapshot.from_texts(code)
    )

    offered = {request.context.focus[0]: _offered(request) for request in oracle.requests}
    assert offered["items.md#items"] == ["src/items_store.py"]
    assert index.stats().narrowed_nodes == 2


async def test_oracle_failure_is_recorded_per_node() -> None:
    oracle = ScriptedOracle(
        rules=[
            ScriptRule(
                capability=OracleCapability.TRACE, focus=("items.md#items",), fail="timeout"
            )
        ]
    )
    index = await _index(oracle).build(_graph(), CodeSnapshot.from_texts(_CODE))

    assert list(index.failures) == ["items.md#items"]
    assert "code=timeout" in index.failures["items.md#items"]


def test_keyword_helpers() -> None:
    node = SpecNode(file_path="a.md", heading_id="x", title="Billing", text="Invoices must total.")
    assert keyword_tokens("The billing and invoices") == {"billing", "invoices"}
    assert narrow_candidates(node, ["src/billing.py", "src/auth.py", "src/invoice_pdf.py"]) == (
        "src/billing.py",
        "src/invoice_pdf.py",
    )
