"""Command-line interface router for spec-reconciler."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from spec_reconciler.code_artifact.exclusions import ExclusionList
from spec_reconciler.code_artifact.snapshot import CodeSnapshot
from spec_reconciler.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
    redact_config,
)
from spec_reconciler.consistency.checker import ConsistencyChecker
from spec_reconciler.control_plane import (
    DirectoryCodeStore,
    OrchestrationSettings,
    ReconciliationOrchestrator,
    TrustDecision,
    exit_code_for_issues,
)
from spec_reconciler.domain.ids import generate_session_id
from spec_reconciler.domain.models import Confidence, Severity, TrustLevel
from spec_reconciler.observability.logging import (
    LoggingSettings,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from spec_reconciler.oracle import AnalysisCache, BackoffConfig, OracleClient, ScriptedOracle
from spec_reconciler.persistence import StateStore
from spec_reconciler.spec_graph.builder import BuildResult, build_spec_graph
from spec_reconciler.traceability.index import TraceabilityIndex
from spec_reconciler.verification import PytestExecutor, ResidueAnalyzer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class _Runtime:
    config: dict[str, Any]
    client: OracleClient
    exclusions: ExclusionList
    corpus_root: Path
    code_root: Path


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="specrec",
        description=(
            "spec-reconciler — keep a markdown spec corpus and its code in agreement.\n\n"
            "Common workflows:\n"
            "  specrec check                 Structural + semantic check of the corpus\n"
            "  specrec trace                 Print spec-to-code trace links\n"
            "  specrec residue               List code no spec node explains\n"
            "  specrec reconcile             Run a full reconciliation session\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to reconciler TOML config (default: ./reconciler.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument("--corpus-root", default=None, help="Override paths.corpus_root.")
    common.add_argument("--code-root", default=None, help="Override paths.code_root.")
    common.add_argument(
        "--format",
        dest="output_format",
        choices=("json", "yaml"),
        default="json",
        help="Output format (default: json).",
    )
    common.add_argument(
        "--oracle-script",
        default=None,
        help="YAML script of canned oracle responses (offline runs and tests).",
    )
    common.add_argument(
        "--log-stdout",
        action="store_true",
        default=False,
        help="Mirror session log records to stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check", parents=[common], help="Build the spec graph and run the consistency checker"
    )
    check_parser.set_defaults(handler=_cmd_check)

    trace_parser = subparsers.add_parser(
        "trace", parents=[common], help="Derive and print trace links"
    )
    trace_parser.add_argument("--node", default=None, help="Only links of this spec node id.")
    trace_parser.add_argument("--unit", default=None, help="Only links of this code unit path.")
    trace_parser.set_defaults(handler=_cmd_trace)

    residue_parser = subparsers.add_parser(
        "residue", parents=[common], help="List code units outside the trace image"
    )
    residue_parser.set_defaults(handler=_cmd_residue)

    reconcile_parser = subparsers.add_parser(
        "reconcile", parents=[common], help="Run a full reconciliation session"
    )
    reconcile_parser.add_argument(
        "--trigger",
        action="append",
        default=None,
        help="Explicit spec node id or code unit path to reconcile (repeatable).",
    )
    decision = reconcile_parser.add_mutually_exclusive_group()
    decision.add_argument(
        "--acknowledge",
        action="store_true",
        default=False,
        help="Acknowledge flags and commit a FLAGGED session.",
    )
    decision.add_argument(
        "--no-commit",
        action="store_true",
        default=False,
        help="Stop after verification; decline the commit.",
    )
    reconcile_parser.set_defaults(handler=_cmd_reconcile)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective (redacted) config"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_check(args: argparse.Namespace) -> int:
    runtime = _build_runtime(args)
    build = _load_corpus(runtime)
    checker = ConsistencyChecker(
        runtime.client,
        categories=runtime.config["consistency"]["categories"],
        checker_version=runtime.config["consistency"]["checker_version"],
        max_concurrency=runtime.config["orchestration"]["worker_count"],
    )
    session_id = _start_logging(args, runtime)
    with correlation_scope(session_id=session_id):
        report = asyncio.run(checker.check(build.graph, build.issues))

    payload: dict[str, object] = {
        "command": "check",
        "snapshot_hash": report.snapshot_hash,
        "checker_version": report.checker_version,
        "consistent": report.is_consistent,
        "nodes": len(build.graph),
        "edges": len(build.graph.edges),
        "issues": [issue.to_dict() for issue in report.issues],
    }
    _emit(payload, args)
    return int(exit_code_for_issues(report.issues))


def _cmd_trace(args: argparse.Namespace) -> int:
    runtime = _build_runtime(args)
    build = _load_corpus(runtime)
    code = CodeSnapshot.from_directory(runtime.code_root)
    index = _make_index(runtime)
    session_id = _start_logging(args, runtime)
    with correlation_scope(session_id=session_id):
        asyncio.run(index.build(build.graph, code))

    node_filter = getattr(args, "node", None)
    unit_filter = getattr(args, "unit", None)
    links = [
        link
        for link in index.links()
        if (node_filter is None or link.node_id == node_filter)
        and (unit_filter is None or link.unit_path == unit_filter)
    ]
    stats = index.stats()
    payload: dict[str, object] = {
        "command": "trace",
        "links": [link.to_dict() for link in links],
        "failures": dict(sorted(index.failures.items())),
        "stats": {
            "nodes": stats.nodes,
            "links": stats.links,
            "oracle_calls": stats.oracle_calls,
            "cached_pairs": stats.cached_pairs,
            "narrowed_nodes": stats.narrowed_nodes,
        },
    }
    _emit(payload, args)
    return 1 if index.failures else 0


def _cmd_residue(args: argparse.Namespace) -> int:
    runtime = _build_runtime(args)
    build = _load_corpus(runtime)
    code = CodeSnapshot.from_directory(runtime.code_root)
    index = _make_index(runtime)
    analyzer = ResidueAnalyzer(
        runtime.client,
        severity=Severity(runtime.config["verification"]["residue_severity"]),
        max_concurrency=runtime.config["orchestration"]["worker_count"],
    )
    session_id = _start_logging(args, runtime)

    async def _analyze() -> list[Any]:
        await index.build(build.graph, code)
        return await analyzer.analyze(code, index.image(), runtime.exclusions)

    with correlation_scope(session_id=session_id):
        findings = asyncio.run(_analyze())

    payload: dict[str, object] = {
        "command": "residue",
        "residue": [finding.to_dict() for finding in findings],
        "excluded_patterns": list(runtime.exclusions.patterns),
    }
    _emit(payload, args)
    return 1 if findings else 0


def _cmd_reconcile(args: argparse.Namespace) -> int:
    runtime = _build_runtime(args)
    config = runtime.config
    orchestration = config["orchestration"]
    verification = config["verification"]
    settings = OrchestrationSettings(
        worker_count=orchestration["worker_count"],
        max_retries=orchestration["max_retries"],
        max_review_rounds=orchestration["max_review_rounds"],
        max_spec_rounds=orchestration["max_spec_rounds"],
        trust_level=TrustLevel(orchestration["trust_level"]),
        blocking_severity=Severity(verification["blocking_severity"]),
        residue_severity=Severity(verification["residue_severity"]),
        proportionality_k=verification["proportionality_k"],
        proportionality_threshold=verification["proportionality_threshold"],
        flag_severity=Severity(verification["flag_severity"]),
    )
    orchestrator = ReconciliationOrchestrator(
        runtime.client,
        DirectoryCodeStore(runtime.code_root),
        settings=settings,
        checker=ConsistencyChecker(
            runtime.client,
            categories=config["consistency"]["categories"],
            checker_version=config["consistency"]["checker_version"],
            max_concurrency=settings.worker_count,
        ),
        index=_make_index(runtime),
        executor=PytestExecutor(timeout_seconds=verification["test_timeout_seconds"]),
        state_store=StateStore(config["paths"]["state_db"]),
        exclusions=runtime.exclusions,
    )

    if getattr(args, "no_commit", False):
        decision = TrustDecision.DECLINE
    elif getattr(args, "acknowledge", False):
        decision = TrustDecision.ACKNOWLEDGE
    else:
        decision = TrustDecision.AUTO

    session_id = _start_logging(args, runtime)
    report = asyncio.run(
        orchestrator.run_session(
            lambda: _load_corpus(runtime),
            triggers=getattr(args, "trigger", None),
            trust_decision=decision,
            session_id=session_id,
        )
    )
    _emit(report.to_dict(), args)
    return int(report.exit_code())


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if getattr(args, "output_format", "json") == "yaml":
        sys.stdout.write(yaml.safe_dump(redact_config(config), sort_keys=True))
    else:
        sys.stdout.write(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit(payload: Mapping[str, object], args: argparse.Namespace) -> None:
    if getattr(args, "output_format", "json") == "yaml":
        sys.stdout.write(yaml.safe_dump(dict(payload), sort_keys=False, allow_unicode=True))
        return
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {
        "paths.corpus_root": _absolute(getattr(args, "corpus_root", None)),
        "paths.code_root": _absolute(getattr(args, "code_root", None)),
    }
    try:
        return load_config(
            getattr(args, "config_path", None),
            profile=getattr(args, "profile", None),
            cli_overrides=overrides,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _build_runtime(args: argparse.Namespace) -> _Runtime:
    config = _load_effective_config(args)
    paths = config["paths"]
    oracle = config["oracle"]

    script = getattr(args, "oracle_script", None)
    if script is not None:
        script_path = Path(script).expanduser()
        if not script_path.is_file():
            raise CLIError(f"oracle script not found: {script_path}")
        provider = ScriptedOracle.load(script_path)
    else:
        provider = ScriptedOracle()

    client = OracleClient(
        provider,
        backoff=BackoffConfig(
            max_retries=oracle["max_retries"],
            initial_delay_seconds=oracle["initial_delay_seconds"],
            multiplier=oracle["multiplier"],
            max_delay_seconds=oracle["max_delay_seconds"],
        ),
        cache=AnalysisCache(paths["cache_dir"]),
        timeout_seconds=oracle["timeout_seconds"],
    )
    corpus_root = Path(paths["corpus_root"])
    if not corpus_root.is_dir():
        raise CLIError(f"corpus root is not a directory: {corpus_root}")
    return _Runtime(
        config=config,
        client=client,
        exclusions=ExclusionList.load(paths["exclusion_file"]),
        corpus_root=corpus_root,
        code_root=Path(paths["code_root"]),
    )


def _make_index(runtime: _Runtime) -> TraceabilityIndex:
    traceability = runtime.config["traceability"]
    return TraceabilityIndex(
        runtime.client,
        exclusions=runtime.exclusions,
        narrowing_threshold=traceability["narrowing_threshold"],
        primary_confidence=Confidence(traceability["primary_confidence"]),
        max_concurrency=runtime.config["orchestration"]["worker_count"],
    )


def _load_corpus(runtime: _Runtime) -> BuildResult:
    return build_spec_graph(runtime.corpus_root)


def _start_logging(args: argparse.Namespace, runtime: _Runtime) -> str:
    observability = runtime.config["observability"]
    session_id = generate_session_id()
    setup_logging(
        LoggingSettings(
            session_id=session_id,
            log_dir=observability["log_dir"],
            level=observability["log_level"],
            log_to_stdout=bool(getattr(args, "log_stdout", False)),
            redact_secrets=observability["redact_secrets"],
        )
    )
    return session_id


def _absolute(raw: object) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    return Path(raw).expanduser().resolve().as_posix()


__all__ = ["CLIError", "build_parser", "run_cli"]
