"""Control plane: sessions, scopes, the inner loop and the orchestrator."""

from spec_reconciler.control_plane.inner_loop import (
    InnerLoopSettings,
    RoleTask,
    ScopeRunner,
    summarize_outcomes,
)
from spec_reconciler.control_plane.orchestrator import (
    OrchestrationSettings,
    ReconciliationOrchestrator,
    TrustDecision,
)
from spec_reconciler.control_plane.report import ExitCode, SessionReport, exit_code_for_issues
from spec_reconciler.control_plane.scopes import (
    Scope,
    build_conflict_graph,
    compute_scopes,
    plan_waves,
)
from spec_reconciler.control_plane.session import (
    ALLOWED_TRANSITIONS,
    TERMINAL_PHASES,
    PhaseChange,
    ReconciliationSession,
)
from spec_reconciler.control_plane.workspace import (
    CodeStore,
    DirectoryCodeStore,
    InMemoryCodeStore,
    StagedChange,
    StagedWorkspace,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_PHASES",
    "CodeStore",
    "DirectoryCodeStore",
    "ExitCode",
    "InMemoryCodeStore",
    "InnerLoopSettings",
    "OrchestrationSettings",
    "PhaseChange",
    "ReconciliationOrchestrator",
    "ReconciliationSession",
    "RoleTask",
    "Scope",
    "ScopeRunner",
    "SessionReport",
    "StagedChange",
    "StagedWorkspace",
    "TrustDecision",
    "build_conflict_graph",
    "compute_scopes",
    "exit_code_for_issues",
    "plan_waves",
    "summarize_outcomes",
]
