"""agent-team - policy-gated orchestration for a team of Claude agents."""

from .cost import CostAggregator, RateTable
from .engine import ClaudeCLIEngine, EngineRequest, ExecutionEngine, TerminalRecord
from .errors import (
	EngineError,
	HookExecutionFailure,
	PolicyEvaluationError,
	SessionNotFound,
	TaskAlreadyAssigned,
	TaskExecutionFailure,
	TeamError,
)
from .hooks import HookEvent, HookOutcome, HookPayload, HookPipeline
from .models import (
	Member,
	Session,
	SessionReport,
	Task,
	TaskPriority,
	TaskResult,
	TaskStatus,
	TaskType,
	Usage,
)
from .orchestrator import TeamOrchestrator
from .policy import PermissionContext, PermissionDecision, PolicyEngine, PolicyRules, Verdict
from .sink import FileReportSink, MemoryReportSink, ReportSink
from .team import TeamSpec, default_team, load_team

__all__ = [
	"ClaudeCLIEngine",
	"CostAggregator",
	"EngineError",
	"EngineRequest",
	"ExecutionEngine",
	"FileReportSink",
	"HookEvent",
	"HookExecutionFailure",
	"HookOutcome",
	"HookPayload",
	"HookPipeline",
	"Member",
	"MemoryReportSink",
	"PermissionContext",
	"PermissionDecision",
	"PolicyEngine",
	"PolicyEvaluationError",
	"PolicyRules",
	"RateTable",
	"ReportSink",
	"Session",
	"SessionNotFound",
	"SessionReport",
	"Task",
	"TaskAlreadyAssigned",
	"TaskExecutionFailure",
	"TaskPriority",
	"TaskResult",
	"TaskStatus",
	"TaskType",
	"TeamError",
	"TeamOrchestrator",
	"TeamSpec",
	"TerminalRecord",
	"Usage",
	"Verdict",
	"default_team",
	"load_team",
]
