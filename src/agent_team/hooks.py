"""
Lifecycle hook pipeline for team member sessions.

Named callbacks are registered per lifecycle event, optionally scoped to an
operation-kind matcher. Dispatch runs them in registration order with a
per-callback timeout. A failing or slow hook is logged and replaced with a
neutral "continue" outcome, so one hook never stalls a task.

A PreToolUse hook that blocks turns an allowed operation into a deny; the
policy engine and the hooks are independent gates.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import HookExecutionFailure
from .policy import PermissionDecision, is_dangerous_command

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
	"""Lifecycle events hooks can attach to."""
	PRE_TOOL_USE = "PreToolUse"
	POST_TOOL_USE = "PostToolUse"
	SESSION_START = "SessionStart"
	SESSION_END = "SessionEnd"
	USER_PROMPT_SUBMIT = "UserPromptSubmit"
	PRE_COMPACT = "PreCompact"


@dataclass
class HookPayload:
	"""Event data handed to every callback."""
	event: HookEvent
	session_id: str = ""
	member_id: Optional[str] = None
	cwd: Optional[str] = None
	tool_name: Optional[str] = None
	tool_input: Optional[dict[str, Any]] = None
	tool_response: Any = None
	prompt: Optional[str] = None
	source: Optional[str] = None
	reason: Optional[str] = None
	trigger: Optional[str] = None


@dataclass(frozen=True)
class HookOutcome:
	"""What a single callback returned."""
	block: bool = False
	reason: str = ""
	additional_context: Optional[str] = None


CONTINUE = HookOutcome()

HookHandler = Callable[[HookPayload, asyncio.Event], Awaitable[Optional[HookOutcome]]]


@dataclass
class RegisteredHook:
	"""A callback bound to an event and an optional operation-kind matcher."""
	name: str
	event: HookEvent
	handler: HookHandler
	matcher: Optional[str] = None
	_compiled: Optional[re.Pattern] = field(default=None, init=False, repr=False)

	def __post_init__(self) -> None:
		if self.matcher and self.matcher != "*":
			self._compiled = re.compile(self.matcher)

	def applies_to(self, tool_name: Optional[str]) -> bool:
		if self._compiled is None:
			return True
		return bool(tool_name) and self._compiled.fullmatch(tool_name) is not None


@dataclass(frozen=True)
class HookVerdict:
	"""Aggregate of every callback that ran for one dispatch."""
	event: HookEvent
	outcomes: tuple[HookOutcome, ...] = ()

	@property
	def blocked(self) -> bool:
		return self.event == HookEvent.PRE_TOOL_USE and any(o.block for o in self.outcomes)

	@property
	def reason(self) -> str:
		return "; ".join(o.reason for o in self.outcomes if o.block and o.reason)

	@property
	def additional_context(self) -> list[str]:
		return [o.additional_context for o in self.outcomes if o.additional_context]


@dataclass(frozen=True)
class HookExecution:
	"""History entry for one callback invocation."""
	timestamp: datetime
	event: HookEvent
	hook_name: str
	member_id: Optional[str]
	success: bool
	duration: float
	outcome: Optional[HookOutcome] = None


def effective_decision(decision: PermissionDecision, verdict: Optional[HookVerdict]) -> PermissionDecision:
	"""Combine the policy verdict with a PreToolUse hook verdict. Either may block."""
	if verdict is None or not verdict.blocked or not decision.allowed:
		return decision
	return PermissionDecision.deny(f"Blocked by hook: {verdict.reason or 'no reason given'}")


DispatchFn = Callable[[HookPayload, Optional[asyncio.Event]], Awaitable[HookVerdict]]


class HookPipeline:
	"""Registry and dispatcher for lifecycle hooks."""

	DEFAULT_TIMEOUT = 30.0
	HISTORY_CAPACITY = 1000

	def __init__(
		self,
		timeout: float = DEFAULT_TIMEOUT,
		history_capacity: int = HISTORY_CAPACITY,
		builtins: bool = True,
	):
		self.timeout = timeout
		self.history_capacity = max(2, history_capacity)
		self._hooks: dict[HookEvent, list[RegisteredHook]] = {event: [] for event in HookEvent}
		self._history: list[HookExecution] = []
		self._tool_counts: dict[str, int] = {}

		if builtins:
			self._register_builtins()

	def register(
		self,
		event: HookEvent,
		name: str,
		handler: HookHandler,
		matcher: Optional[str] = None,
	) -> RegisteredHook:
		"""Append a callback for an event. Order of registration is order of execution."""
		hook = RegisteredHook(name=name, event=HookEvent(event), handler=handler, matcher=matcher)
		self._hooks[hook.event].append(hook)
		logger.info(f"Registered hook {name} for {hook.event.value} (matcher={matcher})")
		return hook

	def hooks_for(self, event: HookEvent, tool_name: Optional[str] = None) -> list[RegisteredHook]:
		return [h for h in self._hooks[HookEvent(event)] if h.applies_to(tool_name)]

	async def dispatch(
		self,
		event: HookEvent,
		payload: HookPayload,
		cancel: Optional[asyncio.Event] = None,
	) -> HookVerdict:
		"""Run every matching callback for the event and aggregate their outcomes."""
		event = HookEvent(event)
		cancel = cancel or asyncio.Event()
		outcomes: list[HookOutcome] = []

		for hook in self.hooks_for(event, payload.tool_name):
			if cancel.is_set():
				logger.debug(f"Dispatch of {event.value} cancelled before hook {hook.name}")
				break
			outcomes.append(await self._run_one(hook, payload, cancel))

		return HookVerdict(event=event, outcomes=tuple(outcomes))

	async def _run_one(self, hook: RegisteredHook, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		start = time.monotonic()
		try:
			try:
				result = await asyncio.wait_for(hook.handler(payload, cancel), timeout=self.timeout)
			except asyncio.TimeoutError as e:
				raise HookExecutionFailure(f"Hook {hook.name} timed out after {self.timeout}s") from e
			except Exception as e:
				raise HookExecutionFailure(f"Hook {hook.name} failed: {e}") from e
			if result is not None and not isinstance(result, HookOutcome):
				raise HookExecutionFailure(f"Hook {hook.name} returned {type(result).__name__}, expected HookOutcome")
		except HookExecutionFailure as e:
			logger.error(str(e))
			self._record(hook, payload, False, time.monotonic() - start)
			return CONTINUE

		outcome = result or CONTINUE
		self._record(hook, payload, True, time.monotonic() - start, outcome)
		return outcome

	def callbacks_for_member(self, member_id: str, session_id: str = "", cwd: Optional[str] = None) -> dict[HookEvent, DispatchFn]:
		"""Per-event dispatch table handed to the execution engine."""
		def bind(event: HookEvent) -> DispatchFn:
			async def dispatch(payload: HookPayload, cancel: Optional[asyncio.Event] = None) -> HookVerdict:
				payload.event = event
				payload.member_id = payload.member_id or member_id
				payload.session_id = payload.session_id or session_id
				payload.cwd = payload.cwd or cwd
				return await self.dispatch(event, payload, cancel)
			return dispatch

		return {event: bind(event) for event in HookEvent}

	def _record(
		self,
		hook: RegisteredHook,
		payload: HookPayload,
		success: bool,
		duration: float,
		outcome: Optional[HookOutcome] = None,
	) -> None:
		self._history.append(HookExecution(
			timestamp=datetime.now(),
			event=hook.event,
			hook_name=hook.name,
			member_id=payload.member_id,
			success=success,
			duration=duration,
			outcome=outcome,
		))
		if len(self._history) > self.history_capacity:
			self._history = self._history[-(self.history_capacity // 2):]

	def history(self) -> list[HookExecution]:
		return list(self._history)

	def metrics(self, since: Optional[datetime] = None) -> dict[str, Any]:
		"""Totals, success rate, mean duration and per-event/per-tool counts."""
		entries = [h for h in self._history if since is None or h.timestamp >= since]
		total = len(entries)
		successful = sum(1 for h in entries if h.success)

		breakdown: dict[str, int] = {}
		for h in entries:
			breakdown[h.event.value] = breakdown.get(h.event.value, 0) + 1

		return {
			"total_executions": total,
			"success_rate": (successful / total * 100) if total else 0.0,
			"average_duration_ms": (sum(h.duration for h in entries) / total * 1000) if total else 0.0,
			"event_breakdown": breakdown,
			"tool_usage": dict(self._tool_counts),
		}

	# Built-in hooks

	def _register_builtins(self) -> None:
		self.register(HookEvent.PRE_TOOL_USE, "security-audit", self._security_audit, matcher="Bash")
		self.register(HookEvent.POST_TOOL_USE, "metrics-collector", self._collect_metrics)
		self.register(HookEvent.SESSION_START, "session-initializer", self._session_start)
		self.register(HookEvent.SESSION_END, "session-cleanup", self._session_end)
		self.register(HookEvent.USER_PROMPT_SUBMIT, "prompt-analyzer", self._analyze_prompt)
		self.register(HookEvent.PRE_COMPACT, "context-preserver", self._preserve_context)

	async def _security_audit(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		command = (payload.tool_input or {}).get("command") or ""
		if is_dangerous_command(command) or re.search(r"\bsudo\s+", command):
			logger.warning(f"Dangerous command blocked: {command}")
			return HookOutcome(block=True, reason="Command poses security risk")
		return CONTINUE

	async def _collect_metrics(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		if payload.tool_name:
			self._tool_counts[payload.tool_name] = self._tool_counts.get(payload.tool_name, 0) + 1
			logger.info(f"Tool completed: {payload.tool_name} (session={payload.session_id})")
		return CONTINUE

	async def _session_start(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		logger.info(f"Session started: {payload.session_id} (source={payload.source}, cwd={payload.cwd})")
		return HookOutcome(additional_context="Team session initialized with security monitoring")

	async def _session_end(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		logger.info(f"Session ended: {payload.session_id} (reason={payload.reason})")
		logger.info(f"Hook metrics: {self.metrics()}")
		return CONTINUE

	async def _analyze_prompt(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		prompt = payload.prompt or ""
		detected = [name for name, pattern in PROMPT_CATEGORIES.items() if pattern.search(prompt)]
		if not detected:
			return CONTINUE
		logger.info(f"Detected task categories: {', '.join(detected)} (session={payload.session_id})")
		return HookOutcome(additional_context=f"Detected specialized tasks: {', '.join(detected)}")

	async def _preserve_context(self, payload: HookPayload, cancel: asyncio.Event) -> HookOutcome:
		logger.info(f"Context compaction triggered: {payload.trigger} (session={payload.session_id})")
		return CONTINUE


PROMPT_CATEGORIES: dict[str, re.Pattern] = {
	"security": re.compile(r"security|vulnerability|audit|penetration|attack", re.IGNORECASE),
	"performance": re.compile(r"performance|optimi[sz]e|slow|fast|benchmark", re.IGNORECASE),
	"testing": re.compile(r"test|unit|integration|coverage|mock", re.IGNORECASE),
	"deployment": re.compile(r"deploy|production|release|ci/cd|docker", re.IGNORECASE),
	"debugging": re.compile(r"debug|error|bug|fix|issue|problem", re.IGNORECASE),
}
