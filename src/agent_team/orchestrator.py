"""
Team Orchestrator - Sessions, member selection and task execution.

Responsibilities:
- Own the live session table (created -> active -> ended)
- Pick a member for each task, deterministically
- Run tasks through the execution engine, gated by the policy engine and hooks
- Fan out task batches concurrently, results in input order
- Fold each task's usage into its session exactly once
- Emit a report when a session ends
"""

import asyncio
import json
import logging
import time
from typing import Optional

from .config import Config
from .cost import CostAggregator, RateTable
from .engine import EngineRequest, ExecutionEngine, TerminalRecord
from .errors import SessionNotFound, TaskExecutionFailure
from .hooks import HookEvent, HookPayload, HookPipeline
from .models import (
	Member,
	Session,
	SessionReport,
	SessionState,
	Task,
	TaskResult,
	TaskStatus,
	Usage,
	new_id,
)
from .policy import PolicyEngine
from .sink import ReportSink
from .team import TeamSpec

logger = logging.getLogger(__name__)

FALLBACK_ROLE = "full-stack-developer"


class TeamOrchestrator:
	"""
	Routes tasks to team members and tracks per-session results.

	Session records are only touched under their session lock; the table
	itself has its own lock. Two sessions never contend with each other.
	"""

	DEFAULT_MAX_TURNS = 10
	DEFAULT_TASK_TIMEOUT = 600.0

	def __init__(
		self,
		members: list[Member],
		policy: PolicyEngine,
		engine: ExecutionEngine,
		hooks: Optional[HookPipeline] = None,
		costs: Optional[CostAggregator] = None,
		sink: Optional[ReportSink] = None,
		workspace: str = ".",
		fallback_member_id: Optional[str] = None,
		max_turns: int = DEFAULT_MAX_TURNS,
		task_timeout: float = DEFAULT_TASK_TIMEOUT,
	):
		if not members:
			raise ValueError("A team needs at least one member")
		if fallback_member_id is not None and fallback_member_id not in {m.id for m in members}:
			raise ValueError(f"Fallback member {fallback_member_id} is not in the roster")

		self._roster: tuple[Member, ...] = tuple(members)
		self._members_by_id = {m.id: m for m in members}
		self.policy = policy
		self.engine = engine
		self.hooks = hooks or HookPipeline()
		self.costs = costs or CostAggregator()
		self.sink = sink
		self.workspace = workspace
		self.fallback_member_id = fallback_member_id
		self.max_turns = max_turns
		self.task_timeout = task_timeout

		self._sessions: dict[str, Session] = {}
		self._session_locks: dict[str, asyncio.Lock] = {}
		self._table_lock = asyncio.Lock()

	@classmethod
	def from_team(
		cls,
		team: TeamSpec,
		engine: ExecutionEngine,
		config: Config,
		sink: Optional[ReportSink] = None,
	) -> "TeamOrchestrator":
		"""Build an orchestrator from a team definition and config."""
		workspace = str(config.workspace)
		return cls(
			members=team.roster(),
			policy=PolicyEngine(team.policy.to_rules(), workspace=workspace, audit_capacity=config.audit_capacity),
			engine=engine,
			hooks=HookPipeline(timeout=config.hook_timeout),
			costs=CostAggregator(RateTable.from_dict(config.rates)),
			sink=sink,
			workspace=workspace,
			fallback_member_id=team.fallback_member,
			max_turns=config.max_turns,
			task_timeout=config.task_timeout,
		)

	@property
	def roster(self) -> tuple[Member, ...]:
		return self._roster

	def get_member(self, member_id: str) -> Optional[Member]:
		return self._members_by_id.get(member_id)

	# Team setup

	async def initialize_team(self) -> list[str]:
		"""Write the permission settings and one role document per member to the sink."""
		if self.sink is None:
			return []

		written = [".claude/settings.json"]
		await self.sink.write(".claude/settings.json", json.dumps(self.policy.settings_document(), indent=2))
		for member in self._roster:
			key = f".claude/agents/{member.id}.md"
			await self.sink.write(key, render_member_document(member))
			written.append(key)

		logger.info(f"Team initialized with {len(self._roster)} members")
		return written

	# Sessions

	async def start_session(self, name: str) -> str:
		"""Create a session and return its id. The session is active immediately."""
		session = Session(id=new_id("session"), name=name, workspace=self.workspace)
		session.state = SessionState.ACTIVE

		async with self._table_lock:
			self._sessions[session.id] = session
			self._session_locks[session.id] = asyncio.Lock()

		logger.info(f"Started team session: {name} ({session.id})")
		await self.hooks.dispatch(
			HookEvent.SESSION_START,
			HookPayload(event=HookEvent.SESSION_START, session_id=session.id, cwd=self.workspace, source="startup"),
		)
		return session.id

	async def _get(self, session_id: str) -> tuple[Session, asyncio.Lock]:
		async with self._table_lock:
			session = self._sessions.get(session_id)
			if session is None or session.state == SessionState.ENDED:
				raise SessionNotFound(session_id)
			return session, self._session_locks[session_id]

	async def get_session_status(self, session_id: str) -> Session:
		"""Snapshot of a live session. Raises SessionNotFound once it has ended."""
		session, lock = await self._get(session_id)
		async with lock:
			return session.snapshot()

	async def list_sessions(self) -> list[str]:
		async with self._table_lock:
			return [sid for sid, s in self._sessions.items() if s.state != SessionState.ENDED]

	async def end_session(self, session_id: str) -> SessionReport:
		"""
		End a session: write its report to the sink, then evict it.

		Raises:
			SessionNotFound: If the session is unknown or already ended
		"""
		async with self._table_lock:
			session = self._sessions.get(session_id)
			if session is None or session.state == SessionState.ENDED:
				raise SessionNotFound(session_id)
			session.state = SessionState.ENDED
			lock = self._session_locks[session_id]

		try:
			async with lock:
				report = SessionReport.from_session(session)
			if self.sink is not None:
				await self.sink.write(f"reports/session-{session_id}.json", report.to_json())
		finally:
			async with self._table_lock:
				self._sessions.pop(session_id, None)
				self._session_locks.pop(session_id, None)

		await self.hooks.dispatch(
			HookEvent.SESSION_END,
			HookPayload(event=HookEvent.SESSION_END, session_id=session_id, cwd=self.workspace, reason="ended"),
		)
		logger.info(
			f"Ended session {session_id}: {report.total_tasks} tasks, ${report.total_cost:.4f}"
		)
		return report

	# Member selection

	def select_member(self, task: Task) -> Member:
		"""First roster member whose tags or role name the task kind; else the fallback; else the first member."""
		for member in self._roster:
			if member.handles(task.type):
				return member

		if self.fallback_member_id is not None:
			return self._members_by_id[self.fallback_member_id]
		for member in self._roster:
			if member.role == FALLBACK_ROLE:
				return member
		return self._roster[0]

	def _pinned_member(self, task: Task) -> Optional[Member]:
		if task.assigned_to is None:
			return None
		member = self._members_by_id.get(task.assigned_to)
		if member is None:
			raise ValueError(f"Task {task.id} is assigned to unknown member {task.assigned_to}")
		return member

	def _claim(self, task: Task) -> Member:
		"""Resolve the task's member, assigning one if the caller has not."""
		pinned = self._pinned_member(task)
		if pinned is not None:
			return pinned

		member = self.select_member(task)
		task.assign(member.id)
		return member

	# Task execution

	async def assign_task(
		self,
		session_id: str,
		task: Task,
		cancel: Optional[asyncio.Event] = None,
	) -> TaskResult:
		"""Assign a task to a member and run it. Execution errors become a failed result."""
		session, lock = await self._get(session_id)
		member = self._claim(task)
		async with lock:
			session.pending_tasks.append(task)
			session.activate_member(member.id)

		logger.info(f"Assigned {task.type.value} task {task.id} to {member.name}")
		return await self._execute(session, lock, task, member, cancel)

	async def execute_parallel_tasks(
		self,
		session_id: str,
		tasks: list[Task],
		cancel: Optional[asyncio.Event] = None,
	) -> list[TaskResult]:
		"""Run tasks concurrently. Results come back in input order; failures never abort siblings."""
		session, lock = await self._get(session_id)
		# Reject the whole batch before any task is assigned
		for task in tasks:
			self._pinned_member(task)
		members = [self._claim(task) for task in tasks]
		async with lock:
			for task, member in zip(tasks, members):
				session.pending_tasks.append(task)
				session.activate_member(member.id)

		logger.info(f"Executing {len(tasks)} tasks in parallel for session {session_id}")
		results = await asyncio.gather(*(
			self._execute(session, lock, task, member, cancel)
			for task, member in zip(tasks, members)
		))

		failed = sum(1 for r in results if not r.succeeded)
		logger.info(f"Completed {len(results)} parallel tasks ({failed} failed)")
		return list(results)

	def build_directive(self, task: Task) -> str:
		"""The user-turn text sent to the engine for a task."""
		if not task.description or not task.description.strip():
			raise TaskExecutionFailure(f"Task {task.id} has no description")

		files = ", ".join(task.files) if task.files else "entire workspace"
		dependencies = ", ".join(task.dependencies) if task.dependencies else "none"
		return "\n".join([
			task.description.strip(),
			"",
			f"Files to focus on: {files}",
			f"Priority: {task.priority.value}",
			f"Dependencies: {dependencies}",
		])

	def _build_request(self, session: Session, task: Task, member: Member, cancel: asyncio.Event) -> EngineRequest:
		return EngineRequest(
			directive=self.build_directive(task),
			system_prompt=member.system_prompt,
			allowed_tools=self.policy.unconditional_kinds(list(member.permissions), task.priority),
			permission=self.policy.bind(member_id=member.id, session_id=session.id, priority=task.priority),
			hooks=self.hooks.callbacks_for_member(member.id, session.id, session.workspace),
			max_turns=self.max_turns,
			workspace=session.workspace,
			disallowed_tools=list(self.policy.rules.deny),
			cancel=cancel,
			task_id=task.id,
			member_id=member.id,
			session_id=session.id,
		)

	async def _execute(
		self,
		session: Session,
		lock: asyncio.Lock,
		task: Task,
		member: Member,
		cancel: Optional[asyncio.Event],
	) -> TaskResult:
		cancel = cancel or asyncio.Event()
		start = time.monotonic()
		logger.info(f"Executing task {task.id} with {member.name}")

		try:
			request = self._build_request(session, task, member, cancel)
			record = await self._run_engine(request, cancel)
			if record.is_error:
				raise TaskExecutionFailure(f"engine reported {record.subtype}: {record.result or 'no details'}")
		except asyncio.CancelledError:
			result = self._failed(task, member, "cancelled", start)
			await self._commit(session, lock, task, result)
			raise
		except Exception as e:
			logger.error(f"Task {task.id} failed: {e}")
			result = self._failed(task, member, str(e) or type(e).__name__, start)
		else:
			charged = self.costs.record_usage(record.message_id, record.usage)
			if charged is None:
				logger.warning(f"Terminal message {record.message_id} already charged; task {task.id} adds no cost")
			result = TaskResult(
				task_id=task.id,
				status=TaskStatus.COMPLETED,
				result=record.result,
				usage=charged.usage if charged else Usage(),
				cost=charged.cost if charged else 0.0,
				duration=time.monotonic() - start,
				member_id=member.id,
			)
			logger.info(f"Task {task.id} completed (${result.cost:.4f}, {result.duration:.1f}s)")

		await self._commit(session, lock, task, result)
		return result

	async def _run_engine(self, request: EngineRequest, cancel: asyncio.Event) -> TerminalRecord:
		"""Await the engine's terminal record, racing cancellation and the task timeout."""
		if cancel.is_set():
			raise TaskExecutionFailure("cancelled")

		engine_task = asyncio.create_task(self.engine.run(request))
		cancel_task = asyncio.create_task(cancel.wait())
		try:
			done, _ = await asyncio.wait(
				{engine_task, cancel_task},
				timeout=self.task_timeout,
				return_when=asyncio.FIRST_COMPLETED,
			)
		finally:
			cancel_task.cancel()
			if not engine_task.done():
				engine_task.cancel()
				await asyncio.gather(engine_task, return_exceptions=True)

		if engine_task in done:
			return engine_task.result()
		if cancel.is_set():
			raise TaskExecutionFailure("cancelled")
		raise TaskExecutionFailure(f"timed out after {self.task_timeout}s")

	@staticmethod
	def _failed(task: Task, member: Member, reason: str, start: float) -> TaskResult:
		return TaskResult(
			task_id=task.id,
			status=TaskStatus.FAILED,
			result=f"Task failed: {reason}",
			duration=time.monotonic() - start,
			member_id=member.id,
		)

	async def _commit(self, session: Session, lock: asyncio.Lock, task: Task, result: TaskResult) -> None:
		async with lock:
			session.record(task, result)


def render_member_document(member: Member) -> str:
	"""Role definition document with front matter."""
	lines = [
		"---",
		f"name: {member.id}",
		f"description: {member.role} - {', '.join(member.specialization)}",
		f"tools: {', '.join(member.permissions)}",
	]
	if member.output_style:
		lines.append(f"output-style: {member.output_style}")
	lines += ["---", "", member.system_prompt, ""]
	return "\n".join(lines)
