"""Shared test fixtures and helpers for agent-team tests."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

from agent_team.cost import CostAggregator
from agent_team.engine import EngineRequest, TerminalRecord
from agent_team.hooks import HookPipeline
from agent_team.models import Member, Task, TaskPriority, TaskType, Usage, new_id
from agent_team.orchestrator import TeamOrchestrator
from agent_team.policy import PolicyEngine, PolicyRules
from agent_team.sink import MemoryReportSink
from agent_team.team import default_team

Behaviour = Union[TerminalRecord, Exception, Callable[[EngineRequest], Awaitable[TerminalRecord]]]


def make_record(
	message_id: Optional[str] = None,
	result: str = "done",
	subtype: str = "success",
	input_tokens: int = 1000,
	output_tokens: int = 1000,
) -> TerminalRecord:
	"""A terminal record with round token counts."""
	return TerminalRecord(
		message_id=message_id or new_id("msg"),
		subtype=subtype,
		result=result,
		usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
	)


class FakeEngine:
	"""
	ExecutionEngine double.

	Behaviour is chosen by the first key found in the request directive;
	otherwise a fresh successful record is returned.
	"""

	def __init__(self, behaviours: Optional[dict[str, Behaviour]] = None, delay: float = 0.0):
		self.behaviours = behaviours or {}
		self.delay = delay
		self.requests: list[EngineRequest] = []
		self.running = 0
		self.max_running = 0

	async def run(self, request: EngineRequest) -> TerminalRecord:
		self.requests.append(request)
		self.running += 1
		self.max_running = max(self.max_running, self.running)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			for key, behaviour in self.behaviours.items():
				if key in request.directive:
					if isinstance(behaviour, Exception):
						raise behaviour
					if isinstance(behaviour, TerminalRecord):
						return behaviour
					return await behaviour(request)
			return make_record()
		finally:
			self.running -= 1


async def hang_forever(request: EngineRequest) -> TerminalRecord:
	await asyncio.Event().wait()
	raise AssertionError("unreachable")


def make_task(
	description: str = "Do the thing",
	task_type: TaskType = TaskType.IMPLEMENTATION,
	priority: TaskPriority = TaskPriority.MEDIUM,
	**kwargs: Any,
) -> Task:
	return Task(type=task_type, description=description, priority=priority, **kwargs)


def make_member(member_id: str, role: str, tags: tuple[str, ...] = ()) -> Member:
	return Member(id=member_id, name=member_id.title(), role=role, specialization=tags, permissions=("Read",))


def make_orchestrator(
	engine: Optional[FakeEngine] = None,
	rules: Optional[PolicyRules] = None,
	members: Optional[list[Member]] = None,
	**kwargs: Any,
) -> TeamOrchestrator:
	"""Orchestrator over the default team with in-memory sink and fake engine."""
	team = default_team()
	kwargs.setdefault("fallback_member_id", team.fallback_member if members is None else None)
	return TeamOrchestrator(
		members=team.roster() if members is None else members,
		policy=PolicyEngine(rules or team.policy.to_rules(), workspace="/tmp/agent-team-tests"),
		engine=engine or FakeEngine(),
		hooks=HookPipeline(timeout=1.0),
		costs=CostAggregator(),
		sink=MemoryReportSink(),
		workspace="/tmp/agent-team-tests",
		**kwargs,
	)
