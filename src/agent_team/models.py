"""
Core data model: members, tasks, results, sessions and usage counters.

Members are immutable capability profiles. Tasks are mutated exactly once
(assignment) before execution. TaskResults are frozen and appended to the
owning session's ledger, which is the only source for session totals.
"""

import json
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .errors import TaskAlreadyAssigned


class TaskType(str, Enum):
	"""Kinds of work a task can represent."""
	ANALYSIS = "analysis"
	IMPLEMENTATION = "implementation"
	REVIEW = "review"
	TESTING = "testing"
	DEPLOYMENT = "deployment"
	DEBUGGING = "debugging"


class TaskPriority(str, Enum):
	"""Task priority. HIGH and CRITICAL escalate trust for shell commands."""
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"
	CRITICAL = "critical"

	@property
	def is_escalated(self) -> bool:
		return self in (TaskPriority.HIGH, TaskPriority.CRITICAL)


class TaskStatus(str, Enum):
	"""Outcome of a task."""
	COMPLETED = "completed"
	FAILED = "failed"
	IN_PROGRESS = "in_progress"


class SessionState(str, Enum):
	"""Session lifecycle: created -> active -> ended."""
	CREATED = "created"
	ACTIVE = "active"
	ENDED = "ended"


def new_id(prefix: str) -> str:
	"""Generate an id like 'task_1718000000000_3fa9c2d1e'."""
	return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Usage:
	"""Token counters reported by the execution engine."""
	input_tokens: int = 0
	output_tokens: int = 0
	cache_creation_input_tokens: int = 0
	cache_read_input_tokens: int = 0

	def __add__(self, other: "Usage") -> "Usage":
		if not isinstance(other, Usage):
			return NotImplemented
		return Usage(
			input_tokens=self.input_tokens + other.input_tokens,
			output_tokens=self.output_tokens + other.output_tokens,
			cache_creation_input_tokens=self.cache_creation_input_tokens + other.cache_creation_input_tokens,
			cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
		)

	@property
	def total_tokens(self) -> int:
		return (
			self.input_tokens
			+ self.output_tokens
			+ self.cache_creation_input_tokens
			+ self.cache_read_input_tokens
		)

	@classmethod
	def from_dict(cls, data: Optional[dict[str, Any]]) -> "Usage":
		"""Build from an engine usage object. Missing or null counters count as zero."""
		if not data:
			return cls()
		return cls(
			input_tokens=int(data.get("input_tokens") or 0),
			output_tokens=int(data.get("output_tokens") or 0),
			cache_creation_input_tokens=int(data.get("cache_creation_input_tokens") or 0),
			cache_read_input_tokens=int(data.get("cache_read_input_tokens") or 0),
		)

	def to_dict(self) -> dict[str, int]:
		return {
			"input_tokens": self.input_tokens,
			"output_tokens": self.output_tokens,
			"cache_creation_input_tokens": self.cache_creation_input_tokens,
			"cache_read_input_tokens": self.cache_read_input_tokens,
		}


@dataclass(frozen=True)
class Member:
	"""A team member: a capability profile bound to a directive."""
	id: str
	name: str
	role: str
	specialization: tuple[str, ...] = ()
	permissions: tuple[str, ...] = ()
	system_prompt: str = ""
	output_style: Optional[str] = None

	def handles(self, task_type: TaskType) -> bool:
		"""True if a specialization tag or the role mentions the task kind."""
		kind = task_type.value
		if any(kind == tag.lower() for tag in self.specialization):
			return True
		return kind in self.role.lower()


@dataclass
class Task:
	"""A unit of work submitted to a session."""
	type: TaskType
	description: str
	priority: TaskPriority = TaskPriority.MEDIUM
	files: list[str] = field(default_factory=list)
	dependencies: list[str] = field(default_factory=list)
	assigned_to: Optional[str] = None
	id: str = field(default_factory=lambda: new_id("task"))

	def __post_init__(self) -> None:
		self.type = TaskType(self.type)
		self.priority = TaskPriority(self.priority)

	def assign(self, member_id: str) -> None:
		"""Bind the task to a member. Allowed once."""
		if self.assigned_to is not None:
			raise TaskAlreadyAssigned(
				f"Task {self.id} already assigned to {self.assigned_to}"
			)
		self.assigned_to = member_id


@dataclass(frozen=True)
class TaskResult:
	"""Outcome of one task. Never mutated after creation."""
	task_id: str
	status: TaskStatus
	result: str = ""
	usage: Usage = field(default_factory=Usage)
	cost: float = 0.0
	duration: float = 0.0
	member_id: Optional[str] = None

	@property
	def succeeded(self) -> bool:
		return self.status == TaskStatus.COMPLETED

	def to_summary(self) -> dict[str, Any]:
		"""Per-task entry for session reports."""
		return {
			"task_id": self.task_id,
			"status": self.status.value,
			"duration": round(self.duration, 4),
			"cost": self.cost,
		}


@dataclass
class Session:
	"""Orchestration scope. Mutated only by the orchestrator that owns it."""
	id: str
	name: str
	workspace: str
	started_at: datetime = field(default_factory=datetime.now)
	state: SessionState = SessionState.CREATED
	active_members: list[str] = field(default_factory=list)
	pending_tasks: list[Task] = field(default_factory=list)
	completed_tasks: list[TaskResult] = field(default_factory=list)
	total_cost: float = 0.0
	total_usage: Usage = field(default_factory=Usage)

	@property
	def elapsed(self) -> float:
		"""Wall-clock seconds since the session started."""
		return (datetime.now() - self.started_at).total_seconds()

	def activate_member(self, member_id: str) -> None:
		if member_id not in self.active_members:
			self.active_members.append(member_id)

	def record(self, task: Task, result: TaskResult) -> None:
		"""Append a result and fold its cost and usage. Caller holds the session lock."""
		if task in self.pending_tasks:
			self.pending_tasks.remove(task)
		self.completed_tasks.append(result)
		self.total_cost += result.cost
		self.total_usage = self.total_usage + result.usage

	def snapshot(self) -> "Session":
		"""Copy safe to hand to callers."""
		return replace(
			self,
			active_members=list(self.active_members),
			pending_tasks=list(self.pending_tasks),
			completed_tasks=list(self.completed_tasks),
		)


@dataclass(frozen=True)
class SessionReport:
	"""Snapshot emitted when a session ends."""
	session_id: str
	name: str
	duration: float
	total_tasks: int
	total_cost: float
	usage: Usage
	tasks: tuple[dict[str, Any], ...] = ()

	@classmethod
	def from_session(cls, session: Session) -> "SessionReport":
		return cls(
			session_id=session.id,
			name=session.name,
			duration=session.elapsed,
			total_tasks=len(session.completed_tasks),
			total_cost=session.total_cost,
			usage=session.total_usage,
			tasks=tuple(r.to_summary() for r in session.completed_tasks),
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"session_id": self.session_id,
			"name": self.name,
			"duration": round(self.duration, 4),
			"total_tasks": self.total_tasks,
			"total_cost": self.total_cost,
			"usage": self.usage.to_dict(),
			"tasks": list(self.tasks),
		}

	def to_json(self) -> str:
		return json.dumps(self.to_dict(), indent=2)

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> "SessionReport":
		"""Rebuild a report from its saved JSON form."""
		return cls(
			session_id=data["session_id"],
			name=data.get("name", ""),
			duration=float(data.get("duration", 0.0)),
			total_tasks=int(data.get("total_tasks", 0)),
			total_cost=float(data.get("total_cost", 0.0)),
			usage=Usage.from_dict(data.get("usage")),
			tasks=tuple(data.get("tasks", ())),
		)

	@property
	def failed_tasks(self) -> int:
		return sum(1 for t in self.tasks if t["status"] == TaskStatus.FAILED.value)
