"""Exception hierarchy for agent-team."""


class TeamError(Exception):
	"""Base exception for agent-team errors."""
	pass


class PolicyEvaluationError(TeamError):
	"""Raised when a rule or operation input cannot be evaluated."""
	pass


class SessionNotFound(TeamError):
	"""Raised when a session id is unknown or the session has ended."""

	def __init__(self, session_id: str):
		super().__init__(f"Session {session_id} not found")
		self.session_id = session_id


class TaskAlreadyAssigned(TeamError):
	"""Raised when a task that already has an owner is assigned again."""
	pass


class TaskExecutionFailure(TeamError):
	"""Raised inside task execution; always recorded as a failed TaskResult."""
	pass


class HookExecutionFailure(TeamError):
	"""Raised when a hook callback fails or times out."""
	pass


class EngineError(TeamError):
	"""Raised by an execution engine adapter."""
	pass
