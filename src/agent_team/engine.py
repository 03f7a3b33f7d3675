"""
Execution engine boundary.

The orchestrator hands an EngineRequest to an ExecutionEngine and awaits a
single TerminalRecord. Engines that stream messages use
consume_until_terminal() to stop reading at the first result message.

ClaudeCLIEngine runs Claude Code CLI in print mode with stream-json output:
- the request's allowed tools become --allowedTools, policy deny rules
  --disallowedTools
- every streamed tool_use is checked against the permission function and
  PreToolUse hooks; a denied operation stops the run
- tool results are reported to PostToolUse hooks under the name of the
  tool_use they answer
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

from .errors import EngineError
from .hooks import DispatchFn, HookEvent, HookPayload, effective_decision
from .models import Usage, new_id
from .policy import PermissionFn

logger = logging.getLogger(__name__)

# stream-json lines carry whole tool results
STREAM_LINE_LIMIT = 16 * 1024 * 1024

# Only the end of stderr is kept for error messages
STDERR_TAIL = 64 * 1024


@dataclass
class EngineRequest:
	"""Everything an engine needs to run one bounded conversation."""
	directive: str
	system_prompt: str
	# Tools the engine may run without a permission check
	allowed_tools: list[str]
	permission: PermissionFn
	hooks: dict[HookEvent, DispatchFn] = field(default_factory=dict)
	max_turns: int = 10
	workspace: Optional[str] = None
	disallowed_tools: list[str] = field(default_factory=list)
	cancel: asyncio.Event = field(default_factory=asyncio.Event)
	task_id: str = ""
	member_id: str = ""
	session_id: str = ""

	async def run_hook(self, event: HookEvent, payload: HookPayload):
		"""Dispatch a hook event if the table has it."""
		dispatch = self.hooks.get(event)
		if dispatch is None:
			return None
		return await dispatch(payload, self.cancel)


@dataclass(frozen=True)
class TerminalRecord:
	"""The final message of an engine conversation."""
	message_id: str
	subtype: str
	result: str = ""
	usage: Usage = field(default_factory=Usage)

	@property
	def is_error(self) -> bool:
		return self.subtype != "success"

	@classmethod
	def from_message(cls, message: dict[str, Any]) -> "TerminalRecord":
		subtype = message.get("subtype") or "success"
		if message.get("is_error"):
			subtype = subtype if subtype != "success" else "error"
		return cls(
			message_id=str(message.get("uuid") or message.get("id") or new_id("msg")),
			subtype=subtype,
			result=str(message.get("result") or ""),
			usage=Usage.from_dict(message.get("usage")),
		)


class ExecutionEngine(Protocol):
	"""Runs one task conversation and returns its terminal record."""

	async def run(self, request: EngineRequest) -> TerminalRecord:
		...


def is_terminal(message: dict[str, Any]) -> bool:
	return message.get("type") == "result"


async def consume_until_terminal(messages: AsyncIterator[dict[str, Any]]) -> TerminalRecord:
	"""Read a message stream up to the first result message, then stop reading."""
	try:
		async for message in messages:
			if is_terminal(message):
				return TerminalRecord.from_message(message)
	finally:
		aclose = getattr(messages, "aclose", None)
		if aclose is not None:
			await aclose()
	raise EngineError("Engine stream ended without a result message")


class ClaudeCLIEngine:
	"""
	ExecutionEngine backed by `claude --print --output-format stream-json`.

	In print mode the CLI runs any tool named in --allowedTools without
	asking, so only tools the policy allows for every input should be passed
	there (PolicyEngine.unconditional_kinds). Unlisted tools that need
	permission are refused by the CLI itself. The streamed gate sees a
	tool_use only once the CLI has started it: a deny there kills the
	process and fails the run, but does not undo the operation.
	"""

	def __init__(self, executable: str = "claude", model: Optional[str] = None):
		self.executable = executable
		self.model = model

	def build_command(self, request: EngineRequest) -> list[str]:
		argv = [
			self.executable,
			"--print",
			"--output-format", "stream-json",
			"--verbose",
			"--max-turns", str(request.max_turns),
		]
		if self.model:
			argv += ["--model", self.model]
		if request.system_prompt:
			argv += ["--append-system-prompt", request.system_prompt]
		if request.allowed_tools:
			argv += ["--allowedTools", ",".join(request.allowed_tools)]
		if request.disallowed_tools:
			argv += ["--disallowedTools", ",".join(request.disallowed_tools)]
		argv.append(request.directive)
		return argv

	async def run(self, request: EngineRequest) -> TerminalRecord:
		verdict = await request.run_hook(
			HookEvent.USER_PROMPT_SUBMIT,
			HookPayload(event=HookEvent.USER_PROMPT_SUBMIT, prompt=request.directive),
		)
		if verdict and verdict.additional_context:
			request.directive += "\n\n" + "\n".join(verdict.additional_context)

		argv = self.build_command(request)
		logger.info(f"Starting Claude CLI for task {request.task_id} (member={request.member_id})")

		try:
			process = await asyncio.create_subprocess_exec(
				*argv,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=request.workspace,
				env=os.environ.copy(),
				limit=STREAM_LINE_LIMIT,
			)
		except FileNotFoundError as e:
			raise EngineError("Claude CLI not found. Is it installed?") from e

		stderr_reader = asyncio.create_task(_drain(process.stderr))
		try:
			return await consume_until_terminal(self._messages(process, request, stderr_reader))
		finally:
			if process.returncode is None:
				process.kill()
				await process.wait()
			if not stderr_reader.done():
				stderr_reader.cancel()

	async def _messages(
		self,
		process: asyncio.subprocess.Process,
		request: EngineRequest,
		stderr_reader: "asyncio.Task[bytes]",
	) -> AsyncIterator[dict[str, Any]]:
		assert process.stdout is not None
		# tool_result blocks carry only the id of the tool_use they answer
		tool_uses: dict[str, dict[str, Any]] = {}
		async for raw in process.stdout:
			line = raw.decode(errors="replace").strip()
			if not line:
				continue
			try:
				message = json.loads(line)
			except json.JSONDecodeError:
				logger.debug(f"Skipping non-JSON output: {line[:100]}")
				continue

			if message.get("type") == "assistant":
				for block in _content_blocks(message):
					if block.get("type") == "tool_use":
						if block.get("id"):
							tool_uses[block["id"]] = block
						await self._gate(request, block)
			elif message.get("type") == "user":
				for block in _content_blocks(message):
					if block.get("type") == "tool_result":
						use = tool_uses.pop(block.get("tool_use_id"), {})
						await request.run_hook(
							HookEvent.POST_TOOL_USE,
							HookPayload(
								event=HookEvent.POST_TOOL_USE,
								tool_name=use.get("name"),
								tool_input=use.get("input"),
								tool_response=block.get("content"),
							),
						)
			yield message

		stderr = await stderr_reader
		await process.wait()
		if process.returncode:
			raise EngineError(f"Claude CLI failed: {stderr.decode(errors='replace') or f'exit code {process.returncode}'}")

	async def _gate(self, request: EngineRequest, block: dict[str, Any]) -> None:
		"""Check one tool_use against the policy and PreToolUse hooks."""
		name = block.get("name") or ""
		tool_input = block.get("input") or {}
		decision = request.permission(name, tool_input, None)
		verdict = await request.run_hook(
			HookEvent.PRE_TOOL_USE,
			HookPayload(event=HookEvent.PRE_TOOL_USE, tool_name=name, tool_input=tool_input),
		)
		decision = effective_decision(decision, verdict)
		if not decision.allowed:
			kind = "interrupted" if decision.interrupt else "stopped"
			raise EngineError(f"Run {kind}: {name} denied ({decision.reason})")


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
	content = (message.get("message") or {}).get("content")
	if isinstance(content, list):
		return [b for b in content if isinstance(b, dict)]
	return []


async def _drain(stream: Optional[asyncio.StreamReader]) -> bytes:
	"""Read a stream to EOF so the child never blocks on a full pipe; keep the tail."""
	tail = b""
	if stream is None:
		return tail
	while True:
		chunk = await stream.read(STDERR_TAIL)
		if not chunk:
			return tail
		tail = (tail + chunk)[-STDERR_TAIL:]
