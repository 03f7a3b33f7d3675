"""
Permission policy engine for tool operations requested by team members.

Evaluates one (operation kind, operation input) pair against three ordered
rule buckets and returns a PermissionDecision:

1. deny rules   -> deny (interrupting when the rule is critical)
2. allow rules  -> allow, with the rule's input rewrite if any
3. ask rules    -> allow, flagged as an ask approval
4. default policy by operation kind

Rules are strings of the form ``Kind`` or ``Kind(pattern)``. How the
pattern is matched depends on the operation kind's MatchFamily.

Every evaluation lands in a bounded audit ledger. Evaluation never raises:
any failure becomes a deny carrying the error text.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .errors import PolicyEvaluationError
from .models import TaskPriority

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
	ALLOW = "allow"
	DENY = "deny"


class RuleBucket(str, Enum):
	ALLOW = "allow"
	DENY = "deny"
	ASK = "ask"


class MatchFamily(str, Enum):
	"""How a rule pattern is compared against an operation input."""
	COMMAND = "command"
	PATH = "path"
	URL = "url"
	GENERIC = "generic"


OPERATION_FAMILIES: dict[str, MatchFamily] = {
	"Bash": MatchFamily.COMMAND,
	"Read": MatchFamily.PATH,
	"Write": MatchFamily.PATH,
	"Edit": MatchFamily.PATH,
	"MultiEdit": MatchFamily.PATH,
	"NotebookEdit": MatchFamily.PATH,
	"WebFetch": MatchFamily.URL,
}

READ_ONLY_KINDS = frozenset({
	"Read", "Grep", "Glob", "LS", "TodoWrite", "ListMcpResources", "ReadMcpResource",
})
MUTATING_KINDS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})
COMMAND_KIND = "Bash"

# First word of a shell command that is allowed without an explicit rule
SAFE_COMMANDS = frozenset({"ls", "pwd", "echo", "cat", "head", "tail", "grep", "find", "wc", "which"})

DANGEROUS_KEYWORD = "dangerous"

# Matched against a whitespace-collapsed, lower-cased command
DANGEROUS_SIGNATURES: tuple[re.Pattern, ...] = (
	# recursive deletion of / or /*
	re.compile(r"\brm\s+(?:-[a-z]*\s+)*-[a-z]*(?:r[a-z]*f|f[a-z]*r)[a-z]*\s+(?:--no-preserve-root\s+)?/(?:\*|\s|$)"),
	# remote script piped into a shell
	re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z|da|k)?sh\b"),
	# fork bomb
	re.compile(r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
	# raw block device writes
	re.compile(r"\bdd\s+(?:\S+\s+)*if="),
	re.compile(r">\s*/dev/(?:sd|hd|nvme|disk|mmcblk)"),
	# privilege-escalated deletion
	re.compile(r"\bsudo\s+(?:-\S+\s+)*rm\b"),
)

_RULE_RE = re.compile(r"^([^()]+)(?:\(([^()]*)\))?$")

_CRITICAL_PATH_MARKERS = (".env", "secrets/", "credentials", ".ssh/", ".aws/")


@dataclass(frozen=True)
class Rule:
	"""A parsed policy rule."""
	bucket: RuleBucket
	kind: str
	pattern: Optional[str]
	raw: str

	@classmethod
	def parse(cls, raw: str, bucket: RuleBucket) -> "Rule":
		return _parse_rule(raw.strip(), bucket)

	def applies_to(self, operation_kind: str) -> bool:
		if self.kind in ("*", operation_kind):
			return True
		if "*" in self.kind:
			return _wildcard_regex(self.kind, anchored=True).match(operation_kind) is not None
		return False

	@property
	def is_critical(self) -> bool:
		"""Destructive wipes, privilege escalation and writes to secret paths."""
		if self.bucket != RuleBucket.DENY or self.pattern is None:
			return False
		pattern = self.pattern.strip()
		if self.kind == COMMAND_KIND:
			return (
				pattern == DANGEROUS_KEYWORD
				or pattern.startswith(("rm -rf", "rm -fr"))
				or pattern.startswith("sudo")
			)
		if self.kind in MUTATING_KINDS:
			return any(marker in pattern for marker in _CRITICAL_PATH_MARKERS)
		return False


@lru_cache(maxsize=1024)
def _parse_rule(raw: str, bucket: RuleBucket) -> Rule:
	match = _RULE_RE.match(raw)
	if not match:
		raise PolicyEvaluationError(f"Malformed rule: {raw!r}")
	kind, pattern = match.group(1).strip(), match.group(2)
	if not kind:
		raise PolicyEvaluationError(f"Rule has no operation kind: {raw!r}")
	return Rule(bucket=bucket, kind=kind, pattern=pattern or None, raw=raw)


@lru_cache(maxsize=1024)
def _wildcard_regex(pattern: str, anchored: bool) -> re.Pattern:
	"""Compile a pattern where '*' is the only metacharacter."""
	body = ".*".join(re.escape(part) for part in pattern.split("*"))
	return re.compile(f"^{body}$" if anchored else body, re.DOTALL)


@lru_cache(maxsize=1024)
def glob_to_regex(pattern: str) -> re.Pattern:
	"""'*' is any run of characters, '?' one character, everything else literal."""
	parts = []
	for ch in pattern:
		if ch == "*":
			parts.append(".*")
		elif ch == "?":
			parts.append(".")
		else:
			parts.append(re.escape(ch))
	return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def normalize_command(command: str) -> str:
	return " ".join(command.split()).lower()


def is_dangerous_command(command: str) -> bool:
	normalized = normalize_command(command)
	return any(sig.search(normalized) for sig in DANGEROUS_SIGNATURES)


def match_command(pattern: str, command: Optional[str]) -> bool:
	"""Prefix ('git push:*'), keyword ('dangerous') or exact match."""
	if not command:
		return False
	if pattern == DANGEROUS_KEYWORD:
		return is_dangerous_command(command)
	if pattern.endswith(":*") and "*" not in pattern[:-2]:
		return command.startswith(pattern[:-2])
	if "*" in pattern:
		return _wildcard_regex(pattern.replace(":*", "*"), anchored=True).match(command) is not None
	return command == pattern


def match_path(pattern: str, path: Optional[str]) -> bool:
	"""Glob anchored to the whole path. './x' in a pattern also matches 'x'."""
	if not path:
		return False
	patterns = {pattern}
	if pattern.startswith("./"):
		patterns.add(pattern[2:])
	paths = {path}
	if path.startswith("./"):
		paths.add(path[2:])
	return any(glob_to_regex(p).match(candidate) for p in patterns for candidate in paths)


def match_url(pattern: str, url: Optional[str]) -> bool:
	if not url:
		return False
	if "*" in pattern:
		return _wildcard_regex(pattern, anchored=False).search(url) is not None
	return pattern in url


def match_generic(pattern: str, operation_input: dict[str, Any]) -> bool:
	"""Substring or wildcard match on the JSON form of the input, or a 'key:value' field match."""
	text = json.dumps(operation_input, default=str)
	if "*" in pattern:
		if _wildcard_regex(pattern, anchored=False).search(text):
			return True
	elif pattern in text:
		return True

	key, sep, value = pattern.partition(":")
	if sep and key in operation_input:
		actual = operation_input[key]
		if isinstance(actual, bool):
			actual = "true" if actual else "false"
		return str(actual).lower() == value.strip().lower()
	return False


def _path_field(operation_input: dict[str, Any]) -> Optional[str]:
	for key in ("file_path", "notebook_path", "path"):
		if operation_input.get(key):
			return str(operation_input[key])
	return None


def matches(rule: Rule, operation_kind: str, operation_input: dict[str, Any]) -> bool:
	"""Dispatch to the matcher for the operation kind's family."""
	if not rule.applies_to(operation_kind):
		return False
	if rule.pattern is None:
		return True

	family = OPERATION_FAMILIES.get(operation_kind, MatchFamily.GENERIC)
	if family == MatchFamily.COMMAND:
		return match_command(rule.pattern, operation_input.get("command"))
	if family == MatchFamily.PATH:
		return match_path(rule.pattern, _path_field(operation_input))
	if family == MatchFamily.URL:
		return match_url(rule.pattern, operation_input.get("url"))
	return match_generic(rule.pattern, operation_input)


@dataclass(frozen=True)
class PolicyRules:
	"""The three rule buckets plus optional input rewrites keyed by allow rule."""
	allow: tuple[str, ...] = ()
	deny: tuple[str, ...] = ()
	ask: tuple[str, ...] = ()
	rewrites: dict[str, dict[str, Any]] = field(default_factory=dict)

	def bucket(self, bucket: RuleBucket) -> tuple[str, ...]:
		return {
			RuleBucket.ALLOW: self.allow,
			RuleBucket.DENY: self.deny,
			RuleBucket.ASK: self.ask,
		}[bucket]

	def to_dict(self) -> dict[str, list[str]]:
		return {"allow": list(self.allow), "deny": list(self.deny), "ask": list(self.ask)}


@dataclass(frozen=True)
class PermissionContext:
	"""Who is asking, and how urgently. Used for the default policy and audit."""
	priority: Optional[TaskPriority] = None
	member_id: Optional[str] = None
	session_id: Optional[str] = None

	@classmethod
	def coerce(cls, value: Any) -> "PermissionContext":
		if value is None:
			return cls()
		if isinstance(value, PermissionContext):
			return value
		priority = value.get("priority")
		return cls(
			priority=TaskPriority(priority) if priority else None,
			member_id=value.get("member_id") or value.get("memberId"),
			session_id=value.get("session_id") or value.get("sessionId"),
		)


@dataclass(frozen=True)
class PermissionDecision:
	"""Verdict for one operation. An interrupting decision is always a deny."""
	verdict: Verdict
	reason: str = ""
	updated_input: Optional[dict[str, Any]] = None
	interrupt: bool = False
	ask: bool = False
	rule: Optional[str] = None

	def __post_init__(self) -> None:
		if self.interrupt and self.verdict != Verdict.DENY:
			raise ValueError("An interrupting decision must be a deny")

	@property
	def allowed(self) -> bool:
		return self.verdict == Verdict.ALLOW

	@classmethod
	def allow(cls, reason: str = "", **kwargs: Any) -> "PermissionDecision":
		return cls(verdict=Verdict.ALLOW, reason=reason, **kwargs)

	@classmethod
	def deny(cls, reason: str, **kwargs: Any) -> "PermissionDecision":
		return cls(verdict=Verdict.DENY, reason=reason, **kwargs)

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {"behavior": self.verdict.value, "message": self.reason}
		if self.updated_input is not None:
			data["updatedInput"] = self.updated_input
		if self.interrupt:
			data["interrupt"] = True
		return data


@dataclass(frozen=True)
class AuditEntry:
	"""One recorded evaluation."""
	timestamp: str
	operation_kind: str
	context: PermissionContext
	decision: PermissionDecision
	reason: str


PermissionFn = Callable[[str, dict[str, Any], Optional[PermissionContext]], PermissionDecision]


class PolicyEngine:
	"""
	Adjudicates tool operations against a fixed PolicyRules set.

	The engine owns its rules for its lifetime. The audit ledger is the only
	mutable state and is guarded by a lock.
	"""

	DEFAULT_AUDIT_CAPACITY = 1000

	def __init__(
		self,
		rules: PolicyRules,
		workspace: Optional[str] = None,
		audit_capacity: int = DEFAULT_AUDIT_CAPACITY,
	):
		self.rules = rules
		self.workspace = Path(workspace).expanduser().resolve() if workspace else None
		self.audit_capacity = max(2, audit_capacity)
		self._audit: list[AuditEntry] = []
		self._lock = threading.Lock()

		for bucket in RuleBucket:
			for raw in rules.bucket(bucket):
				try:
					Rule.parse(raw, bucket)
				except PolicyEvaluationError as e:
					logger.warning(f"{e}; operations reaching this {bucket.value} rule will be denied")

	def evaluate(
		self,
		operation_kind: str,
		operation_input: Optional[dict[str, Any]],
		context: Any = None,
	) -> PermissionDecision:
		"""Evaluate one operation. Never raises."""
		ctx = PermissionContext()
		try:
			ctx = PermissionContext.coerce(context)
			decision, reason = self._evaluate(operation_kind, operation_input, ctx)
		except Exception as e:
			logger.error(f"Permission evaluation failed for {operation_kind}: {e}")
			decision = PermissionDecision.deny(f"Permission evaluation error: {e}")
			reason = f"Error: {e}"

		self._record(operation_kind, ctx, decision, reason)
		return decision

	def bind(
		self,
		member_id: Optional[str] = None,
		session_id: Optional[str] = None,
		priority: Optional[TaskPriority] = None,
	) -> PermissionFn:
		"""Per-task evaluate with member, session and priority filled in."""
		bound = PermissionContext(priority=priority, member_id=member_id, session_id=session_id)

		def evaluate(
			operation_kind: str,
			operation_input: dict[str, Any],
			context: Optional[PermissionContext] = None,
		) -> PermissionDecision:
			return self.evaluate(operation_kind, operation_input, context or bound)

		return evaluate

	def permission_handler(self) -> Callable[[str, dict[str, Any], Any], Awaitable[PermissionDecision]]:
		"""Async adapter with the (kind, input, options) engine signature."""
		async def handler(operation_kind: str, operation_input: dict[str, Any], options: Any = None) -> PermissionDecision:
			return self.evaluate(operation_kind, operation_input, options)

		return handler

	def unconditional_kinds(self, kinds: list[str], priority: Optional[TaskPriority] = None) -> list[str]:
		"""
		The subset of kinds this policy allows for every possible input.

		A kind qualifies when no deny rule applies to it and either a
		pattern-less allow or ask rule covers it, it is read-only, or it is a
		shell command at escalated priority. Any malformed rule disqualifies
		everything, since reaching it denies.
		"""
		try:
			parsed = {
				bucket: [Rule.parse(raw, bucket) for raw in self.rules.bucket(bucket)]
				for bucket in RuleBucket
			}
		except PolicyEvaluationError:
			return []

		result = []
		for kind in kinds:
			if any(rule.applies_to(kind) for rule in parsed[RuleBucket.DENY]):
				continue
			blanket = any(
				rule.pattern is None and rule.applies_to(kind)
				for rule in parsed[RuleBucket.ALLOW] + parsed[RuleBucket.ASK]
			)
			escalated_shell = kind == COMMAND_KIND and priority is not None and priority.is_escalated
			if blanket or kind in READ_ONLY_KINDS or escalated_shell:
				result.append(kind)
		return result

	def _evaluate(
		self,
		operation_kind: str,
		operation_input: Optional[dict[str, Any]],
		ctx: PermissionContext,
	) -> tuple[PermissionDecision, str]:
		if not isinstance(operation_input, dict):
			raise PolicyEvaluationError(
				f"operation input must be a mapping, got {type(operation_input).__name__}"
			)
		logger.debug(f"Permission requested for {operation_kind} (member={ctx.member_id})")

		rule = self._first_match(RuleBucket.DENY, operation_kind, operation_input)
		if rule:
			decision = PermissionDecision.deny(
				f"Operation denied by rule: {rule.raw}",
				interrupt=rule.is_critical,
				rule=rule.raw,
			)
			return decision, f"Denied by rule: {rule.raw}"

		rule = self._first_match(RuleBucket.ALLOW, operation_kind, operation_input)
		if rule:
			rewrite = self.rules.rewrites.get(rule.raw)
			updated = {**operation_input, **rewrite} if rewrite else operation_input
			decision = PermissionDecision.allow(
				f"Allowed by rule: {rule.raw}",
				updated_input=updated,
				rule=rule.raw,
			)
			return decision, f"Allowed by rule: {rule.raw}"

		rule = self._first_match(RuleBucket.ASK, operation_kind, operation_input)
		if rule:
			decision = PermissionDecision.allow(
				f"Approved without confirmation (would normally ask): {rule.raw}",
				updated_input=operation_input,
				ask=True,
				rule=rule.raw,
			)
			return decision, f"Auto-approved ask rule: {rule.raw}"

		return self._default_policy(operation_kind, operation_input, ctx), "Applied default policy"

	def _first_match(self, bucket: RuleBucket, operation_kind: str, operation_input: dict[str, Any]) -> Optional[Rule]:
		for raw in self.rules.bucket(bucket):
			rule = Rule.parse(raw, bucket)
			if matches(rule, operation_kind, operation_input):
				return rule
		return None

	def _default_policy(
		self,
		operation_kind: str,
		operation_input: dict[str, Any],
		ctx: PermissionContext,
	) -> PermissionDecision:
		if operation_kind in READ_ONLY_KINDS:
			return PermissionDecision.allow("Read-only operation", updated_input=operation_input)

		if operation_kind in MUTATING_KINDS:
			target = _path_field(operation_input)
			if target and self.in_workspace(target):
				return PermissionDecision.allow("Target inside workspace", updated_input=operation_input)
			return PermissionDecision.deny("File editing outside workspace requires explicit permission")

		if operation_kind == COMMAND_KIND:
			command = (operation_input.get("command") or "").strip()
			first_word = command.split()[0] if command else ""
			if first_word in SAFE_COMMANDS:
				return PermissionDecision.allow("Side-effect-free command", updated_input=operation_input)
			if ctx.priority is not None and ctx.priority.is_escalated:
				return PermissionDecision.allow(
					f"Command approved due to {ctx.priority.value} priority",
					updated_input=operation_input,
				)
			return PermissionDecision.deny("Command requires explicit permission")

		return PermissionDecision.deny(f"Operation {operation_kind} not in allowed list")

	def in_workspace(self, target: str) -> bool:
		"""True if target resolves inside the configured workspace."""
		if self.workspace is None:
			return False
		path = Path(target).expanduser()
		if not path.is_absolute():
			path = self.workspace / path
		try:
			return path.resolve().is_relative_to(self.workspace)
		except (OSError, RuntimeError):
			return False

	def _record(
		self,
		operation_kind: str,
		ctx: PermissionContext,
		decision: PermissionDecision,
		reason: str,
	) -> None:
		entry = AuditEntry(
			timestamp=datetime.now().isoformat(),
			operation_kind=operation_kind,
			context=ctx,
			decision=decision,
			reason=reason,
		)
		with self._lock:
			self._audit.append(entry)
			if len(self._audit) > self.audit_capacity:
				self._audit = self._audit[-(self.audit_capacity // 2):]

		if decision.allowed:
			logger.info(
				f"Permission allow: {operation_kind} ({reason}) member={ctx.member_id} session={ctx.session_id}"
			)
		else:
			logger.warning(
				f"Permission deny: {operation_kind} ({reason}) member={ctx.member_id} session={ctx.session_id}"
			)

	def audit_log(self) -> list[AuditEntry]:
		with self._lock:
			return list(self._audit)

	def security_summary(self, recent: int = 5) -> dict[str, Any]:
		"""Counts of allowed, asked and denied operations plus recent denials."""
		entries = self.audit_log()
		denied = [e for e in entries if not e.decision.allowed]
		asked = [e for e in entries if e.decision.ask]

		usage: dict[str, int] = {}
		for e in entries:
			usage[e.operation_kind] = usage.get(e.operation_kind, 0) + 1

		return {
			"total": len(entries),
			"allowed": len(entries) - len(denied),
			"asked": len(asked),
			"denied": len(denied),
			"operation_usage": dict(sorted(usage.items(), key=lambda kv: kv[1], reverse=True)),
			"recent_denials": [
				{"timestamp": e.timestamp, "operation": e.operation_kind, "reason": e.reason}
				for e in denied[-recent:]
			],
		}

	def settings_document(self) -> dict[str, Any]:
		"""Permission settings as written to the workspace settings file."""
		return {
			"permissions": self.rules.to_dict(),
			"team_configuration": {
				"audit_permissions": True,
				"audit_capacity": self.audit_capacity,
			},
		}
