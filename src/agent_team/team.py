"""
Team definition: capability profiles, roster and permission rules.

A team is described by a TOML file validated with pydantic models, or by
the built-in default team. Members may start from a capability profile
(a predefined tool list) and add their own tools on top.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import Member
from .policy import PolicyRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityProfile:
	"""A named set of operation kinds a member may use."""

	name: str
	description: str
	tools: tuple[str, ...] = field(default_factory=tuple)

	@property
	def is_full_access(self) -> bool:
		return self.name == "full_access"


READ_ONLY = CapabilityProfile(
	name="read_only",
	description="Read-only access: file reading, search, listing",
	tools=("Read", "Glob", "Grep", "WebSearch", "WebFetch", "TodoWrite"),
)

CODE_EDIT = CapabilityProfile(
	name="code_edit",
	description="Code editing: read, write, edit files and run commands",
	tools=("Read", "Glob", "Grep", "Edit", "MultiEdit", "Write", "Bash", "TodoWrite"),
)

TEST_RUN = CapabilityProfile(
	name="test_run",
	description="Test execution: read files, run test commands",
	tools=("Read", "Glob", "Grep", "Bash", "TodoWrite"),
)

FULL_ACCESS = CapabilityProfile(
	name="full_access",
	description="Every built-in tool plus delegation and web access",
	tools=(
		"Read", "Glob", "Grep", "Edit", "MultiEdit", "Write", "Bash",
		"TodoWrite", "WebSearch", "WebFetch", "Task",
	),
)

PROFILES: dict[str, CapabilityProfile] = {
	"read_only": READ_ONLY,
	"code_edit": CODE_EDIT,
	"test_run": TEST_RUN,
	"full_access": FULL_ACCESS,
}


def get_profile(name: str) -> Optional[CapabilityProfile]:
	"""Get a predefined capability profile by name."""
	return PROFILES.get(name)


class MemberSpec(BaseModel):
	"""A team member as written in the team file."""
	id: str = Field(description="Unique member identifier")
	name: str = Field(description="Display name")
	role: str = Field(description="Role string, also used for task matching")
	specialization: list[str] = Field(default_factory=list)
	profile: Optional[str] = Field(default=None, description="Capability profile to start from")
	permissions: list[str] = Field(default_factory=list, description="Extra operation kinds")
	system_prompt: str = Field(default="")
	output_style: Optional[str] = Field(default=None)

	@field_validator("profile")
	@classmethod
	def _known_profile(cls, value: Optional[str]) -> Optional[str]:
		if value is not None and value not in PROFILES:
			raise ValueError(f"Unknown capability profile: {value}")
		return value

	def tools(self) -> tuple[str, ...]:
		base = PROFILES[self.profile].tools if self.profile else ()
		return tuple(dict.fromkeys([*base, *self.permissions]))

	def to_member(self) -> Member:
		return Member(
			id=self.id,
			name=self.name,
			role=self.role,
			specialization=tuple(self.specialization),
			permissions=self.tools(),
			system_prompt=self.system_prompt,
			output_style=self.output_style,
		)


class PolicySpec(BaseModel):
	"""Permission rule buckets as written in the team file."""
	allow: list[str] = Field(default_factory=list)
	deny: list[str] = Field(default_factory=list)
	ask: list[str] = Field(default_factory=list)
	rewrites: dict[str, dict[str, Any]] = Field(default_factory=dict)

	@model_validator(mode="after")
	def _rewrites_target_allow_rules(self) -> "PolicySpec":
		unknown = set(self.rewrites) - set(self.allow)
		if unknown:
			raise ValueError(f"Rewrites reference rules not in allow: {sorted(unknown)}")
		return self

	def to_rules(self) -> PolicyRules:
		return PolicyRules(
			allow=tuple(self.allow),
			deny=tuple(self.deny),
			ask=tuple(self.ask),
			rewrites=dict(self.rewrites),
		)


class TeamSpec(BaseModel):
	"""A whole team: roster, fallback member and policy."""
	name: str = Field(default="agent-team")
	members: list[MemberSpec] = Field(min_length=1)
	fallback_member: Optional[str] = Field(default=None, description="Member used when no specialist matches")
	policy: PolicySpec = Field(default_factory=PolicySpec)

	@model_validator(mode="after")
	def _check_roster(self) -> "TeamSpec":
		ids = [m.id for m in self.members]
		duplicates = {i for i in ids if ids.count(i) > 1}
		if duplicates:
			raise ValueError(f"Duplicate member ids: {sorted(duplicates)}")
		if self.fallback_member is not None and self.fallback_member not in ids:
			raise ValueError(f"Fallback member {self.fallback_member} is not in the roster")
		return self

	def roster(self) -> list[Member]:
		return [m.to_member() for m in self.members]


def load_team(path: str | Path) -> TeamSpec:
	"""Load and validate a team TOML file."""
	with open(path, "rb") as f:
		data = tomllib.load(f)
	team = TeamSpec.model_validate(data)
	logger.info(f"Loaded team {team.name} with {len(team.members)} members from {path}")
	return team


DEFAULT_POLICY = PolicySpec(
	allow=[
		"Read(*)",
		"Grep(*)",
		"Glob(*)",
		"TodoWrite(*)",
		"Bash(ls:*)",
		"Bash(pwd)",
		"Bash(echo:*)",
		"Bash(cat:*)",
		"Bash(head:*)",
		"Bash(tail:*)",
		"Bash(grep:*)",
		"Bash(find:*)",
		"Bash(git status)",
		"Bash(git diff:*)",
		"Bash(git log:*)",
		"Bash(git branch:*)",
		"Bash(git checkout:*)",
		"Bash(git add:*)",
		"Bash(git commit:*)",
		"Bash(npm install:*)",
		"Bash(npm run:*)",
		"Bash(npm test:*)",
		"Bash(pytest:*)",
		"mcp__dev-workflow__*",
		"mcp__team-coordination__*",
	],
	deny=[
		"Write(.env)",
		"Write(./secrets/**)",
		"Edit(.env)",
		"Edit(./secrets/**)",
		"Bash(dangerous)",
		"Bash(rm -rf /)",
		"Bash(sudo:*)",
		"Bash(dd:*)",
		"Read(/etc/shadow)",
		"Write(/etc/**)",
		"Write(/var/**)",
		"Write(/usr/**)",
	],
	ask=[
		"mcp__dev-workflow__deploy_application(environment:production)",
		"mcp__database-tools__migrate_database(dryRun:false)",
		"Bash(git push:*)",
		"Bash(chmod:*)",
		"Bash(chown:*)",
	],
)


def default_team() -> TeamSpec:
	"""The built-in development team."""
	return TeamSpec(
		name="agent-team",
		fallback_member="generalist",
		policy=DEFAULT_POLICY,
		members=[
			MemberSpec(
				id="senior-architect",
				name="Senior Software Architect",
				role="technical-lead",
				specialization=["architecture", "system-design", "analysis", "review"],
				profile="full_access",
				permissions=["mcp__team-coordination__assign_task"],
				system_prompt="You are a senior software architect leading an automated development team.",
			),
			MemberSpec(
				id="frontend-specialist",
				name="Frontend Development Specialist",
				role="frontend-developer",
				specialization=["react", "typescript", "ui-ux", "performance", "implementation"],
				profile="code_edit",
				system_prompt="You are a frontend development specialist focused on modern web applications.",
			),
			MemberSpec(
				id="backend-specialist",
				name="Backend Development Specialist",
				role="backend-developer",
				specialization=["apis", "databases", "microservices", "implementation", "debugging"],
				profile="code_edit",
				permissions=["mcp__dev-workflow__run_tests"],
				system_prompt="You are a backend development specialist focused on scalable server-side systems.",
			),
			MemberSpec(
				id="devops-engineer",
				name="DevOps Engineer",
				role="devops-specialist",
				specialization=["docker", "kubernetes", "ci-cd", "monitoring", "deployment"],
				profile="code_edit",
				permissions=["mcp__dev-workflow__deploy_application"],
				system_prompt="You are a DevOps engineer responsible for infrastructure and deployment.",
			),
			MemberSpec(
				id="security-specialist",
				name="Security Specialist",
				role="security-engineer",
				specialization=["penetration-testing", "compliance", "threat-modeling", "review"],
				profile="read_only",
				system_prompt="You are a security specialist focused on finding and mitigating vulnerabilities.",
			),
			MemberSpec(
				id="qa-engineer",
				name="Quality Assurance Engineer",
				role="qa-specialist",
				specialization=["automated-testing", "test-strategy", "testing", "debugging"],
				profile="test_run",
				permissions=["Write", "Edit"],
				system_prompt="You are a quality assurance engineer focused on software reliability.",
			),
			MemberSpec(
				id="generalist",
				name="Full-Stack Generalist",
				role="full-stack-developer",
				specialization=["general"],
				profile="code_edit",
				system_prompt="You are a full-stack developer who picks up work no specialist owns.",
			),
		],
	)
