# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verifier configuration.

Two knobs:
  * `max_diagnostics`: stop after N findings (0 = unlimited).
  * `join_policy`: what to do when branches disagree on ownership at a merge
    point. `MOVE_WINS` treats the binding as moved after the join (any later
    use is rejected); `ERROR` rejects the merge itself.

Configuration can be built in code, from a mapping, or from a JSON file. Both
the camelCase keys of the external interface (`maxDiagnostics`,
`conservativeJoinPolicy`) and snake_case keys are accepted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

log = logging.getLogger(__name__)


class ConfigError(ValueError):
	"""Invalid configuration value or file."""


class JoinPolicy(Enum):
	MOVE_WINS = "MoveWins"
	ERROR = "Error"

	@classmethod
	def parse(cls, raw: Any) -> "JoinPolicy":
		if isinstance(raw, cls):
			return raw
		if isinstance(raw, str):
			norm = raw.replace("_", "").replace("-", "").lower()
			for member in cls:
				if norm in (member.value.lower(), member.name.replace("_", "").lower()):
					return member
		raise ConfigError(f"unknown join policy {raw!r} (expected one of: MoveWins, Error)")


@dataclass(frozen=True)
class CheckerConfig:
	max_diagnostics: int = 0
	join_policy: JoinPolicy = JoinPolicy.MOVE_WINS

	def __post_init__(self) -> None:
		if isinstance(self.max_diagnostics, bool) or not isinstance(self.max_diagnostics, int):
			raise ConfigError(f"max_diagnostics must be an integer, got {self.max_diagnostics!r}")
		if self.max_diagnostics < 0:
			raise ConfigError("max_diagnostics must be >= 0 (0 = unlimited)")
		if not isinstance(self.join_policy, JoinPolicy):
			object.__setattr__(self, "join_policy", JoinPolicy.parse(self.join_policy))

	@classmethod
	def from_mapping(cls, data: Mapping[str, Any]) -> "CheckerConfig":
		known = {"maxDiagnostics", "max_diagnostics", "conservativeJoinPolicy", "join_policy"}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")
		max_diags = data.get("maxDiagnostics", data.get("max_diagnostics", 0))
		policy = data.get("conservativeJoinPolicy", data.get("join_policy", JoinPolicy.MOVE_WINS))
		return cls(max_diagnostics=max_diags, join_policy=JoinPolicy.parse(policy))

	def to_mapping(self) -> dict:
		return {"maxDiagnostics": self.max_diagnostics, "conservativeJoinPolicy": self.join_policy.value}


def load_config(path: Path) -> CheckerConfig:
	"""Load a `CheckerConfig` from a JSON object file."""
	try:
		data = json.loads(Path(path).read_text(encoding="utf-8"))
	except (OSError, json.JSONDecodeError) as err:
		raise ConfigError(f"cannot read config {path}: {err}") from err
	if not isinstance(data, dict):
		raise ConfigError(f"config {path} must contain a JSON object")
	config = CheckerConfig.from_mapping(data)
	log.debug("loaded config from %s: %s", path, config)
	return config


__all__ = ["CheckerConfig", "ConfigError", "JoinPolicy", "load_config"]
