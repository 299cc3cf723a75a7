"""Marketplace configuration."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional


class CompletionPolicy(str, Enum):
    """Who may move an in-progress job to completed."""

    CLIENT = "client"
    APPRENTICE = "apprentice"
    EITHER = "either"


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(raw: str, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class MarketplaceConfig:
    """Tunable rules of the lifecycle and policy engines.

    Attributes:
        reject_siblings_on_accept: Reject every other pending application of
            a job when one application is accepted.
        completion_policy: Which party may complete an in-progress job.
        conceal_forbidden_rows: Report denied access to rows the actor cannot
            read as not-found instead of forbidden.
        allow_past_deadline: Accept job requests whose deadline already passed.
        max_title_length: Upper bound for job titles.
        max_skills: Upper bound for the number of skill tags.
        relay_on_complete: Push the profile credit right after completion
            instead of waiting for the next outbox flush.
    """

    reject_siblings_on_accept: bool = True
    completion_policy: CompletionPolicy = CompletionPolicy.CLIENT
    conceal_forbidden_rows: bool = True
    allow_past_deadline: bool = False
    max_title_length: int = 200
    max_skills: int = 50
    relay_on_complete: bool = True

    def __post_init__(self):
        if isinstance(self.completion_policy, str) and not isinstance(
            self.completion_policy, CompletionPolicy
        ):
            try:
                object.__setattr__(
                    self, "completion_policy", CompletionPolicy(self.completion_policy)
                )
            except ValueError:
                raise ValueError(
                    f"Invalid completion policy: {self.completion_policy}. "
                    f"Must be one of: {[p.value for p in CompletionPolicy]}"
                )
        if self.max_title_length < 1:
            raise ValueError("max_title_length must be positive")
        if self.max_skills < 0:
            raise ValueError("max_skills cannot be negative")

    @property
    def client_can_complete(self) -> bool:
        return self.completion_policy in (CompletionPolicy.CLIENT, CompletionPolicy.EITHER)

    @property
    def apprentice_can_complete(self) -> bool:
        return self.completion_policy in (CompletionPolicy.APPRENTICE, CompletionPolicy.EITHER)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MarketplaceConfig":
        """Build a config from ``CRAFTIVA_*`` environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        for field_name in (
            "reject_siblings_on_accept",
            "conceal_forbidden_rows",
            "allow_past_deadline",
            "relay_on_complete",
        ):
            key = f"CRAFTIVA_{field_name.upper()}"
            if env.get(key):
                kwargs[field_name] = _parse_bool(env[key], key)

        for field_name in ("max_title_length", "max_skills"):
            key = f"CRAFTIVA_{field_name.upper()}"
            if env.get(key):
                try:
                    kwargs[field_name] = int(env[key])
                except ValueError:
                    raise ValueError(f"{key} must be an integer, got {env[key]!r}")

        if env.get("CRAFTIVA_COMPLETION_POLICY"):
            kwargs["completion_policy"] = env["CRAFTIVA_COMPLETION_POLICY"].strip().lower()

        return cls(**kwargs)
