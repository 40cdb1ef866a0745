"""Configuration for the event bus.

Settings are plain dataclass fields, loaded from environment variables
with ``BusConfig.from_env()``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

ENV_PREFIX = "EVENTBUS_"

POLICY_STRICT = "strict"
POLICY_NARROW = "narrow"
SUBSCRIPTION_POLICIES = (POLICY_STRICT, POLICY_NARROW)

_TRUTHY = ("1", "true", "True", "yes")
_FALSY = ("0", "false", "False", "no", "")


def _parse_flag(name: str, value: str) -> bool:
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {value!r}")


@dataclass
class BusConfig:
    """
    Event bus behaviour settings.

    Args:
        subscription_policy: What to do when a consumer subscribes with event
            types the (already registered) publisher never declared.
            ``strict`` rejects the whole call, ``narrow`` keeps the declared
            subset.
        raise_consumer_errors: Raise ``ConsumerDispatchError`` once delivery
            finishes if any consumer failed
        max_dead_letters: Consumer failures kept for inspection (0 disables)
        log_level: Log level used by ``configure_from_config``
        log_json: Render logs as JSON instead of console output
    """

    subscription_policy: str = POLICY_STRICT
    raise_consumer_errors: bool = True
    max_dead_letters: int = 100
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self):
        if self.subscription_policy not in SUBSCRIPTION_POLICIES:
            raise ValueError(
                f"subscription_policy must be one of {SUBSCRIPTION_POLICIES}, "
                f"got {self.subscription_policy!r}"
            )
        if self.max_dead_letters < 0:
            raise ValueError("max_dead_letters must be >= 0")
        level = self.log_level.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")
        self.log_level = level

    @property
    def strict_subscriptions(self) -> bool:
        return self.subscription_policy == POLICY_STRICT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BusConfig:
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            BusConfig instance
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        policy = env.get(f"{ENV_PREFIX}SUBSCRIPTION_POLICY", defaults.subscription_policy)

        raw_raise = env.get(f"{ENV_PREFIX}RAISE_CONSUMER_ERRORS")
        raise_errors = (
            defaults.raise_consumer_errors
            if raw_raise is None
            else _parse_flag(f"{ENV_PREFIX}RAISE_CONSUMER_ERRORS", raw_raise.strip())
        )

        raw_max = env.get(f"{ENV_PREFIX}MAX_DEAD_LETTERS")
        try:
            max_dead = defaults.max_dead_letters if raw_max is None else int(raw_max)
        except ValueError:
            raise ValueError(
                f"{ENV_PREFIX}MAX_DEAD_LETTERS must be an integer, got {raw_max!r}"
            ) from None

        raw_json = env.get(f"{ENV_PREFIX}LOG_JSON")
        log_json = (
            defaults.log_json
            if raw_json is None
            else _parse_flag(f"{ENV_PREFIX}LOG_JSON", raw_json.strip())
        )

        return cls(
            subscription_policy=policy.strip().lower(),
            raise_consumer_errors=raise_errors,
            max_dead_letters=max_dead,
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level),
            log_json=log_json,
        )
