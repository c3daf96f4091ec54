"""Cluster readiness validation.

The pool asks a ValidationFactory for a validator per started instance
and only hands the instance out when the validator accepts it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from ..cluster.instance import ClusterInstance
from ..utils.process import CancelScope, CommandResult, describe_result, run_script
from ..utils.substitution import build_environment, substitute_variables

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Retry schedule for readiness checks."""
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number attempt (0-indexed)."""
        return min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)


class ClusterValidator(Protocol):
    def validate(self, scope: Optional[CancelScope] = None) -> bool:
        ...


class ValidationFactory(Protocol):
    def create_validator(self, instance: ClusterInstance) -> ClusterValidator:
        ...


class NoopValidator:
    """Accepts every instance."""

    def validate(self, scope: Optional[CancelScope] = None) -> bool:
        return True


class NoopValidationFactory:
    """Factory for runs that do not check cluster readiness."""

    def create_validator(self, instance: ClusterInstance) -> ClusterValidator:
        return NoopValidator()


class ScriptValidator:
    """Runs a check script against an instance until it passes.

    Attempts stop when the script exits 0, when retries run out or when
    `timeout` seconds have passed since the first attempt.
    """

    def __init__(
        self,
        instance: ClusterInstance,
        script: str,
        timeout: float,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.instance = instance
        self.script = script
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self.attempts = 0

    def validate(self, scope: Optional[CancelScope] = None) -> bool:
        """Check the instance.

        Returns:
            True if the check script passed within the retry budget.

        Raises:
            CancelledError: If the scope was cancelled.
        """
        deadline = time.monotonic() + self.timeout
        last_error = f"no check completed within {self.timeout}s"

        for attempt in range(self.retry_config.max_retries + 1):
            if scope is not None:
                scope.raise_if_cancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            result = self._check(scope, remaining)
            if result.ok:
                return True
            if result.cancelled and scope is not None:
                scope.raise_if_cancelled()

            last_error = f"check script {describe_result(result, remaining)}: {result.output.strip()}"
            if attempt < self.retry_config.max_retries:
                logger.info(
                    "Cluster %s not ready yet (attempt %d): %s",
                    self.instance.id, attempt + 1, last_error,
                )
                delay = min(self.retry_config.get_delay(attempt), deadline - time.monotonic())
                if delay > 0:
                    time.sleep(delay)

        self.instance.append_output(f"validation failed after {self.attempts} attempts: {last_error}")
        return False

    def _check(self, scope: Optional[CancelScope], timeout: float) -> CommandResult:
        self.attempts += 1
        args = {"cluster-name": self.instance.id, "provider-name": self.instance.provider_name}
        env = build_environment(self.instance.provider.env, bindings=self.instance.bindings(), args=args)

        return run_script(
            substitute_variables(self.script, env, args),
            env=env,
            timeout=timeout,
            scope=scope,
        )


class ScriptValidationFactory:
    """Validates every instance with the same check script."""

    def __init__(
        self,
        script: str,
        timeout: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.script = script
        self.timeout = timeout
        self.retry_config = retry_config

    def create_validator(self, instance: ClusterInstance) -> ScriptValidator:
        return ScriptValidator(instance, self.script, self.timeout, self.retry_config)
