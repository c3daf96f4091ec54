"""Cluster provider pool.

Starts cluster instances through provider lifecycle scripts, bounds the
number of live instances per provider and guarantees every instance is
stopped again:

1. Reserve a slot per requested provider (FIFO, interruptible)
2. Run the provider's start script
3. Run the config script to obtain the connection artifact
4. Validate the instance (optional validation factory)
5. On release / shutdown, run the stop script
"""

import itertools
import logging
import threading
from collections import Counter, deque
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..config.schema import ClusterProviderSpec, ProviderScript
from ..utils.process import POLL_INTERVAL, CancelledError, CancelScope, describe_result, run_script
from ..utils.substitution import build_environment, substitute_variables
from .instance import ClusterInstance, InstanceStatus

logger = logging.getLogger(__name__)


class ProviderStartError(Exception):
    """One or more cluster instances could not be started.

    Attributes:
        failed: Instances that failed to start (start, config or validation).
        instances: Every instance created by the acquisition. All of them
            have already been released when this error is raised.
    """

    def __init__(self, failed: list[ClusterInstance], instances: list[ClusterInstance]):
        names = ", ".join(instance.provider_name for instance in failed)
        super().__init__(f"Failed to start cluster providers: {names}")
        self.failed = failed
        self.instances = instances


class PoolClosedError(RuntimeError):
    """The pool has been shut down and accepts no more acquisitions."""


class _ProviderSlots:
    """Bounded, first-come-first-served instance slots of one provider."""

    def __init__(self, limit: int):
        self.limit = max(1, limit)
        self.in_use = 0
        self.waiters: deque = deque()


class ClusterProviderPool:
    """Manages named cluster providers and their live instances."""

    def __init__(
        self,
        providers: list[ClusterProviderSpec],
        config_root: Union[str, Path],
        validation_factory=None,
    ):
        """Initialize the pool.

        Args:
            providers: Declared providers (disabled ones included).
            config_root: Working directory for lifecycle scripts.
            validation_factory: Optional factory whose validators must accept
                an instance before it is handed out.
        """
        self._providers = {p.name: p for p in providers}
        self._config_root = Path(config_root)
        self._validation_factory = validation_factory

        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)
        self._slots = {p.name: _ProviderSlots(p.instances) for p in providers}
        self._counters = {p.name: itertools.count(1) for p in providers}
        self._live: dict[str, ClusterInstance] = {}
        self._closed = False

    @property
    def live_instances(self) -> list[ClusterInstance]:
        with self._lock:
            return list(self._live.values())

    def provider(self, name: str) -> Optional[ClusterProviderSpec]:
        return self._providers.get(name)

    def acquire(
        self,
        provider_names: list[str],
        scope: Optional[CancelScope] = None,
    ) -> list[ClusterInstance]:
        """Start one instance per named provider.

        Args:
            provider_names: Providers required together, in the order the
                instances are returned.
            scope: Cancellation scope for slot waits and start scripts.

        Returns:
            READY instances, one per name.

        Raises:
            ValueError: Unknown provider, or more instances of one provider
                than it allows.
            ProviderStartError: Any instance failed to start.
            CancelledError: The scope was cancelled.
            PoolClosedError: The pool was shut down.
        """
        self._check_request(provider_names)

        reserved: list[str] = []
        try:
            # Sorted order keeps concurrent joint acquisitions deadlock free
            for name in sorted(provider_names):
                self._reserve_slot(name, scope)
                reserved.append(name)
        except BaseException:
            self._free_slots(reserved)
            raise

        instances = self._register(provider_names)
        try:
            for instance in instances:
                if scope is not None and scope.cancelled:
                    break
                self._start(instance, scope)
        except BaseException:
            self.release(instances)
            raise

        if scope is not None and scope.cancelled:
            self.release(instances)
            raise CancelledError(scope.reason or "cancelled")

        failed = [i for i in instances if i.status == InstanceStatus.FAILED]
        if failed:
            error = ProviderStartError(failed, instances)
            self.release(instances)
            raise error

        return instances

    def release(self, instances: list[ClusterInstance]) -> None:
        """Stop instances and free their slots. Never raises on stop failures."""
        for instance in instances:
            with self._lock:
                if self._live.pop(instance.id, None) is None:
                    continue

            try:
                if instance.status != InstanceStatus.STARTING:
                    self._stop(instance)
            except Exception:
                logger.exception("Unexpected error stopping %s", instance.id)
            finally:
                instance.status = InstanceStatus.STOPPED
                self._free_slots([instance.provider_name])

    @contextmanager
    def cluster_set(
        self,
        provider_names: list[str],
        scope: Optional[CancelScope] = None,
    ) -> Iterator[list[ClusterInstance]]:
        """Acquire a cluster-set for the duration of a with block."""
        instances = self.acquire(provider_names, scope)
        try:
            yield instances
        finally:
            self.release(instances)

    def shutdown_all(self) -> None:
        """Release every live instance and refuse further acquisitions."""
        with self._condition:
            self._closed = True
            instances = list(self._live.values())
            self._condition.notify_all()

        if instances:
            logger.info("Shutting down %d remaining cluster instances", len(instances))
        self.release(instances)

    def _check_request(self, provider_names: list[str]) -> None:
        for name, count in Counter(provider_names).items():
            provider = self._providers.get(name)
            if provider is None:
                raise ValueError(f"Unknown cluster provider '{name}'")
            if count > self._slots[name].limit:
                raise ValueError(
                    f"Provider '{name}' allows {provider.instances} instances, "
                    f"{count} requested together"
                )

    def _reserve_slot(self, name: str, scope: Optional[CancelScope]) -> None:
        slots = self._slots[name]
        ticket = object()

        with self._condition:
            slots.waiters.append(ticket)
            try:
                while True:
                    if self._closed:
                        raise PoolClosedError("Cluster provider pool is shut down")
                    if slots.waiters[0] is ticket and slots.in_use < slots.limit:
                        slots.waiters.popleft()
                        slots.in_use += 1
                        self._condition.notify_all()
                        return
                    if scope is not None and scope.cancelled:
                        raise CancelledError(scope.reason or "cancelled")
                    self._condition.wait(timeout=POLL_INTERVAL)
            except BaseException:
                if ticket in slots.waiters:
                    slots.waiters.remove(ticket)
                    self._condition.notify_all()
                raise

    def _free_slots(self, names: list[str]) -> None:
        with self._condition:
            for name in names:
                slots = self._slots[name]
                slots.in_use = max(0, slots.in_use - 1)
            self._condition.notify_all()

    def _register(self, provider_names: list[str]) -> list[ClusterInstance]:
        instances = []
        with self._lock:
            for name in provider_names:
                instance = ClusterInstance(
                    id=f"{name}-{next(self._counters[name])}",
                    provider=self._providers[name],
                )
                self._live[instance.id] = instance
                instances.append(instance)
        return instances

    def _start(self, instance: ClusterInstance, scope: Optional[CancelScope]) -> None:
        provider = instance.provider
        logger.info("Starting cluster instance %s", instance.id)

        result = self._run_lifecycle(instance, ProviderScript.START.value, scope)
        if not result.ok:
            self._fail(instance, f"start script failed: {describe_result(result, provider.timeout)}")
            return

        result = self._run_lifecycle(instance, ProviderScript.CONFIG.value, scope)
        if not result.ok:
            self._fail(instance, f"config script failed: {describe_result(result, provider.timeout)}")
            return

        lines = [line.strip() for line in result.output.splitlines() if line.strip()]
        if not lines:
            self._fail(instance, "config script produced no connection artifact")
            return
        instance.config_path = lines[-1]

        if self._validation_factory is not None:
            try:
                validator = self._validation_factory.create_validator(instance)
                valid = validator.validate(scope)
            except Exception as e:
                logger.exception("Validation of %s raised", instance.id)
                valid = False
                instance.append_output(f"validation error: {e}")
            if not valid:
                self._fail(instance, "cluster validation failed")
                return

        instance.status = InstanceStatus.READY
        logger.info("Cluster instance %s ready, config %s", instance.id, instance.config_path)

    def _stop(self, instance: ClusterInstance) -> None:
        if not instance.provider.script(ProviderScript.STOP.value).strip():
            return

        logger.info("Stopping cluster instance %s", instance.id)
        result = self._run_lifecycle(instance, ProviderScript.STOP.value, scope=None)
        if not result.ok:
            logger.warning(
                "Stop script of %s failed (%s):\n%s",
                instance.id,
                describe_result(result, instance.provider.timeout),
                result.output,
            )

    def _fail(self, instance: ClusterInstance, reason: str) -> None:
        instance.status = InstanceStatus.FAILED
        instance.append_output(reason)
        logger.error("Cluster instance %s failed: %s", instance.id, reason)

    def _run_lifecycle(self, instance: ClusterInstance, action: str, scope: Optional[CancelScope]):
        provider = instance.provider
        args = {
            "cluster-name": instance.id,
            "provider-name": provider.name,
            "config-root": str(self._config_root),
        }
        bindings = {"CLUSTER_NAME": instance.id, **instance.bindings()}
        env = build_environment(provider.env, bindings=bindings, args=args)
        script = substitute_variables(provider.script(action), env, args)

        self._config_root.mkdir(parents=True, exist_ok=True)
        result = run_script(
            script,
            env=env,
            cwd=self._config_root,
            timeout=provider.timeout,
            scope=scope,
        )
        instance.append_output(result.output)
        return result
