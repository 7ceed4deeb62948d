"""Run lifecycle: load declarations, lock state, plan, apply, release."""

import threading
from typing import Any, Dict, Iterable, Optional, Tuple
from .config.settings import Settings
from .evaluation.evaluator import LookupCache
from .execution.executor import Executor
from .execution.models import ApplyReport
from .execution.retry import OperationRunner
from .graph.builder import build_graph
from .graph.dependency_graph import ResourceGraph
from .ingest.config_loader import load_configuration
from .planning.models import Plan
from .planning.planner import create_destroy_plan, create_plan
from .planning.refresh import refresh_resources
from .providers import Provider, create_provider
from .state.session import StateSession
from .state.store import LocalStateStore
from .utils.logging import get_logger

logger = get_logger("engine")


class Engine:
    """
    Wires settings, provider and state store together.

    Provider and store are injected so callers (and tests) can swap them;
    ``from_settings`` builds the defaults.
    """

    def __init__(self, settings: Settings, provider: Provider, store: LocalStateStore):
        self.settings = settings
        self.provider = provider
        self.store = store

    @classmethod
    def from_settings(cls, settings: Settings) -> "Engine":
        store = LocalStateStore(
            settings.state.path,
            lock_timeout=settings.state.lock_timeout,
            stale_lock_timeout=settings.state.stale_lock_timeout,
        )
        return cls(settings, create_provider(settings), store)

    def load(self, config_path: str, variables: Optional[Dict[str, Any]] = None) -> ResourceGraph:
        """Parse declarations and build the graph; no state or provider access."""
        configuration = load_configuration(config_path)
        return build_graph(configuration, variables)

    def plan(self, graph: Optional[ResourceGraph], targets: Optional[Iterable[str]] = None,
             destroy: bool = False) -> Plan:
        """Preview: lock, read state (refreshing if configured), diff, release. Nothing is written."""
        with StateSession(self.store, "plan") as session:
            self._refresh(session, persist=False)
            return self._make_plan(session, graph, targets, destroy, LookupCache(self.provider))

    def apply(self, graph: Optional[ResourceGraph], targets: Optional[Iterable[str]] = None,
              destroy: bool = False, cancel_event: Optional[threading.Event] = None) -> Tuple[Plan, ApplyReport]:
        """
        Plan and execute under one lock.

        Returns:
            The plan that was executed and the per-action report
        """
        operation = "destroy" if destroy else "apply"
        with StateSession(self.store, operation) as session:
            self._refresh(session, persist=True)
            lookups = LookupCache(self.provider)
            plan = self._make_plan(session, graph, targets, destroy, lookups)
            executor = Executor(
                self.provider,
                session,
                graph=graph,
                settings=self.settings,
                lookups=lookups,
                cancel_event=cancel_event,
            )
            report = executor.apply(plan)
            return plan, report

    def _make_plan(self, session: StateSession, graph: Optional[ResourceGraph],
                   targets: Optional[Iterable[str]], destroy: bool, lookups: LookupCache) -> Plan:
        state = session.snapshot()
        if destroy:
            return create_destroy_plan(state, targets)
        return create_plan(graph, state, lookups, targets)

    def _refresh(self, session: StateSession, persist: bool) -> None:
        if not self.settings.refresh or not session.resources:
            return
        runner = OperationRunner(self.settings.retry, timeout=self.settings.operation_timeout)
        refreshed, drifted = refresh_resources(session.resources, self.provider, runner)
        session.replace_resources(refreshed)
        if drifted:
            logger.info(f"Refresh found drift in {len(drifted)} resources: {', '.join(drifted)}")
            if persist:
                session.save()
