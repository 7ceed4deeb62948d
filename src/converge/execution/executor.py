"""Apply a plan against a provider with a bounded worker pool."""

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Set
from .models import ActionResult, ActionStatus, ApplyReport
from .retry import OperationRunner
from ..config.settings import Settings
from ..evaluation.evaluator import Evaluator, LookupCache
from ..evaluation.values import Unresolved, known_values
from ..graph.dependency_graph import ResourceGraph
from ..planning.models import Action, Operation, Plan
from ..providers.base import Provider
from ..state.models import ResourceState, hash_attributes
from ..state.session import StateSession
from ..utils.errors import ConvergeError, EvaluationError, ResourceNotFoundError, StateError
from ..utils.logging import get_logger

logger = get_logger("execution.executor")


class Executor:
    """
    Runs plan actions in dependency order.

    An action is claimed only when every action it depends on has been
    applied (or was a no-op). A failure skips everything downstream of it
    while independent branches keep going. State is persisted through the
    session after each successful provider operation; nothing is rolled back.
    """

    def __init__(
        self,
        provider: Provider,
        session: StateSession,
        graph: Optional[ResourceGraph] = None,
        settings: Optional[Settings] = None,
        lookups: Optional[LookupCache] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.provider = provider
        self.session = session
        self.graph = graph
        self.settings = settings or Settings()
        self.lookups = lookups or LookupCache(provider)
        self.cancel_event = cancel_event or threading.Event()
        self.runner = OperationRunner(self.settings.retry, timeout=self.settings.operation_timeout)
        self._evaluator: Optional[Evaluator] = None

    def cancel(self) -> None:
        """Stop claiming new actions; in-flight ones finish."""
        self.cancel_event.set()

    def apply(self, plan: Plan) -> ApplyReport:
        """
        Execute ``plan`` and report every action's terminal status.

        Returns:
            ApplyReport with one result per action, in plan order
        """
        if self.graph is not None:
            self._evaluator = Evaluator.from_state(self.graph, self.session.resources, self.lookups)

        actions = {action.index: action for action in plan.actions}
        results: Dict[int, ActionResult] = {}
        waiting: Dict[int, Set[int]] = {idx: set(a.depends_on) for idx, a in actions.items()}
        dependents: Dict[int, List[int]] = {idx: [] for idx in actions}
        for idx, action in actions.items():
            for dep in action.depends_on:
                dependents[dep].append(idx)

        ready = sorted(idx for idx, deps in waiting.items() if not deps)
        running: Dict[Future, int] = {}

        def settle(idx: int, result: ActionResult) -> None:
            results[idx] = result
            if result.status in (ActionStatus.APPLIED, ActionStatus.NO_OP):
                for child in dependents[idx]:
                    waiting[child].discard(idx)
                    if not waiting[child] and child not in results:
                        ready.append(child)
                ready.sort()
            else:
                self._skip_downstream(idx, actions, dependents, results)

        pool = ThreadPoolExecutor(max_workers=self.settings.parallelism, thread_name_prefix="converge-apply")
        try:
            while ready or running:
                while ready and len(running) < self.settings.parallelism:
                    if self.cancel_event.is_set():
                        break
                    idx = ready.pop(0)
                    if idx in results:
                        continue
                    action = actions[idx]
                    if action.operation == Operation.NO_OP:
                        settle(idx, ActionResult(index=idx, address=action.address,
                                                 operation=action.operation, status=ActionStatus.NO_OP))
                        continue
                    running[pool.submit(self._run_action, action)] = idx

                if self.cancel_event.is_set():
                    ready.clear()
                if not running:
                    continue
                try:
                    done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning("Interrupted: waiting for in-flight actions to finish")
                    self.cancel()
                    continue
                for future in done:
                    idx = running.pop(future)
                    settle(idx, future.result())
        finally:
            pool.shutdown(wait=True)

        cancelled = False
        for idx, action in actions.items():
            if idx not in results:
                cancelled = True
                results[idx] = ActionResult(index=idx, address=action.address, operation=action.operation,
                                            status=ActionStatus.CANCELLED, error="run cancelled before start")

        report = ApplyReport(results=[results[idx] for idx in sorted(results)], cancelled=cancelled)
        report.outputs = self._record_outputs(plan)
        self._log_summary(report)
        return report

    def _run_action(self, action: Action) -> ActionResult:
        """Worker body: never raises, failures become FAILED results."""
        description = f"{action.operation.value} {action.address}"
        logger.info(f"{description}: starting")
        try:
            self._execute(action)
        except StateError as e:
            logger.error(f"{description}: state could not be saved, cancelling run: {e}")
            self.cancel()
            return self._failed(action, e)
        except ConvergeError as e:
            logger.error(f"{description}: failed: {e}")
            return self._failed(action, e)
        except Exception as e:
            logger.error(f"{description}: unexpected error: {e}", exc_info=True)
            return self._failed(action, e)
        logger.info(f"{description}: done")
        return ActionResult(index=action.index, address=action.address, operation=action.operation,
                            status=ActionStatus.APPLIED, attempts=self.runner.last_attempts)

    def _execute(self, action: Action) -> None:
        if action.operation == Operation.DELETE:
            try:
                self.runner.run(f"delete {action.address}", self.provider.delete, action.kind, action.prior_id)
            except ResourceNotFoundError:
                logger.info(f"delete {action.address}: {action.prior_id} was already gone")
            self.session.record(action.address, None, expected_provider_id=action.prior_id)
            if self._evaluator is not None and action.address not in self.session.resources:
                self._evaluator.forget(action.address)
            return

        if self.graph is None or self._evaluator is None:
            raise EvaluationError(f"Cannot {action.operation.value} {action.address} without a resource graph")

        node = self.graph.node(action.address)
        values = self._evaluator.evaluate_attributes(node)
        pending = [f"{name} ({v.reason})" for name, v in values.items() if isinstance(v, Unresolved)]
        if pending:
            raise EvaluationError(f"Attributes of {action.address} still unknown after dependencies applied: {', '.join(pending)}")
        attributes = known_values(values)
        dependencies = sorted(self.graph.managed_dependencies(action.address))

        if action.operation == Operation.CREATE:
            created = self.runner.run(f"create {action.address}", self.provider.create, action.kind, attributes)
            entry = ResourceState(kind=action.kind, provider_id=created.id, attributes=attributes,
                                  outputs=created.outputs, input_hash=hash_attributes(attributes),
                                  dependencies=dependencies)
        else:
            prior = self.session.resources.get(action.address)
            outputs = self.runner.run(f"update {action.address}", self.provider.update,
                                      action.kind, action.prior_id, attributes)
            previous_outputs = prior.outputs if prior else {}
            entry = ResourceState(kind=action.kind, provider_id=action.prior_id, attributes=attributes,
                                  outputs={**previous_outputs, **(outputs or {})},
                                  input_hash=hash_attributes(attributes), dependencies=dependencies)

        self.session.record(action.address, entry, depose=action.replace)
        self._evaluator.set_object(action.address, entry.values())

    def _failed(self, action: Action, error: Exception) -> ActionResult:
        return ActionResult(index=action.index, address=action.address, operation=action.operation,
                            status=ActionStatus.FAILED, error=str(error), attempts=self.runner.last_attempts)

    def _skip_downstream(self, failed_idx: int, actions: Dict[int, Action],
                         dependents: Dict[int, List[int]], results: Dict[int, ActionResult]) -> None:
        failed = actions[failed_idx]
        cause = f"depends on {failed.operation.value} {failed.address}, which did not complete"
        pending = list(dependents[failed_idx])
        while pending:
            idx = pending.pop()
            if idx in results:
                continue
            action = actions[idx]
            if action.operation == Operation.NO_OP:
                results[idx] = ActionResult(index=idx, address=action.address, operation=action.operation,
                                            status=ActionStatus.NO_OP)
            else:
                results[idx] = ActionResult(index=idx, address=action.address, operation=action.operation,
                                            status=ActionStatus.SKIPPED, error=cause)
                logger.warning(f"{action.operation.value} {action.address}: skipped, {cause}")
            pending.extend(dependents[idx])

    def _record_outputs(self, plan: Plan) -> Dict[str, object]:
        if plan.destroy:
            outputs = {} if not self.session.resources else dict(self.session.document.outputs)
        elif self._evaluator is not None and not plan.targets:
            try:
                evaluated = self._evaluator.evaluate_outputs()
            except ConvergeError as e:
                logger.warning(f"Outputs not updated: {e}")
                return dict(self.session.document.outputs)
            outputs = {name: v.value for name, v in evaluated.items() if not isinstance(v, Unresolved)}
        else:
            return dict(self.session.document.outputs)
        if outputs != self.session.document.outputs:
            self.session.set_outputs(outputs)
        return outputs

    def _log_summary(self, report: ApplyReport) -> None:
        summary = report.summary()
        logger.info(
            "Apply finished: " + ", ".join(f"{count} {name}" for name, count in summary.items())
        )
