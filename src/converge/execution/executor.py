"""Walk a plan and apply changes through provider adapters."""

import asyncio
import functools
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from ..config.settings import ExecutionSettings
from ..graph.values import contains_unknown, extract_path, resolve_attributes
from ..ingest.models import ResourceAddress
from ..planning.models import Change, ChangeKind, Plan
from ..providers.base import DiffStrategy, Provider, ReplaceMode, changed_attributes
from ..providers.registry import ProviderRegistry
from ..state.models import StateRecord
from ..state.store import StateStore
from ..utils.errors import ConvergeError, ProviderError, ReferenceResolutionError, ResourceNotFound
from ..utils.logging import get_logger
from .cancellation import CancellationToken
from .models import ChangeOutcome, OutcomeStatus, RunReport

logger = get_logger("execution.executor")


@dataclass
class _Progress:
    """Per-change progress that survives retries of the same change."""
    attempts: int = 0
    dispatched_at: Optional[float] = None
    committed_at: Optional[float] = None
    old_deleted: bool = False
    created: Optional[Tuple[str, Dict[str, Any]]] = None
    deposed_deleted: Set[str] = field(default_factory=set)


class Executor:
    """
    Applies a plan with bounded concurrency.

    Provider calls run in a thread pool sized to the plan's parallelism bound.
    Each change owns a completion event; a change is dispatched only after the
    events of all its prerequisites are set. State records are committed right
    after each successful provider mutation.
    """

    def __init__(self, registry: ProviderRegistry, store: StateStore, settings: Optional[ExecutionSettings] = None):
        self.registry = registry
        self.store = store
        self.settings = settings or ExecutionSettings()
        self._snapshot: Dict[ResourceAddress, StateRecord] = {}

    def execute(self, plan: Plan, cancel_token: Optional[CancellationToken] = None) -> RunReport:
        """Run the plan to completion on a private event loop."""
        return asyncio.run(self.execute_async(plan, cancel_token))

    async def execute_async(self, plan: Plan, cancel_token: Optional[CancellationToken] = None) -> RunReport:
        parallelism = max(1, min(plan.max_parallelism, self.settings.max_parallelism))
        started = time.monotonic()
        outcomes: Dict[ResourceAddress, ChangeOutcome] = {}
        done = {change.address: asyncio.Event() for change in plan.changes}
        semaphore = asyncio.Semaphore(parallelism)
        pool = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="converge")

        logger.info(f"Executing {len(plan)} changes with parallelism {parallelism}")
        try:
            self._snapshot = await asyncio.get_running_loop().run_in_executor(pool, self.store.load)
            await asyncio.gather(*(
                self._run_change(change, plan, outcomes, done, semaphore, pool, cancel_token)
                for change in plan.changes
            ))
        finally:
            pool.shutdown(wait=False)

        report = RunReport(
            outcomes=outcomes,
            cancelled=bool(cancel_token and cancel_token.cancelled),
            duration_seconds=time.monotonic() - started,
        )
        logger.info(f"Run finished in {report.duration_seconds:.2f}s: {report.counts()}")
        return report

    async def _run_change(self, change: Change, plan: Plan, outcomes: Dict[ResourceAddress, ChangeOutcome],
                          done: Dict[ResourceAddress, asyncio.Event], semaphore: asyncio.Semaphore,
                          pool: ThreadPoolExecutor, cancel_token: Optional[CancellationToken]) -> None:
        outcome = None
        try:
            prerequisites = sorted(plan.prerequisites(change.address))
            for prerequisite in prerequisites:
                await done[prerequisite].wait()

            blocked = [p for p in prerequisites if outcomes[p].terminal_failure]
            if blocked:
                outcome = ChangeOutcome(
                    change.address, change.kind, OutcomeStatus.SKIPPED,
                    reason="blocked by failed or skipped dependency", blocked_by=blocked,
                )
                logger.warning(f"Skipping {change.address}: blocked by {', '.join(str(b) for b in blocked)}")
            elif change.kind == ChangeKind.NO_OP:
                outcome = ChangeOutcome(change.address, change.kind, OutcomeStatus.NO_OP)
            else:
                async with semaphore:
                    if cancel_token is not None and cancel_token.cancelled:
                        outcome = ChangeOutcome(change.address, change.kind, OutcomeStatus.SKIPPED,
                                                reason=cancel_token.reason or "cancelled")
                        logger.warning(f"Skipping {change.address}: run cancelled")
                    else:
                        outcome = await self._dispatch(change, pool)
        except Exception as e:
            logger.error(f"Unexpected error scheduling {change.address}: {e}", exc_info=True)
            outcome = ChangeOutcome(change.address, change.kind, OutcomeStatus.FAILED, reason=f"Unexpected error: {e}")
        finally:
            if outcome is None:
                outcome = ChangeOutcome(change.address, change.kind, OutcomeStatus.FAILED, reason="interrupted")
            if outcome.finished_at is None:
                outcome.finished_at = time.monotonic()
            outcomes[change.address] = outcome
            done[change.address].set()

    async def _dispatch(self, change: Change, pool: ThreadPoolExecutor) -> ChangeOutcome:
        progress = _Progress(dispatched_at=time.monotonic())
        status = OutcomeStatus.FAILED
        reason = None
        try:
            provider = self.registry.get(change.resource_type)
            timeout = provider.timeout_seconds(change.resource_type)
            logger.info(f"{change.kind.value} {change.address}")
            status = await asyncio.wait_for(self._apply_with_retry(change, provider, pool, progress), timeout)
        except asyncio.TimeoutError:
            reason = f"Timeout after {timeout:g}s"
        except ProviderError as e:
            reason = f"Provider error: {e}"
        except ConvergeError as e:
            reason = str(e)
        except Exception as e:
            logger.error(f"Unexpected error applying {change.address}: {e}", exc_info=True)
            reason = f"Unexpected error: {e}"

        if status == OutcomeStatus.FAILED:
            logger.error(f"{change.kind.value} {change.address} failed: {reason}")
        return ChangeOutcome(
            change.address, change.kind, status, reason=reason,
            attempts=progress.attempts, dispatched_at=progress.dispatched_at,
            committed_at=progress.committed_at, finished_at=time.monotonic(),
        )

    async def _apply_with_retry(self, change: Change, provider: Provider, pool: ThreadPoolExecutor,
                                progress: _Progress) -> OutcomeStatus:
        """Apply a change, retrying retryable provider errors with exponential backoff."""
        retry = self.settings.retry
        for attempt in range(1, retry.max_attempts + 1):
            progress.attempts = attempt
            try:
                return await self._apply(change, provider, pool, progress)
            except ProviderError as e:
                if not e.retryable or attempt >= retry.max_attempts:
                    raise
                backoff = retry.delay_for(attempt)
                wait_time = backoff + random.uniform(0, backoff * retry.jitter)
                logger.warning(
                    f"{change.kind.value} {change.address} failed (attempt {attempt}/{retry.max_attempts}), "
                    f"retrying in {wait_time:.2f}s: {e}"
                )
                await asyncio.sleep(wait_time)
        raise AssertionError("retry loop exited without result")

    async def _apply(self, change: Change, provider: Provider, pool: ThreadPoolExecutor,
                     progress: _Progress) -> OutcomeStatus:
        loop = asyncio.get_running_loop()

        async def call(method, *args):
            return await loop.run_in_executor(pool, functools.partial(method, change.resource_type, *args))

        async def commit(record: Optional[StateRecord]) -> None:
            await loop.run_in_executor(pool, self._commit, change.address, record, progress)

        if change.deposed_provider_ids:
            await self._delete_deposed(change, provider, call, commit, progress)

        if change.kind == ChangeKind.DELETE:
            await call(provider.delete, change.provider_id)
            await commit(None)
            return OutcomeStatus.APPLIED

        attrs = self._resolve(change)

        if change.kind == ChangeKind.CREATE:
            provider_id, observed = await call(provider.create, attrs)
            await commit(self._record(change, provider_id, observed, attrs))
            return OutcomeStatus.APPLIED

        old_attrs = change.old_attributes or {}
        if not changed_attributes(old_attrs, attrs):
            logger.info(f"{change.address} unchanged after resolving references")
            return OutcomeStatus.APPLIED if change.deposed_provider_ids else OutcomeStatus.NO_OP

        strategy = DiffStrategy.UPDATE_IN_PLACE
        if change.kind == ChangeKind.REPLACE:
            strategy = provider.diff_strategy(change.resource_type, old_attrs, attrs)
            if strategy == DiffStrategy.NO_OP:
                return OutcomeStatus.APPLIED if change.deposed_provider_ids else OutcomeStatus.NO_OP

        if strategy == DiffStrategy.UPDATE_IN_PLACE:
            observed = await call(provider.update, change.provider_id, old_attrs, attrs)
            await commit(self._record(change, change.provider_id, observed, attrs))
            return OutcomeStatus.APPLIED

        mode = change.replace_mode or provider.replace_mode(change.resource_type)
        if mode == ReplaceMode.CREATE_THEN_DELETE:
            if progress.created is None:
                progress.created = await call(provider.create, attrs)
                provider_id, observed = progress.created
                # The old object stays tracked until its delete succeeds.
                await commit(self._record(change, provider_id, observed, attrs, deposed=[change.provider_id]))
            if not progress.old_deleted:
                await call(provider.delete, change.provider_id)
                progress.old_deleted = True
                provider_id, observed = progress.created
                await commit(self._record(change, provider_id, observed, attrs))
        else:
            if not progress.old_deleted:
                await call(provider.delete, change.provider_id)
                progress.old_deleted = True
                await commit(None)
            provider_id, observed = await call(provider.create, attrs)
            await commit(self._record(change, provider_id, observed, attrs))
        return OutcomeStatus.APPLIED

    async def _delete_deposed(self, change: Change, provider: Provider, call, commit, progress: _Progress) -> None:
        """Delete objects left behind by an earlier create-first replacement."""
        pending = [pid for pid in change.deposed_provider_ids if pid not in progress.deposed_deleted]
        if not pending:
            return
        for provider_id in pending:
            logger.info(f"Deleting deposed object {provider_id} of {change.address}")
            try:
                await call(provider.delete, provider_id)
            except ResourceNotFound:
                logger.debug(f"Deposed object {provider_id} of {change.address} is already gone")
            progress.deposed_deleted.add(provider_id)

        current = self._snapshot.get(change.address)
        if change.kind != ChangeKind.DELETE and current is not None:
            await commit(current.model_copy(update={"deposed_provider_ids": []}))

    def _resolve(self, change: Change) -> Dict[str, Any]:
        """Resolve raw attributes against state committed so far."""
        snapshot = self._snapshot

        def lookup(address: ResourceAddress, path):
            record = snapshot.get(address)
            if record is None:
                raise ReferenceResolutionError(f"{change.address}: referenced resource {address} has no applied state")
            return extract_path(record.attributes, path, address)

        attrs = resolve_attributes(change.raw_attributes or {}, lookup)
        old_attrs = change.old_attributes or {}
        for key in change.ignore_changes:
            if key in old_attrs:
                attrs[key] = old_attrs[key]
        if contains_unknown(attrs):
            raise ReferenceResolutionError(f"{change.address}: attributes still unknown at apply time")
        return attrs

    def _record(self, change: Change, provider_id: str, observed: Dict[str, Any], attrs: Dict[str, Any],
                deposed: Optional[List[str]] = None) -> StateRecord:
        return StateRecord(
            resource_type=change.address.type,
            name=change.address.name,
            provider_id=provider_id,
            attributes=dict(observed),
            inputs=dict(attrs),
            dependencies=[str(dep) for dep in change.dependencies],
            prevent_destroy=change.prevent_destroy,
            deposed_provider_ids=list(deposed or []),
        )

    def _commit(self, address: ResourceAddress, record: Optional[StateRecord], progress: _Progress) -> None:
        """Write one record and mirror it into the run's snapshot; runs on a pool thread."""
        self.store.commit(address, record)
        if record is None:
            self._snapshot.pop(address, None)
        else:
            self._snapshot[address] = record
        progress.committed_at = time.monotonic()
