"""
Re-hydration coordinator: debounce, fetch rules, merge and recompile.

State machine:

    IDLE ──submit──▶ PENDING_DEBOUNCE ──window elapsed──▶ FETCHING
      ▲                  │  ▲                               │
      │                  └──┘ submit (restarts window)      ▼
      └───────────────────────────────────────────────── APPLYING

Every submit bumps a monotonically increasing sequence number. Only the
response of the latest sequence is applied; older responses are discarded
when they arrive (the in-flight request itself is not aborted). Applying
merges the delta into the resolved descriptor, compiles the schema and
publishes both as one immutable RehydrationSnapshot. A failed fetch keeps the
previous snapshot and rolls the tracked case context back to it, so the same
values are submitted again on the next change.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .case_context import get_discriminant_fields, has_context_changed, update_case_context
from .merger import merge_rules
from .schema import CaseContext, FormDescriptor, RuleDelta
from .validation import CustomValidator, ValidationSchema, compile_schema

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500

RuleProvider = Callable[[CaseContext], Awaitable[RuleDelta]]


class RehydrationState(str, Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    FETCHING = "fetching"
    APPLYING = "applying"


@dataclass(frozen=True)
class RehydrationSnapshot:
    """Merged descriptor and its schema, published together."""

    sequence: int
    case_context: CaseContext
    descriptor: FormDescriptor
    schema: ValidationSchema
    delta: RuleDelta = field(default_factory=RuleDelta)


class RehydrationCoordinator:
    """
    Drive re-hydration of one resolved descriptor.

    Example:
        coordinator = RehydrationCoordinator(resolved, HttpRuleProvider(url))
        coordinator.on_values_changed({"country": "FR"})
        await coordinator.wait_idle()
        schema = coordinator.snapshot.schema
    """

    def __init__(
        self,
        resolved: FormDescriptor,
        rule_provider: RuleProvider,
        case_context: Mapping[str, Any] | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        custom_validators: Mapping[str, CustomValidator] | None = None,
        on_snapshot: Callable[[RehydrationSnapshot], None] | None = None,
        on_state_change: Callable[[RehydrationState], None] | None = None,
    ):
        """
        Initialize coordinator.

        Args:
            resolved: Resolved descriptor deltas are merged into
            rule_provider: Async callable CaseContext -> RuleDelta
            case_context: Initial case context (prefill)
            debounce_ms: Debounce window in milliseconds
            custom_validators: Validators for "custom" rules
            on_snapshot: Called with every applied snapshot
            on_state_change: Called on every state transition (loading indicators)

        Raises:
            SchemaCompileError: If the base descriptor does not compile
        """
        self._resolved = resolved
        self._rule_provider = rule_provider
        self._debounce = max(debounce_ms, 0) / 1000
        self._custom_validators = custom_validators
        self._on_snapshot = on_snapshot
        self._on_state_change = on_state_change
        self._discriminants = get_discriminant_fields(resolved)

        self._case_context: CaseContext = dict(case_context or {})
        self._sequence = 0
        self._state = RehydrationState.IDLE
        self._pending: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.last_error: Exception | None = None
        self.discarded = 0

        self._snapshot = RehydrationSnapshot(
            sequence=0,
            case_context=dict(self._case_context),
            descriptor=resolved.model_copy(deep=True),
            schema=compile_schema(resolved, custom_validators),
        )

    @property
    def state(self) -> RehydrationState:
        return self._state

    @property
    def sequence(self) -> int:
        """Latest issued request sequence number."""
        return self._sequence

    @property
    def snapshot(self) -> RehydrationSnapshot:
        """Latest applied snapshot."""
        return self._snapshot

    @property
    def case_context(self) -> CaseContext:
        return dict(self._case_context)

    def _set_state(self, state: RehydrationState) -> None:
        if state is self._state:
            return
        logger.debug(f"Re-hydration state {self._state.value} → {state.value}")
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def on_values_changed(self, form_values: Mapping[str, Any]) -> int | None:
        """
        Derive the next case context from form values and submit it if a
        discriminant changed.

        Returns:
            The issued sequence number, or None when nothing changed
        """
        updated = update_case_context(self._case_context, form_values, self._discriminants)
        if not has_context_changed(self._case_context, updated):
            return None
        return self.submit(updated)

    def submit(self, context: Mapping[str, Any]) -> int:
        """
        Submit a case context, restarting the debounce window.

        Must be called from a running event loop.
        """
        self._sequence += 1
        sequence = self._sequence
        self._case_context = dict(context)

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

        task = asyncio.create_task(self._run(sequence, dict(context)))
        self._pending = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self._set_state(RehydrationState.PENDING_DEBOUNCE)
        return sequence

    def _fail(self, error: Exception) -> None:
        # The context goes back to the applied one so the same values are submitted again
        self.last_error = error
        self._case_context = dict(self._snapshot.case_context)
        self._set_state(RehydrationState.IDLE)

    async def _run(self, sequence: int, context: CaseContext) -> None:
        try:
            await asyncio.sleep(self._debounce)
        except asyncio.CancelledError:
            logger.debug(f"Re-hydration #{sequence} superseded during debounce")
            return

        if self._pending is asyncio.current_task():
            self._pending = None
        if sequence != self._sequence:
            return

        self._set_state(RehydrationState.FETCHING)
        try:
            delta = await self._rule_provider(context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if sequence == self._sequence:
                logger.error(f"Rule fetch #{sequence} failed: {e}")
                self._fail(e)
            else:
                logger.warning(f"Stale rule fetch #{sequence} failed: {e}")
            return

        if sequence != self._sequence:
            self.discarded += 1
            logger.warning(
                f"Discarding stale rule response #{sequence} (latest is #{self._sequence})"
            )
            return

        self._set_state(RehydrationState.APPLYING)
        try:
            merged = merge_rules(self._resolved, delta)
            schema = compile_schema(merged, self._custom_validators)
        except Exception as e:
            logger.error(f"Applying rule response #{sequence} failed: {e}")
            self._fail(e)
            return

        self._snapshot = RehydrationSnapshot(
            sequence=sequence,
            case_context=context,
            descriptor=merged,
            schema=schema,
            delta=delta,
        )
        self.last_error = None
        logger.info(
            f"Applied rule response #{sequence}: {len(delta.blocks)} block rule(s), "
            f"{len(delta.fields)} field rule(s)"
        )
        self._set_state(RehydrationState.IDLE)
        if self._on_snapshot is not None:
            self._on_snapshot(self._snapshot)

    async def wait_idle(self) -> None:
        """Wait until every submitted request has been applied or discarded."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending and in-flight requests."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._pending = None
        self._case_context = dict(self._snapshot.case_context)
        self._set_state(RehydrationState.IDLE)
