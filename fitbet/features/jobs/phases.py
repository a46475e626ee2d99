"""Per-record isolation for tick phases: one failing record never stops the rest."""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Tuple

from fitbet.core.logging import log_event
from fitbet.models.effects import Effect


@dataclass
class PhaseResult:
    phase: str
    changed: List[int] = field(default_factory=list)
    effects: List[Effect] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


def run_isolated(
    phase: str,
    records: Iterable[Any],
    handler: Callable[[Any], Tuple[Any, List[Effect]]],
) -> PhaseResult:
    """
    Apply ``handler`` to each record.

    The handler returns (result, effects); a falsy result with no effects means
    the record's conditional update lost a race or had nothing to do.
    """
    outcome = PhaseResult(phase=phase)
    for record in records:
        try:
            result, emitted = handler(record)
        except Exception:
            log_event(
                "error",
                f"Tick phase {phase} failed for record {record.id}",
                challenge_id=getattr(record, "challenge_id", None),
                event_type=f"tick.{phase}",
                error_code="tick_record_failed",
                exc_info=True,
            )
            outcome.failed.append(record.id)
            continue
        if result or emitted:
            outcome.changed.append(record.id)
        outcome.effects.extend(emitted)
    return outcome
