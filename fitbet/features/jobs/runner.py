"""
Time-driven job runner.

``run_tick(now, store)`` advances every time-based transition and returns the
resulting effects; it owns no timer. The worker, the ops API, or a test decide
when to call it and whether to dispatch the effects.

Phase order: open -> reminder -> close -> finale -> election timeout -> onboarding timeout.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from fitbet.core.clock import FixedClock
from fitbet.core.config import Settings
from fitbet.core.logging import log_event
from fitbet.features.advisor.service import AdvisoryOracle
from fitbet.features.checkins.service import CheckinService
from fitbet.features.elections.service import ElectionService
from fitbet.features.jobs.phases import PhaseResult
from fitbet.features.lifecycle.service import LifecycleService
from fitbet.features.notifications.dispatch import dispatch_effects
from fitbet.features.notifications.notifier import Notifier
from fitbet.features.store.persistence import EntityStore
from fitbet.models.effects import DeliveryResult, Effect

PHASE_ORDER = ("open", "reminder", "close", "finale", "election_timeout", "onboarding_timeout")


@dataclass
class TickReport:
    now: datetime
    phases: List[PhaseResult] = field(default_factory=list)

    @property
    def effects(self) -> List[Effect]:
        return [effect for phase in self.phases for effect in phase.effects]

    @property
    def failures(self) -> int:
        return sum(len(phase.failed) for phase in self.phases)

    def phase(self, name: str) -> PhaseResult:
        for result in self.phases:
            if result.phase == name:
                return result
        raise KeyError(name)

    def to_dict(self) -> dict:
        return {
            "now": self.now.isoformat(),
            "phases": {
                p.phase: {"changed": p.changed, "failed": p.failed, "effects": len(p.effects)}
                for p in self.phases
            },
            "effects": [e.to_dict() for e in self.effects],
        }


def run_tick(
    now: datetime,
    store: EntityStore,
    *,
    advisor: Optional[AdvisoryOracle] = None,
    config: Optional[Settings] = None,
) -> TickReport:
    clock = FixedClock(now)
    elections = ElectionService(store, clock, config)
    lifecycle = LifecycleService(store, clock, advisor, config, elections)
    checkins = CheckinService(store, clock, advisor, config)

    phases = {
        "open": checkins.open_due_windows,
        "reminder": checkins.send_due_reminders,
        "close": checkins.close_due_windows,
        "finale": lifecycle.finalize_due_challenges,
        "election_timeout": elections.finalize_stale_elections,
        "onboarding_timeout": lifecycle.drop_stale_onboarding,
    }

    report = TickReport(now=now)
    for name in PHASE_ORDER:
        try:
            report.phases.append(phases[name]())
        except Exception:
            # Selecting the phase's records failed; later phases still run
            log_event("error", f"Tick phase {name} failed", event_type=f"tick.{name}",
                      error_code="tick_phase_failed", exc_info=True)
            report.phases.append(PhaseResult(phase=name))

    changed = {p.phase: len(p.changed) for p in report.phases if p.changed}
    if changed or report.failures:
        log_event("info", "Tick completed", event_type="tick.completed",
                  extra={"changed": changed, "failures": report.failures})
    return report


def run_tick_and_dispatch(
    now: datetime,
    store: EntityStore,
    notifier: Notifier,
    *,
    advisor: Optional[AdvisoryOracle] = None,
    config: Optional[Settings] = None,
) -> Tuple[TickReport, List[DeliveryResult]]:
    report = run_tick(now, store, advisor=advisor, config=config)
    return report, dispatch_effects(notifier, report.effects)
