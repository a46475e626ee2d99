from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from fitbet.api.deps import get_advisory_oracle, get_clock, get_notifier, get_store
from fitbet.core.clock import Clock
from fitbet.core.errors import ValidationError
from fitbet.features.advisor.service import AdvisoryOracle
from fitbet.features.jobs.runner import run_tick
from fitbet.features.notifications.dispatch import dispatch_effects
from fitbet.features.notifications.notifier import Notifier
from fitbet.features.store.persistence import EntityStore

router = APIRouter()


class TickRequest(BaseModel):
    now: Optional[datetime] = None  # defaults to the server clock
    dispatch: bool = True


@router.post("/v1/jobs/tick")
def trigger_tick(
    req: Optional[TickRequest] = None,
    store: EntityStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    advisor: AdvisoryOracle = Depends(get_advisory_oracle),
):
    """Run every time-driven phase once, for an external scheduler."""
    req = req or TickRequest()
    now = req.now or clock.now()
    if now.tzinfo is None:
        raise ValidationError("now must include a timezone offset")

    report = run_tick(now, store, advisor=advisor)
    deliveries = dispatch_effects(notifier, report.effects) if req.dispatch else []
    body = report.to_dict()
    body["deliveries"] = {
        "sent": sum(1 for d in deliveries if d.ok),
        "failed": sum(1 for d in deliveries if not d.ok),
    }
    return body
