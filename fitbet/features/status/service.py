"""Read model for a chat's ongoing challenge."""

from collections import Counter
from typing import Optional

from fitbet.core.errors import NotFoundError
from fitbet.features.store.persistence import EntityStore


def get_challenge_status(store: EntityStore, chat_id: int) -> dict:
    """
    Summarize the chat's non-terminal challenge.

    Raises:
        NotFoundError: the chat has no ongoing challenge
    """
    with store.transaction() as uow:
        challenge = uow.challenges.find_open_for_chat(chat_id)
        if challenge is None:
            raise NotFoundError(f"No ongoing challenge in chat {chat_id}")
        participants = uow.participants.list_for_challenge(challenge.id)
        payments = uow.payments.status_counts(challenge.id)
        window = uow.windows.find_open_for_challenge(challenge.id)
        windows = uow.windows.list_for_challenge(challenge.id)
        election = uow.elections.get_for_challenge(challenge.id)
        submitted = uow.checkins.participant_ids_for_window(window.id) if window else set()

    by_status = Counter(p.status for p in participants)
    open_window: Optional[dict] = None
    if window is not None:
        open_window = {
            "id": window.id,
            "number": window.window_number,
            "opens_at": window.opens_at.isoformat(),
            "closes_at": window.closes_at.isoformat(),
            "submitted": len(submitted),
        }

    return {
        "challenge_id": challenge.id,
        "chat_id": challenge.chat_id,
        "chat_title": challenge.chat_title,
        "status": challenge.status,
        "stake_amount": challenge.stake_amount,
        "duration": {"value": challenge.duration_value, "unit": challenge.duration_unit},
        "discipline_threshold": challenge.discipline_threshold,
        "max_skips": challenge.max_skips,
        "bank_holder": (
            {"user_id": challenge.bank_holder_id, "username": challenge.bank_holder_username}
            if challenge.bank_holder_id is not None
            else None
        ),
        "election": {"id": election.id, "status": election.status} if election else None,
        "started_at": challenge.started_at.isoformat() if challenge.started_at else None,
        "ends_at": challenge.ends_at.isoformat() if challenge.ends_at else None,
        "participants": {
            "total": len(participants),
            "by_status": dict(by_status),
            "items": [
                {
                    "participant_id": p.id,
                    "user_id": p.user_id,
                    "name": p.display_name,
                    "status": p.status,
                    "completed_checkins": p.completed_checkins,
                    "skipped_checkins": p.skipped_checkins,
                }
                for p in participants
            ],
        },
        "payments": {
            "confirmed": payments.get("confirmed", 0),
            "marked_paid": payments.get("marked_paid", 0),
            "pending": payments.get("pending", 0),
        },
        "windows_total": len(windows),
        "open_window": open_window,
    }
