from fastapi import APIRouter, Depends

from fitbet.api.deps import get_store
from fitbet.features.status.service import get_challenge_status
from fitbet.features.store.persistence import EntityStore

router = APIRouter()


@router.get("/v1/chats/{chat_id}/challenge")
def get_chat_challenge(chat_id: int, store: EntityStore = Depends(get_store)):
    """Status of the chat's ongoing challenge. 404 when there is none."""
    return get_challenge_status(store, chat_id)
