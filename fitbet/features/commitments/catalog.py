"""Default commitment catalogue, seeded once into an empty table."""

from fitbet.core.logging import log_event
from fitbet.features.store.persistence import UnitOfWork

DEFAULT_COMMITMENTS = [
    # Nutrition
    {"name": "No sugar", "description": "Cut out added sugar and sweets", "category": "nutrition"},
    {"name": "Count calories", "description": "Keep a food diary and count calories every day", "category": "nutrition"},
    {"name": "No alcohol", "description": "No alcohol for the whole challenge", "category": "nutrition"},
    {"name": "Protein with every meal", "description": "Include a protein source in every main meal", "category": "nutrition"},
    # Exercise
    {"name": "Train 3+ times a week", "description": "At least 3 workouts a week, 45+ minutes each", "category": "exercise"},
    {"name": "10,000 steps a day", "description": "Walk at least 10,000 steps every day", "category": "exercise"},
    {"name": "Morning exercise", "description": "At least 15 minutes of exercise every morning", "category": "exercise"},
    # Lifestyle
    {"name": "Sleep 7+ hours", "description": "Sleep at least 7 hours every night", "category": "lifestyle"},
    {"name": "No fast food", "description": "Skip fast food and ready meals", "category": "lifestyle"},
    {"name": "Water 2+ litres", "description": "Drink at least 2 litres of water a day", "category": "lifestyle"},
]


def seed_commitments(uow: UnitOfWork) -> int:
    """Insert the default catalogue if no templates exist. Returns rows inserted."""
    if uow.commitments.list_active_templates():
        return 0
    inserted = uow.commitments.seed_templates(DEFAULT_COMMITMENTS)
    log_event("info", "Seeded commitment templates", event_type="commitments.seeded", extra={"count": inserted})
    return inserted
