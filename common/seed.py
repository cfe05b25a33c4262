"""
Demo fixtures: the plantation blocks, equipment and crew the field app
ships with. Loaded at startup when DISPATCH_SEED_DEMO_DATA is set.
"""

import logging

from common.models import Area, Asset, Worker
from common.store import EntityStore


logger = logging.getLogger(__name__)

DEMO_AREAS = [
    ("Block A", "Northern section - Apple trees"),
    ("Block B", "Eastern section - Irrigation zone"),
    ("Block C", "Southern section - Mixed crops"),
    ("Block D", "Western section - New plantation"),
]

DEMO_ASSETS = [
    ("Pruning Shears Set", "Tool"),
    ("Sprayer Machine", "Equipment"),
    ("Fertilizer Spreader", "Equipment"),
    ("Tractor", "Vehicle"),
    ("Harvest Basket", "Tool"),
    ("Irrigation Controller", "Equipment"),
]

# name, expertise, availability, years of experience
DEMO_WORKERS = [
    ("Ahmad", ["Harvesting", "Pruning"], "Available", 5),
    ("Faiz", ["Harvesting"], "Available", 3),
    ("Siti", ["Spraying", "Manuring"], "Busy", 4),
    ("Ali", ["Weeding", "Pest & Disease"], "Available", 2),
    ("Hana", ["Mechanisation Fleet"], "Available", 6),
    ("Maya", ["Pruning", "Harvesting"], "Available", 4),
    ("Zul", ["Manuring"], "Available", 3),
    ("Imran", ["Weeding"], "Available", 3),
    ("Fauzi", ["Pest & Disease"], "Available", 6),
    ("Razak", ["General Work"], "Available", 7),
    ("Aisyah", ["General Work"], "Available", 4),
]


def seed_demo_data(store: EntityStore) -> int:
    """
    Insert demo areas, assets and workers unless records of that kind exist.

    Returns:
        Number of records created
    """
    created = 0
    if not store.select(Area):
        for name, description in DEMO_AREAS:
            store.create(Area(name=name, description=description))
            created += 1
    if not store.select(Asset):
        for name, asset_type in DEMO_ASSETS:
            store.create(Asset(name=name, type=asset_type))
            created += 1
    if not store.select(Worker):
        for name, expertise, availability, experience in DEMO_WORKERS:
            store.create(Worker(name=name, expertise=expertise, availability=availability, experience=experience))
            created += 1
    logger.info(f"Seeded {created} demo record(s)")
    return created
