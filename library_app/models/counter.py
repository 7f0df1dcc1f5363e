# library_app/models/counter.py
from beanie import Document

class SequenceCounter(Document):
    """Holds the last issued value for a named sequence (e.g. loan transaction numbers)."""
    # The sequence name is stored as _id; only accessed through the raw collection
    value: int = 0

    class Settings:
        name = "sequence_counters"
