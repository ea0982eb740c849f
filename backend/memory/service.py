from __future__ import annotations

from .clinical_store import ClinicalStore
from .conversation_store import ConversationStore
from .database import SQLiteMemoryDB


class MemoryService:
    def __init__(self, db: SQLiteMemoryDB) -> None:
        self.db = db
        self.clinical = ClinicalStore(db)
        self.conversation = ConversationStore(db)
