from .clinical_store import ClinicalStore, PatientNotFoundError
from .conversation_store import SENDER_BOT, SENDER_USER, ConversationStore
from .database import SQLiteMemoryDB
from .service import MemoryService

__all__ = [
    "SENDER_BOT",
    "SENDER_USER",
    "ClinicalStore",
    "ConversationStore",
    "MemoryService",
    "PatientNotFoundError",
    "SQLiteMemoryDB",
]
