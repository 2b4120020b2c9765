# Infrastructure clients
from clients.memory_store import MemoryStore, RecordStore
