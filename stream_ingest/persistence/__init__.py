from .sink import PersistenceSink, InMemorySink
from .sql_sink import SqlAlchemySink, build_tables
from .state_store import StateStore, InMemoryStateStore, RedisStateStore

__all__ = [
    "PersistenceSink",
    "InMemorySink",
    "SqlAlchemySink",
    "build_tables",
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
]
