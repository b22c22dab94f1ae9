from chat_stream_runtime.persistence.store import SnapshotStore, thread_messages_key

__all__ = [
    "SnapshotStore",
    "thread_messages_key",
]
