"""
Durable delivery queue — decouples product changes from the HTTP call.

- Producers ENQUEUE messages into pending storage and return immediately
- Workers CLAIM due messages, deliver them, then ack / reschedule / dead-letter
- Supports a directory-backed store (production) and an in-memory store (dev)
"""
