"""
PumpWatch.

Streaming token-launch feed client: ingests launches and trades over a
WebSocket, persists them in SQLite, and maintains a watch-set driven by
user-defined trigger groups.
"""

__version__ = "0.1.0"
