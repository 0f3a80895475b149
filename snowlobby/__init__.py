"""Lobby server for a multiplayer snowball battle game: protocol, state, accounts and server."""

__version__ = "0.1.0"

__all__ = [
    "actions",
    "client",
    "database",
    "locks",
    "manager",
    "protocol",
    "queues",
    "server",
    "state",
]