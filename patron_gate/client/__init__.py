"""
Session controller (page-side half).

Design goals:
- Explicit object with an explicit lifecycle; no page-global singleton.
- A session is authenticated only while `expires_at` is in the future.
- A failed callback never leaves a partial session behind.
"""
from patron_gate.client.config import ControllerConfig, load_controller_config
from patron_gate.client.controller import SessionController
from patron_gate.client.page import Element, Page
from patron_gate.client.relay_client import RelayClient
from patron_gate.client.session import Session, SessionUser
from patron_gate.client.storage import FileStorage, KeyValueStore, MemoryStorage

__all__ = [
    "ControllerConfig",
    "Element",
    "FileStorage",
    "KeyValueStore",
    "MemoryStorage",
    "Page",
    "RelayClient",
    "Session",
    "SessionController",
    "SessionUser",
    "load_controller_config",
]
