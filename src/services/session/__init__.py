"""
生成会话管理
"""

from .backend import GenerationBackend, create_backend, load_backend_factory
from .coordinator import SessionCoordinator

__all__ = [
    "GenerationBackend",
    "SessionCoordinator",
    "create_backend",
    "load_backend_factory",
]
