"""
Command modules for the simplesocks CLI.

Split into logical groupings:
- server: serve command
- utils: init, decode and reply commands
"""

from .server import register_server_commands
from .utils import register_util_commands

__all__ = [
    "register_server_commands",
    "register_util_commands",
]
