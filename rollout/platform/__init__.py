"""Platform adapters (filesystem, subprocess)."""

from .files import atomic_write_text, write_json
from .process import ProcessError, run

__all__ = ["ProcessError", "atomic_write_text", "run", "write_json"]
