"""Social domain exports."""

from . import audit  # noqa: F401
