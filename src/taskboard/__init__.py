"""
Taskboard: a kanban board with an optional workflow diagram.

The client core (stores, controllers, views) runs against either a local
JSON key-value file or the FastAPI server in :mod:`taskboard.api`.
"""

__version__ = "1.0.0"
