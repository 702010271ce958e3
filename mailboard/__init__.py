"""Mailboard - client-side sync core for a Gmail-backed inbox and kanban board."""

__version__ = "0.1.0"
