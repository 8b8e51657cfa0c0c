"""HTTP layer for duewatch (FastAPI)."""
