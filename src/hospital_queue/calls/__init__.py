"""
Call request sequencing.

NOTE:
This package __init__ MUST be lightweight.
Do NOT import SQLAlchemy models here, otherwise importing any submodule
(e.g. hospital_queue.calls.history) triggers ORM mapping at import time.
"""

__all__: list[str] = []
