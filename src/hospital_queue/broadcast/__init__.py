"""
Broadcast channel package.

Keep package import side-effects to a minimum: do not import the hub or the
router here.
"""

__all__ = [
    "events",
    "interface",
    "hub",
]
