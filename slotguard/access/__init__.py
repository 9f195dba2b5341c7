"""
Slot-based authorization engine.

Import the pieces from their modules (``catalog``, ``merge``, ``resolver``,
``cache``, ``guard``, ``engine``); the package itself stays import-light so
that ``slotguard.schemas`` can depend on the catalog.
"""
