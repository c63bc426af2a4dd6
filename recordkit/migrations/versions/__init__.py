"""
Migration units, one per module.

Each module defines ``up(store)``, ``down(store)`` and a module-level
``MIGRATION`` whose ``sequence`` fixes its position in the run. Every ``up``
checks the live schema/data before changing anything, so running it twice is
harmless.
"""
