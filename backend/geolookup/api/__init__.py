"""API router subpackage for the geo lookup service.

Submodules:
    - nearby: Nearby search over the location store and the debug dump.
"""
