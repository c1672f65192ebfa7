"""Location store orchestration and import helpers."""
