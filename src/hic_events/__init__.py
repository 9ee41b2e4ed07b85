"""Heavy-ion event pipeline utilities.

The top-level executable is `run_events.py` (also installed as
`hic-run-events`).
"""

__all__ = [
    "config",
    "errors",
    "logging_utils",
    "manifest",
    "oversample",
    "records",
    "stages",
    "store",
    "orchestrator",
    "cli",
]

__version__ = "0.1.0"
