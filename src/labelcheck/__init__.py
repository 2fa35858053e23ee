"""
LabelCheck preflight – EU 1169/2011 food label compliance service.

The package is layered the same way end to end:
- foundations: config, logging, paths
- domain: report data model, canonical checks, rule lookup tables
- preflight: the pipeline stages and the service orchestrator
- api: the Starlette HTTP application
"""

__version__ = "0.3.0"

__all__ = [
    "config",
    "logging",
    "paths",
]
