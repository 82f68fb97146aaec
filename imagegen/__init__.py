"""tonynv-image package."""

__all__ = [
    "builder",
    "cache",
    "cli",
    "cloudconfig",
    "config",
    "constants",
    "customize",
    "deps",
    "exceptions",
    "harness",
    "models",
    "network",
    "utils",
]
