from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid run configuration (subset size, degenerate pool, group setup)."""


class DataError(ValueError):
    """Genotype or frequency data that cannot be scored as given."""
