"""modindex: ingest module versions and keep their metadata safe to overwrite."""

__version__ = "0.1.0"
