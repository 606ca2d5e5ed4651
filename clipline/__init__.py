"""clipline - clip generation and metadata pipeline."""

__version__ = "0.1.0"
