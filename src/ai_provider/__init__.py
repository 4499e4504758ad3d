"""Provider orchestration for interchangeable AI command-line backends."""

__version__ = "0.1.0"
