"""Build, send and read ticket signing (TSS) requests."""

__version__ = "0.1.0"

__all__ = ["client", "components", "coprocessors", "request", "response"]