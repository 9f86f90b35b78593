from .engine import AlertEngine  # noqa: F401

__all__ = ["AlertEngine"]
