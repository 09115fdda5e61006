"""Start and control child processes through redirected standard streams."""

__version__ = "0.1.0"

__all__ = ["core", "drain", "errors", "options", "pathutil", "pipes", "process", "redirect", "run"]