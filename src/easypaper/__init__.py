"""EasyPaper core — local snapshot history and supervised LaTeX builds."""

__version__ = "0.3.0"
