"""nlquery: ask a database a question in natural language."""

__version__ = "0.1.0"
