"""PlanQA: guarded natural-language questions over manufacturing planning data."""

__version__ = "0.1.0"
