"""Talent agency chat API with natural-language analytics charts"""

__version__ = "0.1.0"
