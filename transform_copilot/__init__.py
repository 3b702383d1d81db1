"""Transform Copilot: a SQL transformation tool for cloud data warehouses."""

__version__ = "0.4.0"
