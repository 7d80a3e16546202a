# src/services/dispatch/__init__.py
"""
Dispatch Service: HTTP-интерфейс подсистемы водителей.
"""

__all__: list[str] = []
