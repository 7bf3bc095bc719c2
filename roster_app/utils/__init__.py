# roster_app/utils/__init__.py
"""
Utility helpers
"""
