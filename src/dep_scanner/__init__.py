"""
dep-scanner: dependency graph construction and vulnerability reconciliation
for npm and PyPI projects.
"""

__version__ = "1.0.0"
