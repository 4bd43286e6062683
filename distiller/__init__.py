"""
Agent knowledge distiller.
Scores agent memories and migrates the best of them into a golden collection.
"""

__version__ = "1.0.0"
