"""
shipwright - Release pipeline for multi-target native products.
"""

__version__ = "0.1.0"
