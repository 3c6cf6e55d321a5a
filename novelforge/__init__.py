"""
NovelForge: durable job pipeline for AI chapter generation and editorial passes.
"""

__version__ = "0.1.0"
