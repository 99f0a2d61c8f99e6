"""
Assessment attempt engine: AI-generated question sets and timed attempts
"""

__version__ = "1.0.0"
