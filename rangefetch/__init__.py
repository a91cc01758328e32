"""
rangefetch: reliable downloads of a fixed-size blob from a server that
truncates its responses.
"""

__version__ = "0.1.0"
