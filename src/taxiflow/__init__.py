"""
taxiflow - out-of-core batch processing of large taxi trip files.
"""

__version__ = "1.0.0"
