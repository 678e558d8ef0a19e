"""
StemForge: frequency-domain audio analysis and stem separation.
"""
__version__ = "0.1.0"
