"""
Device Trust Core

Identity key management, canonical signing and interactive SAS device
verification for end-to-end encrypted chat clients.
"""

__version__ = "0.1.0"
