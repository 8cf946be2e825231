"""
devicetrust CLI - Device identity keys and SAS verification

Commands:
- devicetrust keys generate/show/bundle/one-time/verify-bundle - Key management
- devicetrust sas table/demo - Emoji table and loopback verification
- devicetrust version - Version information
"""

__version__ = "0.1.0"
