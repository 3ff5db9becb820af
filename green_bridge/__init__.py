"""
green-bridge: a Green API (WhatsApp) bridge speaking line-delimited JSON
over stdin/stdout.
"""

__version__ = "0.1.0"
