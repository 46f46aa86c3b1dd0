"""
MBBS - Meshtastic to Telegram Bridge

Keeps a long-lived session to a Meshtastic radio, tracks the nodes it
hears and how often, archives every packet, and relays text messages to
Telegram.
"""

__version__ = "0.1.0"
__author__ = "MBBS Project"
