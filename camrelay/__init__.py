"""
camrelay - relay server for battery-powered camera devices.
"""

__version__ = "0.1.0"
