"""Version information for live-usb-installer."""

__version__ = "1.0.0"
