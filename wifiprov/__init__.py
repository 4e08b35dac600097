"""Wi-Fi credential provisioning over Bluetooth Low Energy."""

__version__ = "0.1.0"
