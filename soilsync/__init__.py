"""SoilSync: photograph soil, get crop and logistics guidance back."""

__version__ = "0.1.0"
