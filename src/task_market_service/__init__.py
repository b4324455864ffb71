"""Task market service: fixed-price tasks, first-come acceptance, held payments."""

__version__ = "0.1.0"
