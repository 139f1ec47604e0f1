"""RFID card database with access log, RC522 reader driver, JSON WSGI API and access controller."""

__version__ = "0.1.0"
__all__ = ["__version__"]