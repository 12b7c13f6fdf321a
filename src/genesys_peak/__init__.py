"""Peak concurrent call analysis over the Genesys Cloud analytics API."""

__version__ = "0.1.0"
