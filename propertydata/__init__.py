"""propertydata: property dataset import, maintenance and map queries."""

__version__ = "0.1.0"
