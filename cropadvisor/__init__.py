"""AI CropAdvisor backend: farm advisory API over an in-memory store."""

__version__ = "0.1.0"
