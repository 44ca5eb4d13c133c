"""Image Toolkit: upload, transform and stream back images over HTTP."""

__version__ = "1.0.0"
