"""swipebatch - batches swipe predictions into single relay submissions."""

__version__ = "0.1.0"
