"""clonecast – zero-shot voice cloning and podcast generation from the command line."""

__version__ = "0.1.0"
