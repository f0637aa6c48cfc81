"""Job group scaling with scaling state backends, cluster leader election and WSGI endpoint handlers."""

__version__ = "0.1.0"