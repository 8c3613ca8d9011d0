"""Payment wallet rules, walkthroughs and small WSGI services for payment workflows."""

__version__ = "0.1.0"