"""distriproxy - a reverse proxy in front of software package mirrors."""

__version__ = "0.1.0"
