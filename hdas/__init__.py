"""hdas: health data API server.

Receives health samples over HTTP, stores them, forwards them to a
time-series collector and purges them once forwarded.
"""

__version__ = "0.1.0"
