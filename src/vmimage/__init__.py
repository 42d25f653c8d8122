"""
vmimage - VM image management over container backends

Fetches, publishes and inspects raw VM disk images wrapped in container
image layers, through interchangeable Docker, image-hub and mock backends.
"""

__version__ = "0.1.0"
