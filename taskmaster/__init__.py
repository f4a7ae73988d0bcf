"""Task Master AI core: configuration resolution and unified provider invocation"""

__version__ = "0.1.0"
