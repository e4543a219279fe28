"""FlingIt - zero-click file relay between devices on the same network"""
__version__ = "1.0.0"
