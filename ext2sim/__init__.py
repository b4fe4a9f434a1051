"""Simulated EXT2 file system kernel, library and shell over disk images."""

__version__ = "0.1.0"