"""Trace oracles for Move bytecode execution."""

__version__ = "0.1.0"
