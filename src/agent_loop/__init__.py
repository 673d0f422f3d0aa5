"""Drive a CLI coding agent through single, looped, until-done, and interactive runs."""

__version__ = "0.1.0"
