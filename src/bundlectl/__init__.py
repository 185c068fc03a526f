"""bundlectl — package a compiled web application into a deployable directory."""

__version__ = "0.4.0"
