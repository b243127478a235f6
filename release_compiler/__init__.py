"""Release Compiler - dependency-ordered package compilation for release bundles.

This package compiles the packages of software releases into a shared,
fingerprint-keyed artifact cache using disposable container environments.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
