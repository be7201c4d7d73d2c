"""
Enclave entry point for the HyperSecret pipeline.
"""
from .app import run, main

__all__ = ["run", "main"]
