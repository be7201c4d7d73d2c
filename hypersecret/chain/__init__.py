"""
Network adapters for the HyperSecret pipeline.
"""
from .source import SourceChainAdapter
from .destination import DestinationClient

__all__ = ["SourceChainAdapter", "DestinationClient"]
