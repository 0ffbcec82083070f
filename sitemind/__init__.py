"""
SiteMind agent command pipeline: natural-language admin commands, classified
by a language model, gated by human approval and recorded in an audit log.
"""

from .core.config import VERSION

__version__ = VERSION
