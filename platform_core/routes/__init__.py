"""
Flask Blueprints exposing observability state over HTTP.
"""

from .observability_bp import observability_bp

__all__ = ["observability_bp"]
