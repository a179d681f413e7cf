"""API module for the Payfast ITN receiver."""

from .itn_api import create_app, ITNAPI

__all__ = ['create_app', 'ITNAPI']
