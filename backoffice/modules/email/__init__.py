"""
Email delivery for manager alerts.
"""

from .service import email_service

__all__ = ['email_service']
