"""Integrated Library System (ILS) access."""
from portal.services.ils.exceptions import ILSException
from portal.services.ils.connection import ILSConnection, get_ils_connection

__all__ = ["ILSException", "ILSConnection", "get_ils_connection"]
