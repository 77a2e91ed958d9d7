"""
Package init for orderstream.server
"""

from orderstream.server.facade import ReadFacade
from orderstream.server.server import OrderServer

__all__ = ['ReadFacade', 'OrderServer']
