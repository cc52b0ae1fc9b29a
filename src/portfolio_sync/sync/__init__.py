"""
Sync package: the stateful store driving load, refresh and credential changes.
"""

from .store import PortfolioStore, StoreState

__all__ = ['PortfolioStore', 'StoreState']
