"""Cluster administration: members, statistics, health and auth."""

from .auth_api import AuthApi
from .members_api import MembersApi
from .stats_api import StatsApi

__all__ = [
    "AuthApi",
    "MembersApi",
    "StatsApi",
]
