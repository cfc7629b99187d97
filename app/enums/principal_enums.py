"""
Identity-related enums for the application.
"""

from enum import Enum


class Role(str, Enum):
    USER = "user"
    COACH = "coach"
    MEAL_PROVIDER = "meal_provider"
    ADMIN = "admin"


class Plan(str, Enum):
    BASIC = "BASIC"
    PRO = "PRO"
