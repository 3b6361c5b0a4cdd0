"""
User roles enumeration.

Defines the role types for the car rental marketplace.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform operator, confirms bookings and issues refunds
        OWNER: Lists cars on the marketplace
        CUSTOMER: Rents cars (default role)
        DRIVER: Offers chauffeur service through a driver profile
    """
    ADMIN = "ADMIN"
    OWNER = "OWNER"
    CUSTOMER = "CUSTOMER"
    DRIVER = "DRIVER"
