from .base import Base
from .employee import Employee
from .site import Site
from .pair import Pair
from .session import PresenceSession, CheckIn
from .location import LocationSample
from .alert import AIAlert

# for wildcard imports
__all__ = [
    "Base",
    "Employee",
    "Site",
    "Pair",
    "PresenceSession",
    "CheckIn",
    "LocationSample",
    "AIAlert",
]
