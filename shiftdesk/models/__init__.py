from shiftdesk.models.profile import Profile
from shiftdesk.models.time_entry import TimeEntry

__all__ = [
    "Profile",
    "TimeEntry",
]
