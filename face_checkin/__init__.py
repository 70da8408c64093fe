from .debouncer import AttendanceDebouncer, resolve_status
from .matcher import Gallery, build_gallery, match
from .quality import evaluate
from .stability import Action, StabilityTracker

__all__ = [
    "Action",
    "AttendanceDebouncer",
    "Gallery",
    "StabilityTracker",
    "build_gallery",
    "evaluate",
    "match",
    "resolve_status",
]
