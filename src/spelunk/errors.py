"""Error taxonomy for spelunk.

Primitives raise these; the probe, coordinator, deletion workflow and
navigator recover from them at their own seams so that nothing in normal
operation reaches the user as a traceback.
"""


class SpelunkError(Exception):
    """Base class for all spelunk errors."""


class ProbeTimeout(SpelunkError):
    """A size probe exceeded its budget or was cancelled."""


class Inaccessible(SpelunkError):
    """Permission or I/O error while reading a path."""


class NotFound(SpelunkError):
    """A path vanished between listing and action."""


class DeleteFailed(SpelunkError):
    """The delete primitive reported failure."""


class PrivilegeDenied(SpelunkError):
    """Privilege elevation was refused."""


class SearchUnavailable(SpelunkError):
    """The metadata size search is not available on this system."""
