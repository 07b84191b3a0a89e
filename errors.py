"""Failure taxonomy for the lily controller and display.

None of these stop the controller loop; they only degrade what it can do
(no broadcast, no durability, default sensor value).
"""


class LilyError(Exception):
    """Base class for lily controller errors."""


class SensorUnavailable(LilyError):
    """Sensor read failed or returned nothing; the level defaults to 0."""


class TransportUnavailable(LilyError):
    """No usable broadcast endpoint could be opened."""


class PersistenceError(LilyError):
    """State blob could not be read or written."""


class ActuatorFault(LilyError):
    """Pulse call raised. Only the confirm/retry loop can tell if it worked."""
