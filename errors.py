"""
Error taxonomy for the eligibility lookup service.

Every failure a lookup can hit is one of these classes.  The HTTP layer maps
them to JSON responses through a single error handler; the batch orchestrator
catches them per row and records the reason instead of aborting.

Callers decide what to do from the class alone:
  - ClientInputError       -> fix the input, don't retry
  - NoMatchError           -> accept the negative result
  - UpstreamTransportError -> safe to retry later
  - UpstreamFormatError    -> upstream sent something unreadable
"""


class EligibilityLookupError(Exception):
    """Base class for all lookup failures."""

    error_type = "lookup_error"
    status_code = 500


class ClientInputError(EligibilityLookupError):
    """Missing or malformed caller input (address, coordinates, email)."""

    error_type = "client_input"
    status_code = 400


class NoMatchError(EligibilityLookupError):
    """Address validation returned no usable candidate."""

    error_type = "no_match"
    status_code = 404


class MissingCoordinatesError(NoMatchError):
    """Validation matched the address but returned no usable coordinates."""


class UpstreamFormatError(EligibilityLookupError):
    """Overlay response could not be parsed as JSON by any strategy."""

    error_type = "upstream_format"
    status_code = 502


class UpstreamTransportError(EligibilityLookupError):
    """Network or HTTP failure talking to an upstream service."""

    error_type = "upstream_transport"
    status_code = 502


class ReferenceDataLoadError(EligibilityLookupError):
    """A required reference table could not be read.  Fatal at startup."""

    error_type = "reference_data"
    status_code = 500
