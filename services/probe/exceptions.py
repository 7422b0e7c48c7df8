class ProbeError(Exception):
    """Base class for probe failures."""


class CapabilityOpenError(ProbeError):
    """Send or receive path could not be acquired on the interface."""


class EncodingError(ProbeError):
    """Address or frame could not be serialized."""


class TransmissionError(ProbeError):
    """A single frame write failed after the send path was acquired."""


class DecodingError(ProbeError):
    """A DHCP reply matched the filter but its contents are malformed."""
