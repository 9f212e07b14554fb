"""Domain-specific errors for bluedeck."""


class BluedeckError(Exception):
    """Base error for bluedeck."""


class ConfigError(BluedeckError):
    """Raised when the configuration file cannot be read or fails validation."""


class DeviceSelectionError(BluedeckError):
    """Raised when a device hint cannot resolve a single target."""


class DecodeError(BluedeckError):
    """Raised when a signal payload or property value is malformed."""


class TransportError(BluedeckError):
    """Base transport error."""


class TransportCallError(TransportError):
    """Raised when a remote method call or property set fails."""

    def __init__(self, message: str, *, error_name: str | None = None) -> None:
        super().__init__(message)
        self.error_name = error_name


class RadioSwitchError(TransportError):
    """Raised when the OS radio kill switch cannot be toggled."""


class ConnectionLost(TransportError):
    """Raised when the bus connection drops. Fatal for the session."""


class AgentError(BluedeckError):
    """Base pairing agent error."""


class AgentNotReady(AgentError):
    """Raised when a credential request arrives with no UI channel attached."""


class AgentBusy(AgentError):
    """Raised when a credential request arrives while another is outstanding."""


class AgentStateError(AgentError):
    """Raised when an answer is submitted while no request is outstanding."""


class PairingRejected(AgentError):
    """Raised when the user declines a pairing confirmation."""
