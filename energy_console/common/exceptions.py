"""
Custom Exception Classes for the Energy Console

Hierarchical exception structure for error handling across services.
"""


class ConsoleError(Exception):
    """Base exception for all energy console errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(ConsoleError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Config Error: {message}", recoverable)


class ValidationError(ConsoleError):
    """Malformed operator input, rejected before any state changes"""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(f"Invalid {field or 'value'}: {message}", recoverable=True)


class DeviceError(ConsoleError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        device_name: str | None = None,
        recoverable: bool = True,
    ):
        self.device_id = device_id
        self.device_name = device_name
        super().__init__(message, recoverable)


class TransportError(DeviceError):
    """Serial port could not be opened, written or read"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        device_name: str | None = None,
        port: str | None = None,
    ):
        self.port = port
        super().__init__(message, device_id, device_name, recoverable=True)


class ProtocolTimeout(DeviceError):
    """A transport operation exceeded its deadline"""

    def __init__(
        self,
        label: str,
        timeout_ms: float,
        device_id: str | None = None,
        device_name: str | None = None,
    ):
        self.label = label
        self.timeout_ms = timeout_ms
        super().__init__(
            f"{label} timeout after {timeout_ms:.0f}ms",
            device_id,
            device_name,
            recoverable=True,
        )


class UnknownCommand(DeviceError):
    """Command is not in the device catalog; no I/O was performed"""

    def __init__(
        self,
        command: str,
        device_id: str | None = None,
        device_name: str | None = None,
    ):
        self.command = command
        super().__init__(
            f"'{command}' is not in the command catalog",
            device_id,
            device_name,
            recoverable=True,
        )


class SafetyBlocked(DeviceError):
    """Safe mode rejected a mutating command before dispatch"""

    def __init__(
        self,
        command: str,
        device_id: str | None = None,
        device_name: str | None = None,
    ):
        self.command = command
        super().__init__(
            f"Blocked by safe mode: {command}",
            device_id,
            device_name,
            recoverable=True,
        )


class DisconnectedError(DeviceError):
    """Device or its transport handle is missing"""

    def __init__(self, device_id: str, device_name: str | None = None):
        super().__init__(
            f"Device not connected: {device_name or device_id}",
            device_id,
            device_name,
            recoverable=True,
        )
