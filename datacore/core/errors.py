class ServerCoreError(Exception):
    """Base class for errors raised by the server core."""


class ConfigError(ServerCoreError):
    """A required option is missing or an option value is invalid."""


class PlaceholderCredentialError(ConfigError):
    """DB credentials in the environment still hold template placeholders."""


class DriverAcquisitionError(ServerCoreError):
    """Driver construction or its connection test failed."""


class TelemetryDeliveryError(ServerCoreError):
    """Telemetry sink rejected or could not receive an event batch."""


class UnhandledProcessError(ServerCoreError):
    """Wraps an exception that escaped normal request handling."""
