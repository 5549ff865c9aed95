"""
Error kinds raised by the Tuya relay.
The route layer in main.py is the only place these get turned into responses.
"""


class TuyaError(Exception):
    """Base error; keeps the upstream message and code when Tuya sent one."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(TuyaError):
    """Required credentials are missing. Fatal at startup."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__("Missing environment variables: " + ", ".join(self.missing))


class AuthError(TuyaError):
    pass


class TransportError(TuyaError):
    pass


class DeviceCommandError(TuyaError):
    pass


class InvalidParameterError(TuyaError):
    """Caller input rejected before anything is signed or sent."""
