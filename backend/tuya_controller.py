"""
Tuya Smart Light Controller
Signed device calls against the Tuya cloud and range-checked light commands
"""

import logging
import math
from numbers import Real

import requests

from errors import DeviceCommandError, InvalidParameterError, TransportError
from tuya_session import REQUEST_TIMEOUT, SessionManager
from tuya_signer import serialize_body, sign_request

logger = logging.getLogger(__name__)

# Color presets (HSV, s and v on the 0-1000 scale Tuya uses)
PRESET_COLORS = {
    "red": {"h": 0, "s": 1000, "v": 1000},
    "green": {"h": 120, "s": 1000, "v": 1000},
    "blue": {"h": 240, "s": 1000, "v": 1000},
    "yellow": {"h": 60, "s": 1000, "v": 1000},
    "purple": {"h": 300, "s": 1000, "v": 1000},
    "cyan": {"h": 180, "s": 1000, "v": 1000},
    "orange": {"h": 30, "s": 1000, "v": 1000},
    "pink": {"h": 330, "s": 700, "v": 1000},
    "white": {"h": 0, "s": 0, "v": 1000},
}

WORK_MODES = ("white", "colour", "scene", "music")


class DeviceGateway:
    """Executes one signed call per operation against the device endpoints"""

    def __init__(self, session_manager: SessionManager, http=None):
        self.session_manager = session_manager
        self.access_key = session_manager.access_key
        self.secret_key = session_manager.secret_key
        self.host = session_manager.host
        self.http = http or session_manager.http

    def send_command(self, device_id, code, value):
        """Send a single {code, value} command to a device"""
        body = {"commands": [{"code": code, "value": value}]}
        return self._request("POST", f"/v1.0/devices/{device_id}/commands", body)

    def query_device(self, device_id):
        """Get device information"""
        return self._request("GET", f"/v1.0/devices/{device_id}")

    def _request(self, method, path, body=None):
        token = self.session_manager.ensure_token()

        data = serialize_body(body)
        signed = sign_request(
            self.access_key,
            self.secret_key,
            method,
            path,
            body=data,
            access_token=token,
        )
        headers = signed.headers()
        if body is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = self.http.request(
                method,
                self.host + signed.path,
                headers=headers,
                data=data.encode("utf-8") if body is not None else None,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as exc:
            logger.error(f"[TUYA] {method} {path} failed: {exc}")
            raise TransportError(f"request api failed: {exc}") from exc
        except ValueError as exc:
            logger.error(f"[TUYA] {method} {path} returned invalid JSON")
            raise TransportError("request api failed: invalid JSON response") from exc

        if not result or not result.get("success"):
            msg = (result or {}).get("msg")
            logger.error(f"[TUYA] {method} {path} rejected: {msg}")
            raise DeviceCommandError(f"request api failed: {msg}", code=(result or {}).get("code"))

        return result


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def _number_in_range(name, value, low, high):
    if value is None:
        raise InvalidParameterError(f"Parameter {name} ({low}-{high}) is required")
    if isinstance(value, bool) or not isinstance(value, Real) or math.isnan(value):
        raise InvalidParameterError(f"Parameter {name} must be a number")
    if value < low or value > high:
        raise InvalidParameterError(f"{name} out of range: must be between {low} and {high}")
    return _round_half_up(value)


class LightController:
    """High-level controller for the configured color light"""

    def __init__(self, gateway: DeviceGateway, device_id):
        self.gateway = gateway
        self.device_id = device_id

    def turn_on(self):
        return self._send("switch_led", True)

    def turn_off(self):
        return self._send("switch_led", False)

    def set_brightness(self, brightness):
        """Brightness 10-1000 (bright_value_v2)"""
        value = _number_in_range("brightness", brightness, 10, 1000)
        return self._send("bright_value_v2", value)

    def set_temperature(self, temperature):
        """White temperature 0 (warm) - 1000 (cool)"""
        value = _number_in_range("temperature", temperature, 0, 1000)
        return self._send("temp_value_v2", value)

    def set_hsv(self, h, s, v):
        if h is None or s is None or v is None:
            raise InvalidParameterError("Parameters h (0-360), s (0-1000), v (0-1000) are required")
        color = {
            "h": _number_in_range("h", h, 0, 360),
            "s": _number_in_range("s", s, 0, 1000),
            "v": _number_in_range("v", v, 0, 1000),
        }
        return self._send("colour_data_v2", color)

    def set_preset(self, color_name):
        """Apply a named color, same command as the equivalent set_hsv call"""
        color = resolve_preset(color_name)
        return self.set_hsv(color["h"], color["s"], color["v"])

    def set_mode(self, mode):
        if not mode:
            raise InvalidParameterError(f"Parameter mode is required ({', '.join(WORK_MODES)})")
        if mode not in WORK_MODES:
            raise InvalidParameterError(f"Invalid mode. Valid modes: {', '.join(WORK_MODES)}")
        return self._send("work_mode", mode)

    def control(self, code, value, device_id=None):
        """Send an arbitrary command, optionally to another device"""
        if not code or value is None:
            raise InvalidParameterError("Missing parameters: command and value are required")
        return self._send(code, value, device_id)

    def info(self, device_id=None):
        return self.gateway.query_device(device_id or self.device_id)

    def _send(self, code, value, device_id=None):
        target = device_id or self.device_id
        logger.info(f"[DEVICE] {target}: {code} = {value}")
        return self.gateway.send_command(target, code, value)


def resolve_preset(color_name):
    if not isinstance(color_name, str) or color_name.lower() not in PRESET_COLORS:
        raise InvalidParameterError(
            f"Invalid color. Available colors: {', '.join(PRESET_COLORS)}"
        )
    return dict(PRESET_COLORS[color_name.lower()])
