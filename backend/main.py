"""
Tuya Light Relay - Backend Server
FastAPI server that signs and forwards light commands to the Tuya cloud
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from config import DEFAULT_HOST, TuyaConfig, load_config
from errors import ConfigError, InvalidParameterError, TuyaError
from tuya_controller import DeviceGateway, LightController, resolve_preset
from tuya_session import SessionManager, TokenRefresher

logger = logging.getLogger(__name__)

Number = Union[int, float]

PUBLIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "public")

ENDPOINTS = [
    "GET  / - Web interface",
    "GET  /health - Server status",
    "POST /device/on - Turn device on",
    "POST /device/off - Turn device off",
    "POST /device/control - Custom command",
    "POST /device/color/hsv - Change HSV color",
    "POST /device/color/preset - Preset colors",
    "POST /device/brightness - Change brightness",
    "POST /device/temperature - Color temperature",
    "POST /device/mode - Change work mode",
    "GET  /device/info - Device info",
    "GET  /device/{deviceId}/info - Info for a specific device",
    "POST /token/refresh - Refresh token",
]


class ControlBody(BaseModel):
    command: Optional[str] = None
    value: Any = None
    deviceId: Optional[str] = None


class HsvBody(BaseModel):
    h: Optional[Number] = None
    s: Optional[Number] = None
    v: Optional[Number] = None


class PresetBody(BaseModel):
    color: Optional[str] = None


class BrightnessBody(BaseModel):
    brightness: Optional[Number] = None


class TemperatureBody(BaseModel):
    temperature: Optional[Number] = None


class ModeBody(BaseModel):
    mode: Optional[str] = None


class RelayFailure(Exception):
    """A TuyaError raised inside a route, tagged with the route's message"""

    def __init__(self, message, error: TuyaError):
        super().__init__(message)
        self.message = message
        self.error = error


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _iso(epoch):
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, timezone.utc).isoformat()


def create_app(
    settings: Optional[TuyaConfig] = None,
    session_manager: Optional[SessionManager] = None,
    http=None,
) -> FastAPI:
    """
    Build the relay app. Raises ConfigError when credentials are missing,
    before anything touches the network.
    """
    settings = settings or load_config()
    session_manager = session_manager or SessionManager(
        settings.host, settings.access_key, settings.secret_key, http=http
    )
    gateway = DeviceGateway(session_manager)
    light = LightController(gateway, settings.device_id)
    refresher = TokenRefresher(session_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Get the first token and run the periodic refresh until shutdown"""
        logger.info(f"[STARTUP] Tuya host: {settings.host}")
        try:
            await asyncio.to_thread(session_manager.ensure_token)
        except TuyaError as exc:
            logger.error(f"[STARTUP] Could not obtain initial token: {exc}")
            raise
        logger.info("[STARTUP] Initial token obtained")
        refresher.start()
        for line in ENDPOINTS:
            logger.info(f"[STARTUP]   {line}")
        try:
            yield
        finally:
            await refresher.stop()

    app = FastAPI(title="Tuya Light Relay", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager
    app.state.light = light
    app.state.refresher = refresher

    @app.exception_handler(InvalidParameterError)
    async def invalid_parameter_handler(request: Request, exc: InvalidParameterError):
        return JSONResponse(status_code=400, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Missing or mistyped JSON body fields"""
        problems = []
        for error in exc.errors():
            field = ".".join(str(x) for x in error["loc"][1:]) or "body"
            problems.append(f"{field}: {error['msg']}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Invalid parameters: " + "; ".join(problems)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"[ERR] Unhandled error: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error", "error": str(exc)},
        )

    @app.exception_handler(RelayFailure)
    async def relay_failure_handler(request: Request, exc: RelayFailure):
        logger.error(f"[ERR] {exc.message}: {exc.error}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": exc.message, "error": exc.error.message},
        )

    def run(message, operation, *args):
        try:
            return operation(*args)
        except InvalidParameterError:
            raise
        except TuyaError as exc:
            raise RelayFailure(message, exc) from exc

    @app.get("/")
    async def root():
        index = os.path.join(PUBLIC_DIR, "index.html")
        if os.path.isfile(index):
            return FileResponse(index)
        return {"status": "Tuya Light Relay running", "endpoints": ENDPOINTS}

    @app.get("/health")
    def health():
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "hasToken": session_manager.has_token,
            "tokenObtainedAt": _iso(session_manager.session.obtained_at),
            "tokenStale": session_manager.session.is_stale,
            "config": {
                "hasAccessKey": bool(settings.access_key),
                "hasSecretKey": bool(settings.secret_key),
                "hasDeviceId": bool(settings.device_id),
                "environment": settings.environment,
                "host": settings.host,
            },
        }

    @app.post("/device/on")
    def device_on():
        result = run("Error turning device on", light.turn_on)
        return {"success": True, "message": "Device turned on", "data": result}

    @app.post("/device/off")
    def device_off():
        result = run("Error turning device off", light.turn_off)
        return {"success": True, "message": "Device turned off", "data": result}

    @app.post("/device/control")
    def device_control(body: ControlBody):
        result = run("Error controlling device", light.control, body.command, body.value, body.deviceId)
        return {"success": True, "message": "Command sent successfully", "data": result}

    @app.post("/device/color/hsv")
    def device_color_hsv(body: HsvBody):
        result = run("Error changing HSV color", light.set_hsv, body.h, body.s, body.v)
        return {
            "success": True,
            "message": "HSV color changed successfully",
            "data": result,
            "color": {"h": body.h, "s": body.s, "v": body.v},
        }

    @app.post("/device/color/preset")
    def device_color_preset(body: PresetBody):
        color = resolve_preset(body.color)
        result = run("Error applying preset color", light.set_preset, body.color)
        return {
            "success": True,
            "message": f"Color {body.color} applied successfully",
            "data": result,
            "color": color,
        }

    @app.post("/device/brightness")
    def device_brightness(body: BrightnessBody):
        result = run("Error changing brightness", light.set_brightness, body.brightness)
        return {
            "success": True,
            "message": "Brightness changed successfully",
            "data": result,
            "brightness": body.brightness,
        }

    @app.post("/device/temperature")
    def device_temperature(body: TemperatureBody):
        result = run("Error changing color temperature", light.set_temperature, body.temperature)
        return {
            "success": True,
            "message": "Color temperature changed successfully",
            "data": result,
            "temperature": body.temperature,
        }

    @app.post("/device/mode")
    def device_mode(body: ModeBody):
        result = run("Error changing mode", light.set_mode, body.mode)
        return {"success": True, "message": "Mode changed successfully", "data": result, "mode": body.mode}

    @app.get("/device/info")
    def device_info():
        result = run("Error getting device information", light.info)
        return {"success": True, "message": "Information retrieved successfully", "data": result}

    @app.get("/device/{device_id}/info")
    def device_info_by_id(device_id: str):
        result = run("Error getting device information", light.info, device_id)
        return {"success": True, "message": "Information retrieved successfully", "data": result}

    @app.post("/token/refresh")
    def token_refresh():
        run("Error refreshing token", session_manager.refresh_token)
        return {"success": True, "message": "Token refreshed successfully"}

    return app


def main(environ=None):
    """Validate config, then serve. Exits with status 1 before any network call when credentials are missing."""
    import uvicorn

    if environ is None:
        load_dotenv()
        environ = os.environ
    configure_logging(environ.get("LOG_LEVEL", "INFO"))

    try:
        settings = load_config(environ)
    except ConfigError as exc:
        logger.error("[CONFIG] Missing environment variables:")
        for name in exc.missing:
            logger.error(f"[CONFIG]    - {name}")
        logger.error("[CONFIG] Create a .env file with TUYA_ACCESS_KEY, TUYA_SECRET_KEY, TUYA_DEVICE_ID")
        logger.error(f"[CONFIG] and optionally TUYA_HOST (default {DEFAULT_HOST})")
        raise SystemExit(1)

    logger.info("[CONFIG] Configuration validated")
    print("\n" + "=" * 50)
    print("    Tuya Light Relay - Backend Server")
    print("=" * 50 + "\n")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
