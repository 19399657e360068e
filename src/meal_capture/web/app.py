"""FastAPI web application for meal capture.

Exposes one CaptureController over HTTP: enter/exit/retry camera mode,
torch and zoom controls, snapshot capture, a file upload path and an
MJPEG viewfinder stream. Application shutdown is the "unmount" signal
that releases the camera.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import numpy as np
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from meal_capture.analysis import AnalysisConsumer, AnalysisError, submit_snapshot
from meal_capture.devices import (
    CapabilityApplyError,
    CaptureController,
    CaptureFailedError,
    CaptureStateError,
    Snapshot,
    UploadError,
    snapshot_from_bytes,
)
from meal_capture.drivers.config import DriverConfig, DriverFactory, get_factory
from meal_capture.drivers.media import MediaDeviceGateway
from meal_capture.observability import CaptureStats, get_logger
from meal_capture.utils.image import CV2ImageEncoder, ImageEncoder

logger = get_logger(__name__)

# Defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_PREVIEW_FPS = 15
PREVIEW_JPEG_QUALITY = 80

# Placeholder frame shown while the camera is not streaming
PLACEHOLDER_WIDTH = 640
PLACEHOLDER_HEIGHT = 480

_MJPEG_MEDIA_TYPE = "multipart/x-mixed-replace; boundary=frame"


def _error(status_code: int, error: str, reason: str) -> JSONResponse:
    """Build the JSON error body used by every endpoint."""
    return JSONResponse({"error": error, "reason": reason}, status_code=status_code)


def _status(controller: CaptureController) -> dict[str, Any]:
    return controller.session.to_dict()


def _mjpeg_chunk(jpeg: bytes) -> bytes:
    return b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + jpeg + b"\r\n"


def _placeholder_frame(encoder: ImageEncoder, text: str) -> bytes:
    """Render a black frame with a status line, encoded as JPEG."""
    img = np.zeros((PLACEHOLDER_HEIGHT, PLACEHOLDER_WIDTH, 3), dtype=np.uint8)
    encoder.put_text(img, text[:48], (20, PLACEHOLDER_HEIGHT // 2), 0.8, (200, 200, 200), 2)
    return encoder.encode_jpeg(img, PREVIEW_JPEG_QUALITY)


async def _generate_preview_stream(
    controller: CaptureController,
    encoder: ImageEncoder,
    fps: int = DEFAULT_PREVIEW_FPS,
    max_frames: int | None = None,
) -> AsyncGenerator[bytes, None]:
    """Yield the viewfinder as MJPEG multipart chunks.

    While the controller is streaming each chunk is the latest camera
    frame; otherwise a placeholder frame shows the current state (or the
    failure reason) so the viewer never freezes.

    Business context: The viewfinder is how the user frames the plate
    before tapping capture. A placeholder that says "denied" or "camera
    error" tells them why there is no picture.

    Args:
        controller: Controller whose stream is previewed.
        encoder: JPEG encoder for frames and placeholders.
        fps: Target frame rate.
        max_frames: Stop after this many chunks (None = until the client
            disconnects).

    Yields:
        ``--frame`` multipart chunks with image/jpeg bodies.

    Example:
        >>> StreamingResponse(
        ...     _generate_preview_stream(controller, encoder),
        ...     media_type="multipart/x-mixed-replace; boundary=frame",
        ... )
    """
    interval = 1.0 / fps
    sent = 0
    while max_frames is None or sent < max_frames:
        frame = None
        try:
            frame = controller.read_preview_frame()
        except Exception as e:
            logger.warning("Preview frame read failed", error=str(e))

        if frame is not None and frame.size > 0:
            jpeg = encoder.encode_jpeg(frame, PREVIEW_JPEG_QUALITY)
        else:
            text = controller.last_error or f"Camera {controller.state.value}"
            jpeg = _placeholder_frame(encoder, text)

        yield _mjpeg_chunk(jpeg)
        sent += 1
        if max_frames is None or sent < max_frames:
            await asyncio.sleep(interval)


def create_app(
    gateway: MediaDeviceGateway | None = None,
    config: DriverConfig | None = None,
    analyzer: AnalysisConsumer | None = None,
    encoder: ImageEncoder | None = None,
) -> FastAPI:
    """Create the meal capture application.

    Args:
        gateway: Media gateway to use. Created from the driver
            configuration when None.
        config: Driver configuration. The global factory's configuration
            is used when None.
        analyzer: Food analysis service for ``analyze=true`` requests.
        encoder: Image encoder. Defaults to CV2ImageEncoder.

    Returns:
        FastAPI application. The controller is available as
        ``app.state.controller``.

    Example:
        >>> app = create_app(DigitalTwinMediaGateway())
        >>> uvicorn.run(app, host="127.0.0.1", port=8080)
    """
    factory = DriverFactory(config) if config else get_factory()
    gateway = gateway or factory.create_media_gateway()
    encoder = encoder or CV2ImageEncoder()
    stats = CaptureStats()
    controller = factory.create_controller(gateway, stats=stats)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting meal capture service", mode=factory.config.mode.value)
        yield
        logger.info("Shutting down meal capture service")
        controller.close()
        close_gateway = getattr(gateway, "close", None)
        if callable(close_gateway):
            close_gateway()

    app = FastAPI(
        title="Meal Capture",
        description="Camera capture service for meal logging",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.gateway = gateway
    app.state.encoder = encoder
    app.state.analyzer = analyzer
    app.state.stats = stats

    async def _respond_with_snapshot(snapshot: Snapshot, analyze: bool) -> JSONResponse:
        body: dict[str, Any] = {"snapshot": snapshot.to_dict()}
        if analyze:
            if analyzer is None:
                return _error(503, "analysis_unavailable", "No analysis service configured")
            try:
                result = await submit_snapshot(analyzer, snapshot)
            except AnalysisError as e:
                logger.warning("Analysis failed", error=str(e))
                return _error(502, "analysis_failed", str(e))
            body["analysis"] = result.to_dict()
        return JSONResponse(body)

    @app.get("/api/camera")
    async def api_camera_status() -> JSONResponse:
        """Return session state and capture statistics."""
        return JSONResponse({**_status(controller), "stats": stats.to_dict()})

    @app.post("/api/camera/enter")
    async def api_enter_camera() -> JSONResponse:
        """Enter camera mode and wait until the attempt settles.

        The response carries the settled state: streaming, denied or
        errored (with last_error).
        """
        try:
            await controller.enter_camera_mode()
        except CaptureStateError as e:
            return _error(409, "invalid_state", e.reason)
        await controller.wait_until_settled()
        return JSONResponse(_status(controller))

    @app.post("/api/camera/retry")
    async def api_retry_camera() -> JSONResponse:
        """Retry after a denial or error."""
        try:
            await controller.retry()
        except CaptureStateError as e:
            return _error(409, "invalid_state", e.reason)
        await controller.wait_until_settled()
        return JSONResponse(_status(controller))

    @app.post("/api/camera/exit")
    async def api_exit_camera() -> JSONResponse:
        """Leave camera mode and release the device."""
        controller.exit_camera_mode()
        return JSONResponse(_status(controller))

    @app.post("/api/camera/flash")
    async def api_toggle_flash() -> JSONResponse:
        """Toggle the torch. ``flash_on`` is null when there is no torch."""
        try:
            flash_on = controller.toggle_flash()
        except CapabilityApplyError as e:
            return _error(422, "capability_apply_failed", e.reason)
        return JSONResponse({"flash_on": flash_on, **_status(controller)})

    @app.post("/api/camera/zoom")
    async def api_set_zoom(value: float = Query(..., description="Zoom factor")) -> JSONResponse:
        """Set zoom, clamped to the device range. ``zoom`` is null when
        zoom is unsupported.
        """
        try:
            zoom = controller.set_zoom(value)
        except ValueError as e:
            return _error(422, "invalid_zoom", str(e))
        except CapabilityApplyError as e:
            return _error(422, "capability_apply_failed", e.reason)
        return JSONResponse({"zoom": zoom, **_status(controller)})

    @app.post("/api/camera/capture")
    async def api_capture(analyze: bool = False) -> JSONResponse:
        """Capture a JPEG snapshot, optionally sending it for analysis."""
        try:
            snapshot = controller.capture()
        except CaptureFailedError as e:
            return _error(409, "capture_failed", e.reason)
        return await _respond_with_snapshot(snapshot, analyze)

    @app.post("/api/upload")
    async def api_upload(
        request: Request,
        analyze: bool = False,
        filename: str | None = None,
    ) -> JSONResponse:
        """Turn an uploaded image (raw request body) into a snapshot.

        The body is the image file itself; Content-Type names its MIME
        type. Independent of camera state.
        """
        data = await request.body()
        try:
            snapshot = snapshot_from_bytes(
                data,
                encoder,
                mime_type=request.headers.get("content-type"),
                filename=filename,
            )
        except UploadError as e:
            return _error(422, "invalid_upload", str(e))
        return await _respond_with_snapshot(snapshot, analyze)

    @app.get("/stream/preview")
    async def preview_stream(
        fps: int = Query(DEFAULT_PREVIEW_FPS, ge=1, le=30),
        frames: int | None = Query(None, ge=1, description="Stop after N frames"),
    ) -> StreamingResponse:
        """MJPEG viewfinder for ``<img src="/stream/preview">``."""
        return StreamingResponse(
            _generate_preview_stream(controller, encoder, fps=fps, max_frames=frames),
            media_type=_MJPEG_MEDIA_TYPE,
        )

    return app


def main(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    """Run the web server with the globally configured drivers.

    Args:
        host: Interface to bind.
        port: TCP port.
    """
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
