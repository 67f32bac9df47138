from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from quart import Quart, request, jsonify

from audio_recognition import (
    AudioCaptureController,
    Location,
    RecognitionOrchestrator,
    SessionContext,
    SoundDeviceRecorder,
    create_orchestrator,
)
from audio_recognition.engine import HTTP_STATUS_BY_ERROR
from audio_recognition.errors import CaptureError, LocationValidationError, PermissionDeniedError, RecordingBusyError
from audio_recognition.results import RecognitionError, to_response
from config import ACRCLOUD, CAPTURE, QUOTA, RECOGNITION, STORAGE, VERSION
from discovery_store import DiscoveryStore, create_store
from settings import settings
from logging_config import get_logger
from system_utils import shutdown_daemon_executor
from system_utils.helpers import _log_app_state

logger = get_logger(__name__)

app = Quart(__name__)
app.config['SERVER_NAME'] = None

# --- Pipeline singletons ---

_store: Optional[DiscoveryStore] = None
_orchestrator: Optional[RecognitionOrchestrator] = None

# One capture controller per account; sessions never overlap within an account
_controllers: Dict[str, AudioCaptureController] = {}
# Location sent with /api/capture/start, applied when the sample is recognized
_capture_locations: Dict[str, Optional[Location]] = {}
# Result of the most recent auto-stopped capture, surfaced via /api/capture/status
_last_results: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
MAX_LAST_RESULTS = 256


def get_store() -> DiscoveryStore:
    global _store
    if _store is None:
        _store = create_store(STORAGE)
    return _store


def get_orchestrator() -> RecognitionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator(get_store(), ACRCLOUD, RECOGNITION, QUOTA)
    return _orchestrator


def configure(store: Optional[DiscoveryStore] = None, orchestrator: Optional[RecognitionOrchestrator] = None) -> None:
    """Replace the pipeline singletons (CLI --store flag and tests)."""
    global _store, _orchestrator
    _store = store
    _orchestrator = orchestrator
    _controllers.clear()
    _capture_locations.clear()
    _last_results.clear()


def _response_for(outcome) -> Tuple[Dict[str, Any], int]:
    status = 200
    if isinstance(outcome, RecognitionError):
        status = HTTP_STATUS_BY_ERROR.get(outcome.code, 500)
    return to_response(outcome), status


def auto_stop_handler(account_id: str):
    """Recognize an auto-stopped sample and keep the result for the status endpoint."""
    async def on_auto_stop(sample):
        outcome = await get_orchestrator().recognize_sample(
            SessionContext(account_id), sample, _capture_locations.pop(account_id, None)
        )
        _remember_result(account_id, to_response(outcome))
        _release_controller(account_id)
    return on_auto_stop


def _remember_result(account_id: str, body: Dict[str, Any]) -> None:
    _last_results[account_id] = body
    _last_results.move_to_end(account_id)
    while len(_last_results) > MAX_LAST_RESULTS:
        _last_results.popitem(last=False)


def _release_controller(account_id: str) -> None:
    """Forget an account's controller once it is idle with nothing to report."""
    controller = _controllers.get(account_id)
    if controller is not None and not controller.is_active and controller.error is None:
        del _controllers[account_id]


def get_controller(account_id: str) -> AudioCaptureController:
    controller = _controllers.get(account_id)
    if controller is None:
        backend = SoundDeviceRecorder(device_id=CAPTURE.get("device_id"), sample_rate=CAPTURE.get("sample_rate"))
        controller = AudioCaptureController(
            backend,
            max_duration_ms=CAPTURE.get("max_duration_ms", 10000),
            tick_ms=CAPTURE.get("tick_ms", 100),
            on_auto_stop=auto_stop_handler(account_id),
        )
        _controllers[account_id] = controller
    return controller


async def _account_from_request() -> Tuple[Optional[str], Dict[str, Any]]:
    data = await request.get_json(silent=True) or {}
    account_id = data.get("accountId") or request.args.get("accountId")
    return account_id, data


@app.after_serving
async def shutdown() -> None:
    for account_id, controller in list(_controllers.items()):
        if controller.is_active:
            logger.info(f"Cancelling active recording for {account_id}")
            await controller.cancel_recording()
    if _orchestrator is not None:
        _orchestrator.gateway.close()
    _log_app_state(force=True)
    shutdown_daemon_executor()


# --- Recognition API ---

@app.route("/api/recognize", methods=['POST'])
async def api_recognize():
    """
    Identify a recorded sample.
    Body: {"audioBase64": str, "accountId": str, "location": {name, latitude, longitude}?}
    """
    payload = await request.get_json(silent=True)
    status, body = await get_orchestrator().handle_request(payload)
    return jsonify(body), status


@app.route("/api/recognize/usage", methods=['GET'])
async def api_recognize_usage():
    """Monthly usage and remaining quota for ?accountId=."""
    account_id = request.args.get("accountId")
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    try:
        usage = await get_orchestrator().quota.usage(account_id)
    except Exception as e:
        logger.error(f"Usage lookup failed for {account_id}: {e}")
        return jsonify({"error": "Usage unavailable"}), 500
    return jsonify(usage.to_dict())


@app.route("/api/discoveries", methods=['GET'])
async def api_discoveries():
    """Discovery history for ?accountId=, newest first."""
    account_id = request.args.get("accountId")
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    try:
        discoveries = await get_store().list_discoveries(account_id)
    except Exception as e:
        logger.error(f"Discovery listing failed for {account_id}: {e}")
        return jsonify({"error": "History unavailable"}), 500
    discoveries.sort(key=lambda d: d.created_at, reverse=True)
    return jsonify({"discoveries": [d.to_dict() for d in discoveries], "count": len(discoveries)})


# --- Capture API ---

@app.route("/api/capture/start", methods=['POST'])
async def api_capture_start():
    """
    Start recording from the server's microphone.
    Body: {"accountId": str, "location": {...}?}
    """
    account_id, data = await _account_from_request()
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    try:
        location = Location.from_payload(data.get("location"))
    except LocationValidationError as e:
        return jsonify({"error": str(e)}), 400

    controller = get_controller(account_id)
    try:
        await controller.start_recording()
    except RecordingBusyError as e:
        return jsonify({"error": str(e)}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except CaptureError as e:
        logger.error(f"Capture start failed for {account_id}: {e}")
        return jsonify({"error": str(e)}), 500

    _capture_locations[account_id] = location
    _last_results.pop(account_id, None)
    return jsonify(controller.snapshot().to_dict())


@app.route("/api/capture/stop", methods=['POST'])
async def api_capture_stop():
    """Stop recording and identify the sample."""
    account_id, _ = await _account_from_request()
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    controller = _controllers.get(account_id)
    if controller is None:
        return jsonify({"error": "Not recording"}), 409

    sample = await controller.stop_recording()
    if sample is None:
        error = controller.error or "Not recording"
        return jsonify({"error": error}), 409 if controller.error is None else 500

    outcome = await get_orchestrator().recognize_sample(
        SessionContext(account_id), sample, _capture_locations.pop(account_id, None)
    )
    _release_controller(account_id)
    body, status = _response_for(outcome)
    return jsonify(body), status


@app.route("/api/capture/cancel", methods=['POST'])
async def api_capture_cancel():
    account_id, _ = await _account_from_request()
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    controller = _controllers.get(account_id)
    if controller is not None:
        await controller.cancel_recording()
    _capture_locations.pop(account_id, None)
    _release_controller(account_id)
    return jsonify({"status": "idle", "duration": 0})


@app.route("/api/capture/status", methods=['GET'])
async def api_capture_status():
    account_id = request.args.get("accountId")
    if not account_id:
        return jsonify({"error": "accountId is required"}), 400
    controller = _controllers.get(account_id)
    status = controller.snapshot().to_dict() if controller else {
        "status": "idle", "duration": 0, "metering": -160.0, "error": None
    }
    status["available"] = SoundDeviceRecorder.is_available()
    status["lastResult"] = _last_results.get(account_id)
    return jsonify(status)


# --- Settings API ---

@app.route("/api/settings", methods=['GET'])
async def api_get_settings():
    return jsonify(settings.get_all())


@app.route("/api/settings/<key>", methods=['POST'])
async def api_update_setting(key: str):
    try:
        data = await request.get_json()
        if 'value' not in data:
            return jsonify({"error": "No value"}), 400
        needs_restart = settings.set(key, data['value'])
        settings.save_to_config()
        return jsonify({"success": True, "requires_restart": needs_restart})
    except (KeyError, ValueError, TypeError, OSError) as e:
        return jsonify({"error": str(e)}), 400


@app.route("/api/health", methods=['GET'])
async def api_health():
    orchestrator = get_orchestrator()
    return jsonify({
        "version": VERSION,
        "recognition_configured": orchestrator.gateway.is_configured(),
        "capture_available": SoundDeviceRecorder.is_available(),
    })

