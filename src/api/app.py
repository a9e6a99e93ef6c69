"""Flask API for adaptive randomization - one TrialSession per app instance."""
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT))

from flask import Flask, current_app, jsonify, request

from src.randomization import (
    ConfigurationError,
    DuplicateIdError,
    InsufficientDataError,
    InternalInvariantError,
    RandomizationError,
    TrialConfig,
    TrialSession,
    UnknownIdError,
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

_ENV_KEYS = {
    "CARA_STUDY_NAME": "study_name",
    "CARA_N0": "n0",
    "CARA_GAMMA": "gamma",
    "CARA_TARGET": "target",
    "CARA_TB": "TB",
    "CARA_METHOD": "randomization_method",
    "CARA_SEED": "seed",
    "CARA_PLANNED_N": "planned_n",
}

_STATUS_CODES = [
    (DuplicateIdError, 409),
    (InsufficientDataError, 409),
    (UnknownIdError, 404),
    (InternalInvariantError, 500),
    (ConfigurationError, 400),
]


def config_from_env() -> TrialConfig:
    """TrialConfig built from CARA_* environment variables (defaults otherwise)."""
    data = {key: os.environ[env] for env, key in _ENV_KEYS.items() if os.environ.get(env)}
    return TrialConfig.from_dict(data)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _params() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.values.to_dict()


def _as_int(value):
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return value
    return value


def _as_float(value):
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return value
    return value


def _as_stratum(value, strata):
    if value in strata:
        return value
    for s in strata:
        if str(s) == str(value).strip():
            return s
    return value


def _session() -> TrialSession:
    return current_app.config["TRIAL_SESSION"]


def create_app(config: TrialConfig = None) -> Flask:
    app = Flask(__name__)
    app.config["TRIAL_SESSION"] = TrialSession(config)

    @app.errorhandler(RandomizationError)
    def handle_randomization_error(e):
        status = next((code for cls, code in _STATUS_CODES if isinstance(e, cls)), 400)
        if status >= 500:
            logger.error(f"{request.path}: {e.code}: {e.message}")
        else:
            logger.warning(f"{request.path}: {e.code}: {e.message}")
        return jsonify(e.to_dict()), status

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "healthy", "timestamp": _now(), "version": API_VERSION})

    @app.route("/trial/initialize", methods=["POST"])
    def initialize():
        new_config = TrialConfig.from_dict(_params())
        _session().reconfigure(new_config)
        return jsonify({
            "success": True,
            "message": "Trial initialized successfully",
            "config": new_config.to_dict(),
            "timestamp": _now(),
        })

    @app.route("/trial/status", methods=["GET"])
    def status():
        body = _session().status()
        body["timestamp"] = _now()
        return jsonify(body)

    @app.route("/patient/enroll", methods=["POST"])
    def enroll():
        params = _params()
        session = _session()
        result = session.enroll(
            _as_int(params.get("patient_id")),
            _as_stratum(params.get("stratum"), session.config.strata),
        )
        body = result.to_dict()
        body["timestamp"] = _now()
        return jsonify(body)

    @app.route("/patient/outcome", methods=["POST"])
    def record_outcome():
        params = _params()
        result = _session().record_outcome(
            _as_int(params.get("patient_id")),
            _as_float(params.get("outcome")),
        )
        body = result.to_dict()
        body["timestamp"] = _now()
        return jsonify(body)

    @app.route("/patients/list", methods=["GET"])
    def list_patients():
        patients = [p.to_dict() for p in _session().patients()]
        return jsonify({"patients": patients, "total": len(patients)})

    @app.route("/analysis/treatment-effect", methods=["GET"])
    def treatment_effect():
        body = _session().treatment_effect().to_dict()
        body["timestamp"] = _now()
        return jsonify(body)

    @app.route("/analysis/allocation-stats", methods=["GET"])
    def allocation_stats():
        body = _session().allocation_stats()
        body["timestamp"] = _now()
        return jsonify(body)

    @app.route("/data/export", methods=["GET"])
    def export():
        return jsonify(_session().export().to_dict())

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app = create_app(config_from_env())
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 8000)))
