import io
import logging

from flask import Flask, current_app, jsonify, request, send_file
from flask_cors import CORS
from web3 import Web3
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from certledger.audit import audit_listener, list_events, log_event
from certledger.auth import get_username_from_request_header, issue_token, role_required
from certledger.chain import connect_chain
from certledger.canonical import derive_key, key_to_hex, parse_key
from certledger.config import Config
from certledger.db import init_db
from certledger.errors import CertLedgerError, InvalidUpload, LedgerUnavailable
from certledger.ledger import MemoryLedger
from certledger.pinning import fetch_file, pinner_from_config
from certledger.qr import decode_payload, make_qr_data_url, make_qr_png
from certledger.registry import CertificateRegistry
from certledger.sqlite_ledger import SqliteLedger
from certledger.users import ROLES, add_user, check_password, create_default_admin, get_user


def build_ledger(config):
    backend = config["LEDGER_BACKEND"]
    if backend == "memory":
        return MemoryLedger()
    if backend == "sqlite":
        return SqliteLedger(config.get("LEDGER_DB_FILE") or config["DB_FILE"])
    if backend == "chain":
        try:
            return connect_chain(config)
        except (LedgerUnavailable, OSError) as e:
            logging.error(f"Blockchain error: {e}")
            logging.warning("Server starting without blockchain")
            return None
    raise ValueError(f"Unknown LEDGER_BACKEND: {backend}")


def get_registry() -> CertificateRegistry:
    registry = current_app.extensions.get("registry")
    if registry is None:
        raise LedgerUnavailable()
    return registry


def read_upload():
    """Returns (filename, bytes) of the uploaded certificate PDF."""
    file = request.files.get("certificate")
    if file is None or not file.filename:
        raise InvalidUpload("No PDF file uploaded")
    if file.mimetype != "application/pdf" and not file.filename.lower().endswith(".pdf"):
        raise InvalidUpload()
    return file.filename, file.read()


def read_qr_key():
    data = request.get_json(silent=True) or {}
    qr_data = data.get("qrData")
    if not qr_data:
        raise InvalidUpload("No QR data provided")
    return decode_payload(qr_data)


def verification_response(key, method):
    record = get_registry().verify(key)
    hex_key = key_to_hex(key)

    if record.active:
        logging.info(f"Certificate {hex_key} VALID")
        message = "Certificate is valid"
    else:
        reason = "revoked" if record.ever_issued else "not found"
        logging.info(f"Certificate {hex_key} INVALID ({reason})")
        log_event(current_app.config["DB_FILE"], "verify_failed", hex_key, reason,
                  username=get_username_from_request_header())
        message = "Certificate has been revoked" if record.ever_issued else "Certificate not found or revoked"

    return jsonify({
        "success": True,
        "message": message,
        "verification_method": method,
        "was_ever_issued": record.ever_issued,
        "certificate": record.to_dict(),
    })


def revocation_response(key, current_user, method):
    result = get_registry().revoke(key, current_user.get("address"))
    return jsonify({
        "success": True,
        "message": "Certificate revoked successfully",
        "revocation_method": method,
        "certificate": result.record.to_dict(),
        "receipt": result.receipt.to_dict(),
    })


def create_app(overrides=None, ledger=None, pinner=None):
    app = Flask(__name__)
    CORS(app)
    app.config.from_object(Config)
    app.config.update(overrides or {})

    init_db(app.config["DB_FILE"])
    create_default_admin(app.config["DB_FILE"], app.config["ADMIN_USERNAME"], app.config["ADMIN_PASSWORD"])

    if ledger is None:
        ledger = build_ledger(app.config)
    if ledger is not None:
        registry = CertificateRegistry(ledger, require_locator=app.config["REQUIRE_LOCATOR"])
        registry.subscribe(audit_listener(app.config["DB_FILE"]))
        app.extensions["registry"] = registry
    app.extensions["pinner"] = pinner or pinner_from_config(app.config)

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app):

    @app.errorhandler(CertLedgerError)
    def handle_cert_error(e):
        if e.status_code >= 500:
            logging.error(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
        return jsonify({"success": False, "error": "file_too_large",
                        "message": f"File size exceeds {limit_mb}MB limit"}), 413

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logging.exception(f"Unhandled error: {e}")
        return jsonify({"success": False, "error": "internal_error",
                        "message": str(e) or "Internal server error"}), 500


def register_routes(app):

    @app.route("/")
    def root():
        registry = app.extensions.get("registry")
        return jsonify({
            "status": "API running",
            "ledger": registry.ledger.name if registry else None,
            "ipfs": {"configured": app.extensions["pinner"].configured},
            "endpoints": {
                "issue": "POST /api/issue-certificate",
                "verify": "POST /api/verify-certificate",
                "verifyQR": "POST /api/verify-qr",
                "revoke": "POST /api/revoke-certificate",
                "revokeQR": "POST /api/revoke-qr",
                "getByHash": "GET /api/certificate/<hash>",
                "qr": "GET /api/certificate/<hash>/qr",
                "statistics": "GET /api/statistics",
                "download": "GET /api/download/<cid>",
            },
        }), 200

    @app.route("/api/health")
    def health():
        registry = get_registry()
        if not registry.ledger.is_connected():
            return jsonify({"success": False, "status": "unhealthy", "ledger": registry.ledger.name}), 503
        return jsonify({
            "success": True,
            "status": "healthy",
            "ledger": registry.ledger.describe(),
            "statistics": registry.statistics().to_dict(),
        })

    # ---------- Signup ----------
    @app.route("/signup", methods=["POST"])
    def signup():
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")
        role_type = data.get("role_type")
        address = data.get("address")
        details = {k: v for k, v in data.items() if k not in ["username", "password", "role_type", "address"]}

        if not all([username, password, role_type]):
            return jsonify({"error": "Username, password, and role_type required"}), 400
        if role_type not in ROLES or role_type == "admin":
            return jsonify({"error": "Invalid role"}), 400
        if role_type == "institute" and not address:
            return jsonify({"error": "Institutes must register an account address"}), 400
        if address:
            if not Web3.is_address(address):
                return jsonify({"error": "Invalid account address"}), 400
            address = Web3.to_checksum_address(address)
        if get_user(app.config["DB_FILE"], username):
            return jsonify({"error": "Username already exists"}), 400
        add_user(app.config["DB_FILE"], username, password, role_type, address, details)
        return jsonify({"message": "User created successfully"}), 201

    # ---------- Login ----------
    @app.route("/login", methods=["POST"])
    def login():
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "Username and password required"}), 400

        user = get_user(app.config["DB_FILE"], username)
        if not check_password(user, password):
            return jsonify({"error": "Invalid credentials"}), 401

        return jsonify({"access_token": issue_token(username, user["role"]), "role": user["role"]}), 200

    # ---------- Issue Certificate ----------
    @app.route("/api/issue-certificate", methods=["POST"])
    @role_required("institute")
    def issue_certificate(current_user):
        registry = get_registry()
        filename, data = read_upload()
        logging.info(f"Issuing certificate {filename} ({len(data)} bytes) for {current_user['username']}")

        key = derive_key(data)
        existing = registry.verify(key)
        if existing.ever_issued:
            return jsonify({
                "success": False,
                "error": "already_issued",
                "message": "Certificate already issued",
                "certificate": existing.to_dict(),
            }), 409

        storage_locator = ""
        pinner = app.extensions["pinner"]
        if pinner.configured:
            storage_locator = pinner.pin(data, filename).cid
            logging.info(f"CID: {storage_locator}")

        result = registry.issue(key, current_user.get("address"), storage_locator)
        return jsonify({
            "success": True,
            "message": "Certificate issued successfully",
            "certificate": result.record.to_dict(),
            "receipt": result.receipt.to_dict(),
            "qr_code": make_qr_data_url(key),
        }), 201

    # ---------- Verify Certificate ----------
    @app.route("/api/verify-certificate", methods=["POST"])
    def verify_certificate():
        _, data = read_upload()
        return verification_response(derive_key(data), "File Upload")

    @app.route("/api/verify-qr", methods=["POST"])
    def verify_qr():
        return verification_response(read_qr_key(), "QR Code")

    # ---------- Revoke Certificate ----------
    @app.route("/api/revoke-certificate", methods=["POST"])
    @role_required("institute")
    def revoke_certificate(current_user):
        _, data = read_upload()
        return revocation_response(derive_key(data), current_user, "File Upload")

    @app.route("/api/revoke-qr", methods=["POST"])
    @role_required("institute")
    def revoke_qr(current_user):
        return revocation_response(read_qr_key(), current_user, "QR Code")

    # ---------- Lookup ----------
    @app.route("/api/certificate/<cert_hash>")
    def certificate_by_hash(cert_hash):
        registry = get_registry()
        key = parse_key(cert_hash)
        record = registry.verify(key)
        if not record.active:
            return jsonify({
                "success": False,
                "message": "Certificate not found or revoked",
                "was_ever_issued": registry.was_ever_issued(key),
            }), 404
        return jsonify({"success": True, "certificate": record.to_dict()})

    @app.route("/api/certificate/<cert_hash>/qr")
    def certificate_qr(cert_hash):
        png = make_qr_png(parse_key(cert_hash))
        return send_file(io.BytesIO(png), mimetype="image/png")

    @app.route("/api/download/<cid>")
    def download_certificate(cid):
        data = fetch_file(cid)
        response = send_file(io.BytesIO(data), mimetype="application/pdf", as_attachment=True,
                             download_name=f"certificate-{cid}.pdf")
        response.headers["Cache-Control"] = "public, max-age=31536000"
        return response

    @app.route("/api/statistics")
    def statistics():
        return jsonify({"success": True, **get_registry().statistics().to_dict()})

    # ---------- Audit Logs ----------
    @app.route("/audit_logs", methods=["GET"])
    @role_required("admin")
    def get_audit_logs(current_user):
        return jsonify(list_events(app.config["DB_FILE"]))
