import datetime
from functools import wraps

import jwt
from flask import current_app, jsonify, request

from certledger.users import get_user


def issue_token(username, role):
    token = jwt.encode(
        {
            "username": username,
            "role": role,
            "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=current_app.config["TOKEN_HOURS"]),
        },
        current_app.config["SECRET_KEY"],
        algorithm="HS256"
    )
    # older pyjwt releases return bytes
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


def get_token_from_header():
    header = request.headers.get("Authorization")
    if not header:
        return None
    # Expecting "Bearer <token>", a bare token is accepted too
    return header.split(" ")[-1]


def get_username_from_request_header():
    """Extracts username from the JWT in the Authorization header, None when absent or invalid."""
    token = get_token_from_header()
    if not token:
        return None
    try:
        data = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return None
    return data.get("username")


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_token_from_header()
        if not token:
            return jsonify({"error": "Token missing"}), 401
        try:
            data = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            return jsonify({"error": f"Token invalid: {str(e)}"}), 401
        current_user = get_user(current_app.config["DB_FILE"], data.get("username"))
        if not current_user:
            return jsonify({"error": "User not found"}), 401
        return f(current_user, *args, **kwargs)
    return decorated


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        @token_required
        def decorated(current_user, *args, **kwargs):
            if current_user["role"] not in roles:
                return jsonify({"error": "Unauthorized"}), 403
            return f(current_user, *args, **kwargs)
        return decorated
    return decorator
