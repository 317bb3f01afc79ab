"""
Security Module

Input validation for controller records, session / API key authentication
and response hardening.
"""

import os
import re
import html
import math
import logging
from decimal import Decimal
from functools import wraps
from datetime import datetime
from typing import Dict, Any, List, Optional

import bleach
from flask import request, session, g, jsonify, redirect, url_for
from werkzeug.security import check_password_hash, generate_password_hash
from dotenv import load_dotenv

from license_status import EXPIRY_FIELDS
from record_store import TEXT_FIELDS, resolve_field_name

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
API_KEY_HEADER = "X-API-Key"
API_KEYS = [k.strip() for k in os.getenv("API_KEYS", "").split(",") if k.strip()]

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD_HASH = os.getenv("ADMIN_PASSWORD_HASH", "")
if not ADMIN_PASSWORD_HASH and os.getenv("ADMIN_PASSWORD"):
    ADMIN_PASSWORD_HASH = generate_password_hash(os.getenv("ADMIN_PASSWORD"))
if not ADMIN_PASSWORD_HASH:
    logger.warning("No ADMIN_PASSWORD_HASH / ADMIN_PASSWORD configured, interactive login disabled")

NUMERIC_PATTERN = re.compile(r'^[+-]?\d+(\.\d+)?$')


# =====================================================
# Input Sanitization
# =====================================================

def sanitize_string(value: str, max_length: int = 500) -> str:
    """
    Sanitize string input.

    Args:
        value: Input string
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if not isinstance(value, str):
        return ""

    # Truncate to max length
    value = value[:max_length]

    # Remove HTML tags, keep plain text characters such as & and <
    value = html.unescape(bleach.clean(value, tags=[], strip=True))

    # Remove null bytes
    value = value.replace('\x00', '')

    return value.strip()


def sanitize_int(value: Any, default: int = 0, min_val: int = None, max_val: int = None) -> int:
    """
    Sanitize integer input.

    Args:
        value: Input value
        default: Default if invalid
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        Sanitized integer
    """
    try:
        result = int(value)

        if min_val is not None and result < min_val:
            result = min_val
        if max_val is not None and result > max_val:
            result = max_val

        return result
    except (ValueError, TypeError):
        return default


# =====================================================
# Record Validation
# =====================================================

class ValidationError(Exception):
    """Custom validation error."""
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(", ".join(errors))


RECORD_RULES: Dict[str, Dict[str, Any]] = {
    **{field: {"type": "string", "max_length": 200} for field in TEXT_FIELDS},
    **{field: {"type": "expiry", "max_length": 100} for field in EXPIRY_FIELDS},
}


def _clean_text_value(field: str, value: Any, config: Dict[str, Any], errors: List[str]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (list, dict)):
        errors.append(f"{field} must be text")
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return sanitize_string(str(value), config.get("max_length", 500))


def _clean_expiry_value(field: str, value: Any, config: Dict[str, Any], errors: List[str]) -> Any:
    """
    Expiry cells keep numbers numeric (Excel serials) and text as text.

    Numeric strings such as "45432" are stored as numbers.
    """
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (list, dict)):
        errors.append(f"{field} must be a date, a number or text")
        return None

    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, (int, float)):
        try:
            finite = math.isfinite(value)
        except OverflowError:
            finite = False
        if not finite:
            errors.append(f"{field} must be a finite number")
            return None
        return int(value) if isinstance(value, float) and value.is_integer() else value

    text = sanitize_string(str(value), config.get("max_length", 500))
    if NUMERIC_PATTERN.match(text):
        number = float(text)
        return int(number) if number.is_integer() else number
    return text or None


def validate_record_body(body: Any, require_fields: bool = True) -> Dict[str, Any]:
    """
    Validate a controller record mapping from a POST/PUT body or import row.

    Keys may be column names or spreadsheet headers ("ATCO LIC Expiry",
    "الاسم الكامل"). Unknown keys are rejected.

    Args:
        body: Decoded JSON body
        require_fields: Reject an empty mapping

    Returns:
        Dictionary of column -> cleaned value

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(body, dict):
        raise ValidationError(["Request body must be a JSON object"])

    errors = []
    result = {}
    unknown = []

    for key, value in body.items():
        if isinstance(key, str) and key.strip().lower() == "id":
            errors.append("id is assigned by the server and cannot be set")
            continue

        field = resolve_field_name(key)
        if field is None:
            unknown.append(str(key))
            continue
        if field in result:
            errors.append(f"{field} supplied more than once")
            continue

        config = RECORD_RULES[field]
        if config["type"] == "expiry":
            result[field] = _clean_expiry_value(field, value, config, errors)
        else:
            result[field] = _clean_text_value(field, value, config, errors)

    if unknown:
        errors.append(f"Unknown field(s): {', '.join(unknown)}")

    if require_fields and not result and not errors:
        errors.append("At least one field is required")

    if errors:
        raise ValidationError(errors)

    return result


# =====================================================
# Authentication
# =====================================================

def verify_credentials(username: str, password: str) -> bool:
    """Check a username/password pair against the configured administrator."""
    if not username or not password or not ADMIN_PASSWORD_HASH:
        return False
    if username != ADMIN_USERNAME:
        return False
    return check_password_hash(ADMIN_PASSWORD_HASH, password)


def is_valid_api_key(api_key: Optional[str]) -> bool:
    return bool(api_key) and api_key in API_KEYS


def current_user() -> Optional[str]:
    """Logged-in username from the session, or the API key client."""
    if session.get("username"):
        return session["username"]
    if is_valid_api_key(request.headers.get(API_KEY_HEADER)):
        return "api-key"
    return None


def require_auth(f):
    """
    Decorator for JSON API routes.

    Accepts a logged-in session or a valid X-API-Key header.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if not user:
            api_key = request.headers.get(API_KEY_HEADER)
            if api_key:
                logger.warning(f"Invalid API key attempt from {request.remote_addr}")
            return jsonify({
                "success": False,
                "error": "Authentication required",
                "timestamp": datetime.now().isoformat()
            }), 401

        g.user = user
        return f(*args, **kwargs)

    return decorated


def login_required_page(f):
    """Decorator for HTML pages; redirects to the login page."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not session.get("username"):
            return redirect(url_for("login_page", next=request.path))
        g.user = session["username"]
        return f(*args, **kwargs)

    return decorated


# =====================================================
# Security Headers Middleware
# =====================================================

def add_security_headers(response):
    """
    Add security headers to response.

    Usage:
        app.after_request(add_security_headers)
    """
    # Prevent clickjacking
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'

    # Prevent MIME sniffing
    response.headers['X-Content-Type-Options'] = 'nosniff'

    # Referrer policy
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    response.headers['Content-Security-Policy'] = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
    )

    return response


# =====================================================
# Request Logging
# =====================================================

def log_request():
    """Log incoming request details."""
    logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")


__all__ = [
    'sanitize_string',
    'sanitize_int',
    'ValidationError',
    'RECORD_RULES',
    'validate_record_body',
    'verify_credentials',
    'is_valid_api_key',
    'current_user',
    'require_auth',
    'login_required_page',
    'add_security_headers',
    'log_request',
]
