"""
Flask API Server

REST API and dashboard pages for the ATC License Dashboard.
"""

import os
import io
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from flask import (
    Flask, Response, flash, jsonify, redirect, render_template,
    request, session, url_for
)
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from dotenv import load_dotenv

# Load environment
dotenv_path = os.getenv("DOTENV_CONFIG_PATH", ".env")
load_dotenv(dotenv_path)

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from dashboard import (
    WORKPLACES,
    DashboardController,
    GridState,
    build_grid,
    compute_license_stats,
    default_workplace_filter,
    filter_by_workplace,
    grid_columns,
    resolve_workplace,
    unique_workplaces,
)
from date_normalizer import utc_today
from exports import CONTENT_TYPES, REPORT_TITLES, ExportService, report_display_rows
from license_status import EXPIRING_SOON_DAYS, parse_status
from record_store import RECORD_FIELDS, ControllerStore, NotFoundError, PersistenceError
from security import (
    ValidationError,
    add_security_headers,
    login_required_page,
    log_request,
    require_auth,
    sanitize_int,
    sanitize_string,
    validate_record_body,
    verify_credentials,
)
from spreadsheet_import import allowed_file, import_controllers


# Custom JSON Provider to handle Decimal, dates and enums
class CustomJSONProvider(DefaultJSONProvider):
    ensure_ascii = False

    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


# Create Flask app
app = Flask(__name__,
            template_folder='templates',
            static_folder='static')
app.json = CustomJSONProvider(app)

# Secret key - MUST be set in production
_secret_key = os.getenv("FLASK_SECRET_KEY")
if not _secret_key and os.getenv("FLASK_ENV") == "production":
    raise RuntimeError("FLASK_SECRET_KEY must be set in production environment!")
app.secret_key = _secret_key or "dev-secret-key-for-local-only"

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=os.getenv("FLASK_ENV") == "production",
    MAX_CONTENT_LENGTH=int(os.getenv("UPLOAD_MAX_MB", 10)) * 1024 * 1024,
)

# =========================================================
# CORS Configuration
# =========================================================

_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5000,http://127.0.0.1:5000").split(",")
CORS(app, supports_credentials=True, resources={
    r"/api/*": {
        "origins": _cors_origins,
        "methods": ["GET", "POST", "PUT", "DELETE"],
        "allow_headers": ["Content-Type", "X-API-Key", "Authorization"]
    },
    r"/auth/*": {
        "origins": _cors_origins,
        "methods": ["GET", "POST"]
    }
})

# =========================================================
# Rate Limiting
# =========================================================

LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "20 per minute")

limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["5000 per day", "1000 per hour"],
    storage_uri="memory://",
    strategy="fixed-window"
)

app.before_request(log_request)
app.after_request(add_security_headers)

# =========================================================
# Record Store
# =========================================================

store = ControllerStore()


def get_export_service() -> ExportService:
    return ExportService(store)


# =========================================================
# Helper Functions
# =========================================================

def parse_date_param(date_str: str, default: date = None) -> date:
    """Parse date string from query parameter."""
    if not date_str:
        return default or utc_today()

    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        logger.warning(f"Invalid date format: {date_str}")
        return default or utc_today()


def api_response(data=None, error=None, status=200):
    """Standard API response format."""
    response = {
        "success": error is None,
        "timestamp": datetime.now().isoformat(),
        "data": data
    }
    if error:
        response["error"] = error
    return jsonify(response), status


def _report_status(status: str):
    try:
        return parse_status(status)
    except ValueError:
        raise ValidationError([f"Unknown report status: {status}"])


def _file_response(data: bytes, filename: str, export_format: str) -> Response:
    return Response(
        data,
        mimetype=CONTENT_TYPES.get(export_format, 'application/octet-stream'),
        headers={
            'Content-Disposition': f'attachment; filename="{filename}"',
            'Content-Length': len(data)
        }
    )


def _start_session(username: str, workplace: str):
    session.clear()
    session["username"] = username
    session["workplace"] = workplace


def _read_credentials(body) -> tuple:
    username = sanitize_string(body.get("username"), 100)
    password = body.get("password")
    if not isinstance(password, str):
        password = ""
    workplace = sanitize_string(body.get("workplace"), 20).lower()
    return username, password, workplace


def _login_error(username: str, password: str, workplace: str):
    """
    Why a login attempt is rejected.

    Returns:
        (message, status) or None when the login is accepted
    """
    if not username or not password or not workplace:
        return "Please fill in all fields, including the workplace.", 400
    if workplace not in WORKPLACES:
        return f"Unknown workplace: {workplace}", 400
    if not verify_credentials(username, password):
        logger.warning(f"Failed login for {username!r} from {request.remote_addr}")
        return "Invalid username or password.", 401
    return None


# =========================================================
# Error Handlers
# =========================================================

@app.errorhandler(ValidationError)
def validation_error(e):
    return api_response(data={"errors": e.errors}, error=str(e), status=400)


@app.errorhandler(NotFoundError)
def record_not_found(e):
    return api_response(error=str(e), status=404)


@app.errorhandler(PersistenceError)
def persistence_error(e):
    logger.error(f"Persistence failure on {request.path}: {e}")
    return api_response(error="Database error", status=500)


@app.errorhandler(404)
def not_found(e):
    return api_response(error="Not found", status=404)


@app.errorhandler(405)
def method_not_allowed(e):
    return api_response(error="Method not allowed", status=405)


@app.errorhandler(413)
def payload_too_large(e):
    return api_response(error="Uploaded file is too large", status=413)


@app.errorhandler(500)
def server_error(e):
    return api_response(error="Internal server error", status=500)


@app.errorhandler(429)
def rate_limit_error(e):
    return api_response(error="Too many requests. Please try again later.", status=429)


# =========================================================
# Health
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint."""
    database = True
    try:
        store.count()
    except PersistenceError:
        database = False

    return api_response({
        "status": "healthy" if database else "degraded",
        "service": "ATC License Dashboard",
        "version": "1.0.0",
        "database": database
    })


# =========================================================
# Authentication Endpoints
# =========================================================

@app.route('/auth/login', methods=['POST'])
@limiter.limit(LOGIN_RATE_LIMIT)
def auth_login():
    """
    Log in and start a session.

    Body (JSON or form):
        username, password, workplace (hq, tripoli, benghazi, misrata)
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        body = request.form.to_dict()
    username, password, workplace = _read_credentials(body)

    rejected = _login_error(username, password, workplace)
    if rejected:
        message, status = rejected
        return api_response(error=message, status=status)

    _start_session(username, workplace)
    logger.info(f"User {username} logged in ({workplace})")
    return api_response({
        "username": username,
        "workplace": workplace,
        "workplace_name": WORKPLACES[workplace]
    })


@app.route('/auth/logout', methods=['POST'])
def auth_logout():
    session.clear()
    return api_response({"message": "Logged out"})


@app.route('/auth/me')
@require_auth
def auth_me():
    workplace = session.get("workplace")
    return api_response({
        "username": session.get("username") or "api-key",
        "workplace": workplace,
        "workplace_name": resolve_workplace(workplace)
    })


# =========================================================
# Controller Endpoints
# =========================================================

@app.route('/api/controllers', methods=['GET'])
@require_auth
def list_controllers():
    """
    List controller records.

    Query params:
        workplace: Exact workplace filter
    """
    records = filter_by_workplace(store.list_all(), request.args.get('workplace', ''))
    return api_response(records)


@app.route('/api/controllers/<int:record_id>', methods=['GET'])
@require_auth
def get_controller(record_id: int):
    return api_response(store.get(record_id))


@app.route('/api/controllers', methods=['POST'])
@require_auth
def create_controller():
    """Create a record and return it as stored."""
    fields = validate_record_body(request.get_json(silent=True))

    try:
        new_id = store.insert(fields)
        record = store.get(new_id)
    except PersistenceError as e:
        logger.error(f"Create controller failed: {e}")
        return api_response(error=str(e), status=400)

    return api_response(record, status=201)


@app.route('/api/controllers/<int:record_id>', methods=['PUT'])
@require_auth
def update_controller(record_id: int):
    """Overwrite the supplied fields and return the reloaded record."""
    fields = validate_record_body(request.get_json(silent=True))

    try:
        updated = store.update(record_id, fields)
        if not updated:
            raise NotFoundError(record_id)
        record = store.get(record_id)
    except PersistenceError as e:
        logger.error(f"Update controller {record_id} failed: {e}")
        return api_response(error=str(e), status=400)

    return api_response(record)


@app.route('/api/controllers/all', methods=['DELETE'])
@require_auth
def delete_all_controllers():
    """Delete every record and reset id numbering."""
    deleted = store.delete_all()
    return api_response({
        "deleted": deleted,
        "message": f"All records deleted. Count: {deleted}"
    })


@app.route('/api/controllers/<int:record_id>', methods=['DELETE'])
@require_auth
def delete_controller(record_id: int):
    if not store.delete(record_id):
        raise NotFoundError(record_id)
    return api_response({"message": "Controller deleted", "id": record_id})


# =========================================================
# Dashboard Endpoints
# =========================================================

@app.route('/api/dashboard/summary')
@require_auth
def get_dashboard_summary():
    """
    License statistics.

    Query params:
        date: Reference date YYYY-MM-DD (default: today)
        workplace: Exact workplace filter
    """
    today = parse_date_param(request.args.get('date'))
    workplace = request.args.get('workplace', '')
    records = filter_by_workplace(store.list_all(), workplace)

    summary = compute_license_stats(records, today)
    summary.update({
        "date": today.isoformat(),
        "workplace": workplace or None,
        "expiring_soon_days": EXPIRING_SOON_DAYS
    })
    return api_response(summary)


@app.route('/api/dashboard/grid')
@require_auth
def get_dashboard_grid():
    """Grid rows with display text and cell classes."""
    today = parse_date_param(request.args.get('date'))
    records = filter_by_workplace(store.list_all(), request.args.get('workplace', ''))
    return api_response({
        "date": today.isoformat(),
        "columns": grid_columns(),
        "rows": build_grid(records, today)
    })


@app.route('/api/dashboard/workplaces')
@require_auth
def get_workplaces():
    records = store.list_all()
    return api_response({
        "workplaces": unique_workplaces(records),
        "default": default_workplace_filter(records, session.get("workplace"))
    })


# =========================================================
# Report & Export Endpoints
# =========================================================

@app.route('/api/reports/<status>')
@require_auth
def get_license_report(status: str):
    """
    Licenses with one status, one row per license.

    Args:
        status: expired, expiring-soon or active
    """
    report_status = _report_status(status)
    today = parse_date_param(request.args.get('date'))
    rows = get_export_service().license_report(report_status, today)

    return api_response({
        "status": report_status.value,
        "title": REPORT_TITLES[report_status],
        "date": today.isoformat(),
        "total": len(rows),
        "rows": rows
    })


@app.route('/api/export/report/<status>')
@require_auth
def export_license_report(status: str):
    """
    Download a license report.

    Query params:
        format: xlsx, pdf, csv (default: xlsx)
        date: Reference date YYYY-MM-DD
    """
    report_status = _report_status(status)
    today = parse_date_param(request.args.get('date'))
    export_format = request.args.get('format', 'xlsx').lower()

    data = get_export_service().export_license_report(report_status, export_format, today)
    filename = f"{report_status.value}_licenses_{today}.{export_format}"
    return _file_response(data, filename, export_format)


@app.route('/api/export/controllers')
@require_auth
def export_controllers():
    """Download the whole controllers table (xlsx or csv)."""
    export_format = request.args.get('format', 'xlsx').lower()
    data = get_export_service().export_controllers(export_format)
    filename = f"controllers_{date.today()}.{export_format}"
    return _file_response(data, filename, export_format)


# =========================================================
# Excel Upload Endpoint
# =========================================================

@app.route('/api/upload/excel', methods=['POST'])
@require_auth
def upload_excel():
    """
    Import controllers from an Excel workbook.

    Form data:
        file: xlsx / xls workbook
        replace: true to delete existing records first
    """
    if 'file' not in request.files:
        return api_response(error="No file provided", status=400)

    file = request.files['file']
    if file.filename == '':
        return api_response(error="No file selected", status=400)

    if not allowed_file(file.filename, file.mimetype):
        return api_response(error="File must be an Excel workbook (xlsx or xls)", status=400)

    replace = request.form.get('replace', 'false').lower() in ('1', 'true', 'yes', 'on')
    summary = import_controllers(store, io.BytesIO(file.read()), file.filename, replace=replace)

    return api_response({
        "message": f"Imported {summary['imported']} records",
        **summary
    })


# =========================================================
# Dashboard Pages
# =========================================================

def _grid_state() -> GridState:
    return GridState.from_dict(session.get("grid"))


def _save_grid_state(state: GridState):
    session["grid"] = state.to_dict()


@app.route('/')
def index():
    if session.get("username"):
        return redirect(url_for('dashboard_page'))
    return redirect(url_for('login_page'))


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit(LOGIN_RATE_LIMIT, methods=["POST"])
def login_page():
    if request.method == 'POST':
        username, password, workplace = _read_credentials(request.form)
        rejected = _login_error(username, password, workplace)
        if rejected:
            message, status = rejected
            flash(message, "error")
            return render_template('login.html', workplaces=WORKPLACES, year=date.today().year), status

        _start_session(username, workplace)
        logger.info(f"User {username} logged in ({workplace})")
        next_url = request.args.get('next', '')
        if not next_url.startswith('/') or next_url.startswith('//'):
            next_url = url_for('dashboard_page')
        return redirect(next_url)

    return render_template('login.html', workplaces=WORKPLACES, year=date.today().year)


@app.route('/logout')
def logout_page():
    session.clear()
    flash("Logged out.", "info")
    return redirect(url_for('login_page'))


@app.route('/dashboard')
@login_required_page
def dashboard_page():
    """
    Grid, statistics cards and CRUD buttons.

    Query params:
        select: Row id to select / deselect
        workplace: Workplace filter (defaults to the login workplace)
    """
    today = utc_today()
    controller = DashboardController(store, _grid_state())

    if request.args.get('select'):
        try:
            controller.toggle_selection(sanitize_int(request.args['select']))
        except NotFoundError as e:
            flash(str(e), "error")
            controller.clear_selection()
        _save_grid_state(controller.state)

    records = store.list_all()
    workplace = request.args.get('workplace')
    if workplace is None:
        workplace = default_workplace_filter(records, session.get("workplace")) or ""

    return render_template(
        'dashboard.html',
        stats=compute_license_stats(records, today),
        columns=grid_columns(),
        rows=build_grid(filter_by_workplace(records, workplace), today),
        workplaces=unique_workplaces(records),
        workplace=workplace,
        state=controller.state,
    )


@app.route('/dashboard/form', methods=['GET', 'POST'])
@login_required_page
def dashboard_form_page():
    """Add / edit form for the grid."""
    controller = DashboardController(store, _grid_state())

    if request.method == 'GET':
        action = request.args.get('action', 'add')
        try:
            fields = controller.begin_edit() if action == 'edit' else controller.begin_add()
        except (ValidationError, NotFoundError) as e:
            flash(str(e), "error")
            _save_grid_state(controller.clear_selection())
            return redirect(url_for('dashboard_page'))

        _save_grid_state(controller.state)
        title = "Edit record" if action == 'edit' else "Add new record"
        return render_template('form.html', fields=fields, title=title)

    if request.form.get('cancel'):
        _save_grid_state(controller.cancel())
        return redirect(url_for('dashboard_page'))

    form_data = {k: v for k, v in request.form.items() if k in RECORD_FIELDS}
    try:
        _, notification = controller.save(form_data)
        flash(notification.message, notification.level)
    except (ValidationError, NotFoundError, PersistenceError) as e:
        logger.warning(f"Dashboard save failed: {e}")
        flash(f"Save failed: {e}", "error")

    _save_grid_state(controller.state)
    return redirect(url_for('dashboard_page'))


@app.route('/dashboard/delete', methods=['POST'])
@login_required_page
def dashboard_delete_page():
    controller = DashboardController(store, _grid_state())
    try:
        notification = controller.delete_selected()
        flash(notification.message, notification.level)
    except (ValidationError, NotFoundError, PersistenceError) as e:
        flash(f"Delete failed: {e}", "error")

    _save_grid_state(controller.state)
    return redirect(url_for('dashboard_page'))


@app.route('/dashboard/upload', methods=['POST'])
@login_required_page
def dashboard_upload_page():
    file = request.files.get('file')
    if not file or not file.filename:
        flash("No file selected.", "error")
    elif not allowed_file(file.filename, file.mimetype):
        flash("File must be an Excel workbook (xlsx or xls).", "error")
    else:
        try:
            summary = import_controllers(store, io.BytesIO(file.read()), file.filename,
                                         replace=bool(request.form.get('replace')))
            flash(f"Imported {summary['imported']} records.", "success")
        except (ValidationError, PersistenceError) as e:
            flash(f"Import failed: {e}", "error")

    _save_grid_state(GridState())
    return redirect(url_for('dashboard_page'))


@app.route('/reports')
@login_required_page
def reports_page():
    """
    Report page.

    Query params:
        status: expired, expiring-soon or active
    """
    status_param = request.args.get('status')
    report_status = None
    rows = []

    if status_param:
        try:
            report_status = _report_status(status_param)
            rows = report_display_rows(get_export_service().license_report(report_status))
        except ValidationError as e:
            flash(str(e), "error")
            report_status = None

    return render_template(
        'reports.html',
        has_data=store.count() > 0,
        status=report_status,
        title=REPORT_TITLES.get(report_status) if report_status else None,
        rows=rows,
        titles=REPORT_TITLES,
    )


# =========================================================
# Main Entry Point
# =========================================================

if __name__ == '__main__':
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "0") == "1"

    print("=" * 60)
    print("ATC License Dashboard - API Server")
    print("=" * 60)
    print(f"Port: {port}")
    print(f"Debug: {debug}")
    print(f"Database: {store.database_url}")
    print("=" * 60)

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug
    )
