from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, current_user
from functools import wraps
from models import User, UserRole, db
from services.exceptions import ServiceError
from timezone_utils import get_ist_time_naive
import logging

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


def error_response(code, message, status, field=None):
    payload = {'success': False, 'error': code, 'message': message}
    if field:
        payload['field'] = field
    return jsonify(payload), status


def success_response(data=None, message=None, status=200, **extra):
    payload = {'success': True, 'data': data}
    if message:
        payload['message'] = message
    payload.update(extra)
    return jsonify(payload), status


def api_endpoint(f):
    """Translate service errors to the JSON error envelope"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ServiceError as e:
            logger.warning(f"{request.method} {request.path} failed: {e.code} - {e.message}")
            return jsonify(e.to_dict()), e.status_code
        except Exception as e:
            db.session.rollback()
            logger.error(f"Unhandled error in {f.__name__}: {str(e)}", exc_info=True)
            return error_response('INTERNAL_ERROR', 'Internal server error', 500)
    return decorated_function


def _role_required(role, message):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return error_response('UNAUTHORIZED', 'Authentication required', 401)
            if current_user.role != role:
                return error_response('ACCESS_DENIED', message, 403)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = _role_required(UserRole.ADMIN, 'Access denied - admins only')
driver_required = _role_required(UserRole.DRIVER, 'Access denied - drivers only')


def user_to_dict(user):
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'name': user.name,
        'phone': user.phone,
        'role': user.role.value,
        'assignedVehicleId': user.assigned_vehicle_id,
    }


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    identifier = (data.get('username') or data.get('email') or '').strip()
    password = data.get('password') or ''

    if not identifier or not password:
        return error_response('VALIDATION_ERROR', 'Username and password are required', 400)

    user = User.query.filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()

    if not user or not user.check_password(password):
        logger.warning(f"Failed login attempt for {identifier} from {request.remote_addr}")
        return error_response('INVALID_CREDENTIALS', 'Invalid username or password', 401)

    if not user.is_active:
        return error_response('ACCOUNT_INACTIVE', 'Account is inactive. Please contact admin.', 403)

    login_user(user)
    user.last_login = get_ist_time_naive()
    db.session.commit()
    logger.info(f"User {user.username} logged in")

    return success_response(user_to_dict(user), 'Login successful')


@auth_bp.route('/logout', methods=['POST'])
def logout():
    if current_user.is_authenticated:
        logger.info(f"User {current_user.username} logged out")
    logout_user()
    return success_response(message='Logged out')


@auth_bp.route('/me', methods=['GET'])
def me():
    if not current_user.is_authenticated:
        return error_response('UNAUTHORIZED', 'Authentication required', 401)
    return success_response(user_to_dict(current_user))
