"""Users blueprint: authentication, self-service profile and admin user management."""
import logging

from flask import Blueprint, current_app, g, request, url_for

from backend.tourbook.errors import AppError
from backend.tourbook.extensions import limiter
from backend.tourbook.middleware.auth import protect, restrict_to
from backend.tourbook.repositories import users_repo
from backend.tourbook.schemas import Role
from backend.tourbook.serializers import request_payload, success
from backend.tourbook.services import users as users_service
from backend.tourbook.services.auth import auth_service, reset_password
from backend.tourbook.services.resources import user_handlers

logger = logging.getLogger(__name__)

users_bp = Blueprint('users', __name__)

LOGOUT_COOKIE_SECONDS = 10


def _send_token(user, token, status=200):
    """Return the token in the body and as an HTTP-only cookie."""
    cfg = current_app.config
    response, status = success({'user': users_repo.public(user)}, status=status, token=token)
    response.set_cookie(
        cfg['JWT_COOKIE_NAME'],
        token,
        max_age=cfg['JWT_COOKIE_EXPIRES_IN_DAYS'] * 24 * 60 * 60,
        httponly=True,
        secure=bool(cfg.get('SESSION_COOKIE_SECURE')),
        samesite='Lax',
    )
    return response, status


@users_bp.route('/signup', methods=['POST'])
@limiter.limit("10 per hour")
def signup():
    user, token = auth_service.signup(request_payload(), url_for('web.account', _external=True))
    return _send_token(user, token, status=201)


@users_bp.route('/login', methods=['POST'])
@limiter.limit("20 per hour")
def login():
    data = request_payload()
    user, token = auth_service.login(data.get('email'), data.get('password'))
    return _send_token(user, token)


@users_bp.route('/logout', methods=['GET'])
def logout():
    cfg = current_app.config
    response, status = success()
    response.set_cookie(
        cfg['JWT_COOKIE_NAME'],
        cfg['JWT_LOGOUT_SENTINEL'],
        max_age=LOGOUT_COOKIE_SECONDS,
        httponly=True,
    )
    return response, status


@users_bp.route('/forgotPassword', methods=['POST'])
@limiter.limit("5 per hour")
def forgot_password():
    data = request_payload()
    reset_password.request_reset(
        data.get('email'),
        lambda token: url_for('users.reset_password_with_token', token=token, _external=True),
    )
    return success(message='Token sent to email!')


@users_bp.route('/resetPassword/<token>', methods=['PATCH'])
def reset_password_with_token(token):
    data = request_payload()
    user, session_token = reset_password.consume_reset(token, data.get('password'), data.get('passwordConfirm'))
    return _send_token(user, session_token)


@users_bp.route('/updateMyPassword', methods=['PATCH'])
@protect
def update_my_password():
    data = request_payload()
    user, token = auth_service.update_password(
        g.current_user,
        data.get('passwordCurrent'),
        data.get('password'),
        data.get('passwordConfirm'),
    )
    return _send_token(user, token)


@users_bp.route('/me', methods=['GET'])
@protect
def get_me():
    return success({'data': user_handlers.get_one(g.current_user['_id'])})


@users_bp.route('/updateMe', methods=['PATCH'])
@protect
def update_me():
    user = users_service.update_me(g.current_user, request_payload(), request.files.get('photo'))
    return success({'user': user})


@users_bp.route('/deleteMe', methods=['DELETE'])
@protect
def delete_me():
    users_service.delete_me(g.current_user)
    return success(status=204)


@users_bp.route('/', methods=['GET'])
@protect
@restrict_to(Role.ADMIN)
def list_users():
    result = user_handlers.get_all(request.args)
    return success({'data': result['data']}, results=result['results'])


@users_bp.route('/', methods=['POST'])
@protect
@restrict_to(Role.ADMIN)
def create_user():
    raise AppError("This route is not defined! Please use /signup instead", status=500, code="not_defined")


@users_bp.route('/<user_id>', methods=['GET'])
@protect
@restrict_to(Role.ADMIN)
def get_user(user_id):
    return success({'data': user_handlers.get_one(user_id)})


@users_bp.route('/<user_id>', methods=['PATCH'])
@protect
@restrict_to(Role.ADMIN)
def update_user(user_id):
    return success({'data': user_handlers.update_one(user_id, request_payload())})


@users_bp.route('/<user_id>', methods=['DELETE'])
@protect
@restrict_to(Role.ADMIN)
def delete_user(user_id):
    user_handlers.delete_one(user_id)
    return success(status=204)
