import logging

from flask import Blueprint, current_app, g, jsonify, request

from . import repository
from .auth import (
    clear_session_cookie,
    get_session_store,
    handle_seed,
    hash_password,
    is_valid_email,
    is_valid_handle,
    is_valid_password,
    login_required,
    set_session_cookie,
    verify_password,
)
from .oauth import OAuthNotConfigured

logger = logging.getLogger("mini-social")

api = Blueprint("api", __name__, url_prefix="/api")

MAX_POST_LENGTH = 5000
MAX_COMMENT_LENGTH = 1000


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text(data, field, strip=True):
    """Field as a string; numbers are stringified, other JSON types count as missing."""
    value = data.get(field)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return ""
    return value.strip() if strip else value


def _start_session(payload, user_id, status=200):
    token = get_session_store().create(user_id)
    response = jsonify(payload)
    response.status_code = status
    return set_session_cookie(response, token)


@api.route("/ping", methods=["GET"])
def ping():
    return jsonify({
        "message": current_app.config["PING_MESSAGE"],
        "cache": current_app.extensions["cache"].backend,
    })


# -----------------------
# Auth
# -----------------------
@api.route("/auth/register", methods=["POST"])
def register():
    data = _json_body()
    name = _text(data, "name")
    email = _text(data, "email").lower()
    password = _text(data, "password", strip=False)
    confirm_password = _text(data, "confirm_password", strip=False)

    if not name or not email or not password or not confirm_password:
        return jsonify({"error": "All fields are required"}), 400
    if not is_valid_email(email):
        return jsonify({"error": "Invalid email format"}), 400
    if not is_valid_password(password):
        return jsonify({"error": "Password must be at least 8 characters"}), 400
    if password != confirm_password:
        return jsonify({"error": "Passwords do not match"}), 400
    if repository.find_user_row_by_email(email):
        return jsonify({"error": "Email already registered"}), 409

    user = repository.create_user(
        name=name,
        email=email,
        handle=repository.unique_handle(handle_seed(name)),
        password_hash=hash_password(password),
    )
    logger.info("User %s registered", user["id"])
    return _start_session({"user": user}, user["id"], status=201)


@api.route("/auth/login", methods=["POST"])
def login():
    data = _json_body()
    email = _text(data, "email").lower()
    password = _text(data, "password", strip=False)
    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    row = repository.find_user_row_by_email(email)
    if not row or not verify_password(row["password_hash"], password):
        return jsonify({"error": "Invalid email or password"}), 401

    return _start_session({"user": repository.user_to_dict(row)}, row["id"])


@api.route("/auth/logout", methods=["POST"])
def logout():
    get_session_store().revoke(request.cookies.get(current_app.config["SESSION_TOKEN_COOKIE"]))
    return clear_session_cookie(jsonify({"status": "logged_out"}))


@api.route("/auth/logout-all", methods=["POST"])
@login_required
def logout_everywhere():
    removed = get_session_store().revoke_all(g.current_user["id"])
    response = jsonify({"status": "logged_out", "sessions_revoked": removed})
    return clear_session_cookie(response)


@api.route("/auth/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": g.current_user})


@api.route("/auth/google", methods=["GET"])
def google_auth_url():
    try:
        url = current_app.extensions["oauth"].authorization_url()
    except OAuthNotConfigured:
        return jsonify({"error": "Google OAuth not configured"}), 500
    return jsonify({"url": url})


@api.route("/auth/google/callback", methods=["POST"])
def google_callback():
    data = _json_body()
    id_token = _text(data, "id_token")
    if not id_token:
        return jsonify({"error": "ID token is required"}), 400

    try:
        claims = current_app.extensions["oauth"].verify_id_token(id_token)
    except OAuthNotConfigured:
        return jsonify({"error": "Google OAuth not configured"}), 500
    if claims is None:
        return jsonify({"error": "Invalid token"}), 401

    user = repository.find_user_by_google_id(claims["sub"])
    if user is None:
        row = repository.find_user_row_by_email(claims["email"])
        if row is not None:
            user = repository.update_user(row["id"], google_id=claims["sub"])
        else:
            local_part = claims["email"].split("@")[0]
            user = repository.create_user(
                name=claims.get("name") or local_part,
                email=claims["email"],
                handle=repository.unique_handle(handle_seed(local_part)),
                avatar=claims.get("picture"),
                google_id=claims["sub"],
            )
            logger.info("User %s registered through Google", user["id"])

    return _start_session({"user": user}, user["id"])


# -----------------------
# Users
# -----------------------
@api.route("/users/<int:user_id>", methods=["GET"])
def get_user(user_id):
    user = repository.find_user_by_id(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user})


@api.route("/users/me", methods=["PUT"])
@login_required
def update_profile():
    data = _json_body()
    updates = {}
    for field in ("name", "bio", "avatar"):
        if field in data:
            updates[field] = _text(data, field)
    if "name" in updates and not updates["name"]:
        return jsonify({"error": "name cannot be empty"}), 400

    if "handle" in data:
        handle = _text(data, "handle")
        if not is_valid_handle(handle):
            return jsonify({"error": "handle must be 3-20 letters, digits or underscores"}), 400
        owner = repository.find_user_by_handle(handle)
        if owner and owner["id"] != g.current_user["id"]:
            return jsonify({"error": "Handle already taken"}), 409
        updates["handle"] = handle

    user = repository.update_user(g.current_user["id"], **updates)
    return jsonify({"user": user})


@api.route("/users/<int:user_id>/posts", methods=["GET"])
def get_user_posts(user_id):
    if not repository.find_user_by_id(user_id):
        return jsonify({"error": "User not found"}), 404
    return jsonify({"posts": repository.user_posts(user_id)})


# -----------------------
# Posts
# -----------------------
@api.route("/posts", methods=["POST"])
@login_required
def create_post():
    data = _json_body()
    content = _text(data, "content")
    image = _text(data, "image") or None
    if not content:
        return jsonify({"error": "content required"}), 400
    if len(content) > MAX_POST_LENGTH:
        return jsonify({"error": f"content must be at most {MAX_POST_LENGTH} characters"}), 400

    post = repository.create_post(g.current_user["id"], content, image)
    return jsonify({"post": post}), 201


@api.route("/posts", methods=["GET"])
def list_posts():
    return jsonify({"posts": repository.latest_posts()})


@api.route("/posts/<int:post_id>", methods=["GET"])
def get_post(post_id):
    post = repository.get_post(post_id)
    if not post:
        return jsonify({"error": "Post not found"}), 404
    return jsonify({"post": post})


@api.route("/posts/<int:post_id>/like", methods=["POST"])
@login_required
def like_post(post_id):
    post = repository.like_post(post_id, g.current_user["id"])
    if not post:
        return jsonify({"error": "Post not found"}), 404
    return jsonify({"status": "liked", "post": post})


@api.route("/posts/<int:post_id>/unlike", methods=["POST"])
@login_required
def unlike_post(post_id):
    post = repository.unlike_post(post_id, g.current_user["id"])
    if not post:
        return jsonify({"error": "Post not found"}), 404
    return jsonify({"status": "unliked", "post": post})


@api.route("/posts/<int:post_id>/share", methods=["POST"])
def share_post(post_id):
    post = repository.share_post(post_id)
    if not post:
        return jsonify({"error": "Post not found"}), 404
    return jsonify({"status": "shared", "post": post})


# -----------------------
# Comments
# -----------------------
@api.route("/posts/<int:post_id>/comments", methods=["GET"])
def list_comments(post_id):
    if not repository.get_post(post_id):
        return jsonify({"error": "Post not found"}), 404
    return jsonify({"comments": repository.post_comments(post_id)})


@api.route("/posts/<int:post_id>/comments", methods=["POST"])
@login_required
def create_comment(post_id):
    if not repository.get_post(post_id):
        return jsonify({"error": "Post not found"}), 404
    data = _json_body()
    content = _text(data, "content")
    if not content:
        return jsonify({"error": "content required"}), 400
    if len(content) > MAX_COMMENT_LENGTH:
        return jsonify({"error": f"content must be at most {MAX_COMMENT_LENGTH} characters"}), 400

    comment = repository.create_comment(post_id, g.current_user["id"], content)
    return jsonify({"comment": comment}), 201


@api.route("/comments/<int:comment_id>", methods=["DELETE"])
@login_required
def delete_comment(comment_id):
    comment = repository.get_comment(comment_id)
    if not comment:
        return jsonify({"error": "Comment not found"}), 404
    if comment["author_id"] != g.current_user["id"]:
        return jsonify({"error": "You can only delete your own comments"}), 403
    repository.delete_comment(comment_id)
    return jsonify({"status": "deleted"})
