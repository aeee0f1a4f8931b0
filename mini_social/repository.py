"""
Persistence helpers for users, posts and comments.

Reads of hot records go through the cache (see ``cache.py``); every write
invalidates the keys it affects. The database stays the system of record:
with the cache always missing, every function here returns the same data.
"""

from typing import Optional

from flask import current_app

from .db import execute_db, query_db

USER_TTL = 3600
POST_TTL = 1800
POST_LIST_TTL = 600
COMMENT_LIST_TTL = 1800
LATEST_POSTS_LIMIT = 50


def get_cache():
    return current_app.extensions["cache"]


def user_key(user_id) -> str:
    return f"user:{user_id}"


def post_key(post_id) -> str:
    return f"post:{post_id}"


def user_posts_key(user_id) -> str:
    return f"posts:user:{user_id}"


def post_comments_key(post_id) -> str:
    return f"comments:post:{post_id}"


LATEST_POSTS_KEY = "posts:all:latest"


# -----------------------
# Users
# -----------------------
def user_to_dict(row):
    if row is None:
        return None
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "handle": row["handle"],
        "avatar": row["avatar"],
        "bio": row["bio"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def find_user_by_id(user_id: int) -> Optional[dict]:
    cache = get_cache()
    cached = cache.get(user_key(user_id))
    if cached is not None:
        return cached
    user = user_to_dict(query_db("SELECT * FROM users WHERE id = ?", (user_id,), one=True))
    if user is not None:
        cache.set(user_key(user_id), user, USER_TTL)
    return user


def find_user_row_by_email(email: str):
    """Full row including password_hash; never cached."""
    return query_db("SELECT * FROM users WHERE email = ?", (email.strip().lower(),), one=True)


def find_user_by_handle(handle: str) -> Optional[dict]:
    return user_to_dict(query_db("SELECT * FROM users WHERE handle = ?", (handle,), one=True))


def find_user_by_google_id(google_id: str) -> Optional[dict]:
    return user_to_dict(query_db("SELECT * FROM users WHERE google_id = ?", (google_id,), one=True))


def unique_handle(seed: str) -> str:
    handle = seed
    counter = 1
    while find_user_by_handle(handle) is not None:
        handle = f"{seed}_{counter}"
        counter += 1
    return handle


def create_user(name, email, handle, password_hash=None, avatar=None, google_id=None) -> dict:
    user_id, _ = execute_db(
        "INSERT INTO users (name, email, password_hash, handle, avatar, google_id) VALUES (?, ?, ?, ?, ?, ?)",
        (name, email.strip().lower(), password_hash, handle, avatar, google_id),
    )
    get_cache().delete(user_key(user_id))
    return find_user_by_id(user_id)


def update_user(user_id: int, **fields) -> Optional[dict]:
    allowed = {k: v for k, v in fields.items() if k in ("name", "handle", "bio", "avatar", "google_id")}
    if allowed:
        assignments = ", ".join(f"{column} = ?" for column in allowed)
        execute_db(
            f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (*allowed.values(), user_id),
        )
        get_cache().delete(user_key(user_id))
    return find_user_by_id(user_id)


# -----------------------
# Posts
# -----------------------
def post_to_dict(row):
    if row is None:
        return None
    post_id = row["id"]
    liked_by = [r["user_id"] for r in query_db("SELECT user_id FROM likes WHERE post_id = ? ORDER BY id", (post_id,))]
    return {
        "id": post_id,
        "author_id": row["author_id"],
        "content": row["content"],
        "image": row["image"],
        "liked_by": liked_by,
        "likes_count": len(liked_by),
        "shares": row["shares"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def get_post(post_id: int) -> Optional[dict]:
    cache = get_cache()
    cached = cache.get(post_key(post_id))
    if cached is not None:
        return cached
    post = post_to_dict(query_db("SELECT * FROM posts WHERE id = ?", (post_id,), one=True))
    if post is not None:
        cache.set(post_key(post_id), post, POST_TTL)
    return post


def latest_posts() -> list:
    cache = get_cache()
    cached = cache.get(LATEST_POSTS_KEY)
    if cached is not None:
        return cached
    rows = query_db("SELECT * FROM posts ORDER BY created_at DESC, id DESC LIMIT ?", (LATEST_POSTS_LIMIT,))
    posts = [post_to_dict(r) for r in rows]
    cache.set(LATEST_POSTS_KEY, posts, POST_LIST_TTL)
    return posts


def user_posts(user_id: int) -> list:
    cache = get_cache()
    cached = cache.get(user_posts_key(user_id))
    if cached is not None:
        return cached
    rows = query_db("SELECT * FROM posts WHERE author_id = ? ORDER BY created_at DESC, id DESC", (user_id,))
    posts = [post_to_dict(r) for r in rows]
    cache.set(user_posts_key(user_id), posts, POST_TTL)
    return posts


def _invalidate_post(post_id: int, author_id: int):
    cache = get_cache()
    cache.delete(post_key(post_id))
    cache.delete(user_posts_key(author_id))
    cache.clear("posts:all:*")


def create_post(author_id: int, content: str, image: Optional[str] = None) -> dict:
    post_id, _ = execute_db(
        "INSERT INTO posts (author_id, content, image) VALUES (?, ?, ?)",
        (author_id, content, image),
    )
    _invalidate_post(post_id, author_id)
    return get_post(post_id)


def like_post(post_id: int, user_id: int) -> Optional[dict]:
    post = get_post(post_id)
    if post is None:
        return None
    execute_db("INSERT OR IGNORE INTO likes (user_id, post_id) VALUES (?, ?)", (user_id, post_id))
    _invalidate_post(post_id, post["author_id"])
    return get_post(post_id)


def unlike_post(post_id: int, user_id: int) -> Optional[dict]:
    post = get_post(post_id)
    if post is None:
        return None
    execute_db("DELETE FROM likes WHERE user_id = ? AND post_id = ?", (user_id, post_id))
    _invalidate_post(post_id, post["author_id"])
    return get_post(post_id)


def share_post(post_id: int) -> Optional[dict]:
    post = get_post(post_id)
    if post is None:
        return None
    execute_db("UPDATE posts SET shares = shares + 1 WHERE id = ?", (post_id,))
    _invalidate_post(post_id, post["author_id"])
    return get_post(post_id)


# -----------------------
# Comments
# -----------------------
def comment_to_dict(row):
    if row is None:
        return None
    return {
        "id": row["id"],
        "post_id": row["post_id"],
        "author_id": row["author_id"],
        "content": row["content"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def get_comment(comment_id: int) -> Optional[dict]:
    return comment_to_dict(query_db("SELECT * FROM comments WHERE id = ?", (comment_id,), one=True))


def post_comments(post_id: int) -> list:
    cache = get_cache()
    cached = cache.get(post_comments_key(post_id))
    if cached is not None:
        return cached
    rows = query_db("SELECT * FROM comments WHERE post_id = ? ORDER BY created_at DESC, id DESC", (post_id,))
    comments = [comment_to_dict(r) for r in rows]
    cache.set(post_comments_key(post_id), comments, COMMENT_LIST_TTL)
    return comments


def create_comment(post_id: int, author_id: int, content: str) -> dict:
    comment_id, _ = execute_db(
        "INSERT INTO comments (post_id, author_id, content) VALUES (?, ?, ?)",
        (post_id, author_id, content),
    )
    get_cache().delete(post_comments_key(post_id))
    return get_comment(comment_id)


def delete_comment(comment_id: int) -> bool:
    comment = get_comment(comment_id)
    if comment is None:
        return False
    execute_db("DELETE FROM comments WHERE id = ?", (comment_id,))
    get_cache().delete(post_comments_key(comment["post_id"]))
    return True
