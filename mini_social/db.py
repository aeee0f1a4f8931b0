import logging
import sqlite3

import click
from flask import current_app, g
from flask.cli import with_appcontext

logger = logging.getLogger("mini-social.db")

SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT,
    handle TEXT UNIQUE NOT NULL,
    avatar TEXT,
    bio TEXT DEFAULT '',
    google_id TEXT UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    author_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    image TEXT,
    shares INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(author_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_posts_author ON posts(author_id, created_at);

CREATE TABLE IF NOT EXISTS likes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    post_id INTEGER NOT NULL,
    UNIQUE(user_id, post_id),
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    post_id INTEGER NOT NULL,
    author_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(author_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id, created_at);

-- created_at / expires_at are unix timestamps (seconds)
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT UNIQUE NOT NULL,
    user_id INTEGER NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
"""


def get_db():
    """
    Returns the sqlite3.Connection for the current app context.
    check_same_thread=False allows multi-threaded WSGI servers (sqlite still
    has concurrency limits).
    """
    if "db" not in g:
        conn = sqlite3.connect(current_app.config["DATABASE"], check_same_thread=False)
        conn.row_factory = sqlite3.Row
        cur = conn.cursor()
        # Performance / integrity pragmas suitable for many small requests
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        cur.close()
        g.db = conn
    return g.db


def close_db(exc=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def query_db(query, args=(), one=False):
    cur = get_db().execute(query, args)
    rv = cur.fetchall()
    cur.close()
    return (rv[0] if rv else None) if one else rv


def execute_db(query, args=()):
    """Run a write statement and commit. Returns (lastrowid, rowcount)."""
    conn = get_db()
    cur = conn.execute(query, args)
    conn.commit()
    result = (cur.lastrowid, cur.rowcount)
    cur.close()
    return result


def init_db():
    db = get_db()
    db.executescript(SCHEMA)
    db.commit()
    logger.info("Database initialized/ready at %s", current_app.config["DATABASE"])


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create the tables if they do not exist yet."""
    init_db()
    click.echo(f"Database initialized at {current_app.config['DATABASE']}")


@click.command("purge-sessions")
@with_appcontext
def purge_sessions_command():
    """Delete every expired session row."""
    removed = current_app.extensions["sessions"].purge_expired()
    click.echo(f"Removed {removed} expired session(s)")


def init_app(app):
    app.teardown_appcontext(close_db)
    app.cli.add_command(init_db_command)
    app.cli.add_command(purge_sessions_command)
