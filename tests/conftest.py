"""Shared pytest fixtures for rowbind tests.

Every test gets its own SQLite file seeded with a small team/user/post schema:
a restricting foreign key (users -> teams), cascading ones (posts -> users,
memberships -> users/teams), a composite key (memberships) and a virtual
generated column (users.display_name). The record classes mapped onto those
tables are defined once here and handed to tests through the ``models`` fixture.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from rowbind import ActiveRecord, Children, Field, Parent
from rowbind.context import DatabaseContext
from rowbind.shared import paths
from rowbind.shared.config import AppConfig, load_config

SCHEMA = """
CREATE TABLE teams (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    created_at DATETIME
);
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    team_id INTEGER REFERENCES teams(id) ON DELETE RESTRICT,
    name VARCHAR(100) NOT NULL DEFAULT '',
    email VARCHAR(255),
    active BOOLEAN NOT NULL DEFAULT 1,
    score REAL,
    tags TEXT,
    settings JSON,
    created_at DATETIME,
    updated_at DATETIME,
    display_name TEXT GENERATED ALWAYS AS (upper(name)) VIRTUAL
);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    views INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE memberships (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    team_id INTEGER NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'member',
    PRIMARY KEY (user_id, team_id)
);
"""

SEED = """
INSERT INTO teams (id, name, created_at) VALUES
    (1, 'Core', '2024-01-02 03:04:05'),
    (2, 'Empty', NULL);
INSERT INTO users (id, team_id, name, email, active, score, tags, settings, created_at, updated_at) VALUES
    (1, 1, 'Ada', 'ada@example.com', 1, 9.5, 'a,b', '{"theme": "dark"}', '2024-01-02 03:04:05', NULL),
    (2, 1, 'Linus', NULL, 0, NULL, '', NULL, NULL, NULL),
    (3, NULL, 'Grace', 'grace@example.com', 1, 7.25, 'c', NULL, NULL, NULL);
INSERT INTO posts (id, user_id, title, views) VALUES
    (1, 1, 'Hello', 10),
    (2, 1, 'Again', 5),
    (3, 2, 'Hi', 0);
INSERT INTO memberships (user_id, team_id, role) VALUES
    (1, 1, 'owner'),
    (2, 1, 'member');
"""


class Team(ActiveRecord):
    TABLE_NAME = "teams"

    id = Field(int)
    name = Field()
    created_at = Field("datetime")

    users = Children("User", "team_id")


class User(ActiveRecord):
    TABLE_NAME = "users"

    id = Field(int)
    team_id = Field(int, shared=True)
    name = Field()
    email = Field()
    active = Field(bool)
    score = Field(float)
    tags = Field(list)
    settings = Field(dict)
    created_at = Field("datetime")
    updated_at = Field("datetime")
    display_name = Field()

    team = Parent("team_id", "Team")
    posts = Children("Post")


class Post(ActiveRecord):
    TABLE_NAME = "posts"

    id = Field(int)
    user_id = Field(int)
    title = Field()
    views = Field(int)

    author = Parent("user_id", "User")


class Membership(ActiveRecord):
    TABLE_NAME = "memberships"
    TABLE_KEY = ("user_id", "team_id")

    user_id = Field(int)
    team_id = Field(int)
    role = Field()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    """Create and seed the SQLite database used by the test."""

    path = tmp_path / "rowbind.db"
    connection = sqlite3.connect(path)
    try:
        connection.executescript(SCHEMA + SEED)
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture()
def config_factory(tmp_path: Path, db_path: Path) -> Callable[..., AppConfig]:
    """Build AppConfig objects for the seeded database with extra env overrides."""

    def _factory(**overrides: str) -> AppConfig:
        env = {
            paths.CONFIG_DIR_ENV: str(tmp_path / "config"),
            paths.DATABASE_PATH_ENV: str(db_path),
        }
        env.update(overrides)
        return load_config(env=env)

    return _factory


@pytest.fixture()
def app_config(config_factory: Callable[..., AppConfig]) -> AppConfig:
    return config_factory()


@pytest.fixture()
def context_factory(config_factory: Callable[..., AppConfig]) -> Iterator[Callable[..., DatabaseContext]]:
    """Open DatabaseContexts on demand; all of them are closed after the test."""

    opened: list[DatabaseContext] = []

    def _factory(**overrides: str) -> DatabaseContext:
        context = DatabaseContext.from_config(config_factory(**overrides))
        opened.append(context)
        return context

    yield _factory
    for context in opened:
        context.close()


@pytest.fixture()
def ctx(context_factory: Callable[..., DatabaseContext]) -> DatabaseContext:
    return context_factory()


@pytest.fixture()
def models() -> SimpleNamespace:
    """Record classes mapped onto the seeded tables."""

    return SimpleNamespace(Team=Team, User=User, Post=Post, Membership=Membership)
