"""Create sample databases and register them as sqldeck connections.

By default a SQLite file is seeded under the sqldeck data directory. With
`--postgres` a throwaway Postgres Docker container is started and seeded too.
"""

from __future__ import annotations

import argparse
import sqlite3
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqldeck.config import load_config
from sqldeck.credentials import FileCredentialStore
from sqldeck.errors import ConfigError
from sqldeck.models import ConnectionDraft, Dialect
from sqldeck.registry import ConnectionRegistry
from sqldeck.store import ConnectionStore

SQLITE_NAME = "SQLite Sample"
POSTGRES_NAME = "Docker Sample"
DEFAULT_CONTAINER = "sqldeck-sample-db"
DEFAULT_PORT = 5543
DEFAULT_PASSWORD = "sqldeck"
DEFAULT_DB = "sqldeck_demo"
DEFAULT_USER = "sqldeck"
DOCKER_IMAGE = "postgres:16-alpine"

SQLITE_SEED = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY,
    account_id INTEGER REFERENCES accounts(id),
    total REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
);
CREATE VIEW IF NOT EXISTS open_orders AS SELECT * FROM orders WHERE status = 'pending';
"""

POSTGRES_SEED = """
CREATE TABLE IF NOT EXISTS accounts (
    id SERIAL PRIMARY KEY,
    email TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT now()
);
CREATE TABLE IF NOT EXISTS orders (
    id SERIAL PRIMARY KEY,
    account_id INTEGER REFERENCES accounts(id),
    total NUMERIC(10,2) NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
);
INSERT INTO accounts (email) VALUES
    ('anna@example.com'),
    ('ben@example.com'),
    ('cara@example.com')
ON CONFLICT DO NOTHING;
INSERT INTO orders (account_id, total, status)
SELECT id, (random()*100)::numeric(10,2), 'complete'
FROM accounts
ON CONFLICT DO NOTHING;
""".strip()


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def seed_sqlite(path: Path, rows: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SQLITE_SEED)
        if conn.execute("SELECT count(*) FROM accounts").fetchone()[0] == 0:
            conn.executemany(
                "INSERT INTO accounts (email) VALUES (?)",
                [(f"user{n}@example.com",) for n in range(rows)],
            )
            conn.executemany(
                "INSERT INTO orders (account_id, total, status) VALUES (?, ?, ?)",
                [(n + 1, round(n * 1.5, 2), "pending" if n % 3 else "complete") for n in range(rows)],
            )
        conn.commit()
    finally:
        conn.close()
    print(f"Seeded {path}.")


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    existing = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    if existing.stdout.strip():
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker", "run", "-d", "--name", name,
                "-e", f"POSTGRES_PASSWORD={password}",
                "-e", f"POSTGRES_DB={database}",
                "-e", f"POSTGRES_USER={user}",
                "-p", f"{port}:5432",
                DOCKER_IMAGE,
            ]
        )
    for _ in range(15):
        if subprocess.run(["docker", "exec", name, "pg_isready", "-U", user], text=True).returncode == 0:
            break
        time.sleep(1.0)
    else:
        print("Warning: database did not report ready state; continuing anyway.")
    run(["docker", "exec", "-i", name, "psql", "-U", user, "-d", database, "-v", "ON_ERROR_STOP=1"], input=POSTGRES_SEED)


def register(registry: ConnectionRegistry, draft: ConnectionDraft, secret: str | None = None) -> None:
    if registry.find_by_name(draft.name) is not None:
        print(f"Connection '{draft.name}' already registered; leaving as-is.")
        return
    registry.create(draft, secret)
    print(f"Registered connection '{draft.name}'.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--rows", type=int, default=500, help="Rows to seed into the SQLite sample")
    parser.add_argument("--postgres", action="store_true", help="Also start a Postgres Docker container")
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    config = load_config()
    try:
        registry = ConnectionRegistry(
            ConnectionStore(config.connections_file),
            FileCredentialStore(config.credentials_file),
        )
    except ConfigError as exc:
        print(f"Cannot open saved connections: {exc}")
        return 1

    sample = config.data_dir / "sample.db"
    seed_sqlite(sample, args.rows)
    register(registry, ConnectionDraft(name=SQLITE_NAME, dialect=Dialect.SQLITE, path=str(sample)))

    if args.postgres:
        try:
            start_container(args.container, args.port, args.password, args.database, args.user)
        except FileNotFoundError:
            print("Docker is not installed or not on PATH.")
            return 1
        draft = ConnectionDraft(
            name=POSTGRES_NAME,
            dialect=Dialect.POSTGRES,
            host="localhost",
            port=args.port,
            database=args.database,
            user=args.user,
        )
        register(registry, draft, args.password)

    print("Sample data is ready. Launch `sqldeck` and press Ctrl+P to switch connection.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
