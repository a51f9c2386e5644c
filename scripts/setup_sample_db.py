"""Utility that launches a sample MySQL Docker container for tierdb."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tierdb.config import CONFIG_FILE, DatabaseConfig, save_config

DEFAULT_CONTAINER = "tierdb-sample-db"
DEFAULT_PORT = 3307
DEFAULT_PASSWORD = "tierdb"
DEFAULT_DB = "tierdb_demo"
DEFAULT_USER = "tierdb"
DOCKER_IMAGE = "mysql:8.4"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"MYSQL_ROOT_PASSWORD={password}",
                "-e",
                f"MYSQL_DATABASE={database}",
                "-e",
                f"MYSQL_USER={user}",
                "-e",
                f"MYSQL_PASSWORD={password}",
                "-p",
                f"{port}:3306",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, password)


def wait_for_start(name: str, password: str, retries: int = 30, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", name, "mysqladmin", "ping", "-h", "127.0.0.1", f"-p{password}", "--silent"],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_data(name: str, database: str, user: str, password: str) -> None:
    sql = """
    CREATE TABLE IF NOT EXISTS abc_header_field_defaults (
        id INT AUTO_INCREMENT PRIMARY KEY,
        field_name VARCHAR(64) NOT NULL UNIQUE,
        field_value VARCHAR(255)
    );
    INSERT IGNORE INTO abc_header_field_defaults (field_name, field_value) VALUES
        ('currency', 'EUR'),
        ('terms', 'net 30');
    """.strip()

    run(
        ["docker", "exec", "-i", name, "mysql", f"-u{user}", f"-p{password}", database],
        input=sql,
    )


def update_config(path: Path, port: int, user: str, database: str, password: str) -> None:
    config = DatabaseConfig(host="127.0.0.1", port=port, db=database, user=user, password=password).with_dsn()
    target = save_config(config, path)
    print(f"Wrote connection settings to {target}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose MySQL on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="MySQL password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Config file to write")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
        seed_data(args.container, args.database, args.user, args.password)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(args.config, args.port, args.user, args.database, args.password)
    print(f"Sample database is ready. Run `python -m tierdb --config {args.config} -v` to check the backend.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
