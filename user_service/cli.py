"""
Command-line interface for the user service.

Usage:
    user-service start --storage memory --port 10100
    user-service start --storage postgres --db-url postgresql://user@host/db --db-password secret
    user-service test health --addresses localhost:10100
    user-service test io --addresses localhost:10100,localhost:10101
    user-service version
"""
from __future__ import annotations

import argparse
import logging
import random
import sys
from typing import Dict, List, Optional, Set

from user_service.client import UserClient, UserClientError
from user_service.core.config import Settings
from user_service.core.logging import configure_logging
from user_service.version import __version__

logger = logging.getLogger("user_service.cli")


def get_user_id(i: int) -> str:
    return f"User-{i}"


def get_entity_id(i: int) -> str:
    return f"Entity-{i}"


def parse_addresses(value: str) -> List[str]:
    addrs = [a.strip() for a in value.split(",") if a.strip()]
    if not addrs:
        raise argparse.ArgumentTypeError("at least one address is required")
    return addrs


def positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1 (got {n})")
    return n


def build_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment, overridden by any flags given."""
    overrides = {
        "STORAGE_TYPE": args.storage,
        "DATABASE_URL": args.db_url,
        "DB_PASSWORD": args.db_password,
        "GCP_PROJECT_ID": args.gcp_project_id,
        "LOG_LEVEL": args.log_level,
        "SERVER_HOST": args.host,
        "SERVER_PORT": args.port,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def start(args: argparse.Namespace) -> int:
    import uvicorn

    from user_service.app import create_app

    cfg = build_settings(args)
    app = create_app(cfg)
    uvicorn.run(app, host=cfg.SERVER_HOST, port=cfg.SERVER_PORT, log_level=cfg.LOG_LEVEL.lower())
    return 0


def run_health_check(args: argparse.Namespace) -> int:
    failed = 0
    for addr in args.addresses:
        with UserClient(addr, timeout=args.timeout) as client:
            if client.health():
                logger.info(f"{addr} healthy")
            else:
                logger.error(f"{addr} unhealthy")
                failed += 1
    return 1 if failed else 0


def run_io_check(args: argparse.Namespace) -> int:
    """
    Add random (user, entity) pairs through random clients, then read each
    user's entities back and check they match what was added.
    """
    rng = random.Random(args.seed)
    clients = [UserClient(addr, timeout=args.timeout) for addr in args.addresses]
    user_entities: Dict[str, Set[str]] = {}

    try:
        for c in range(args.n_users):
            user_id = get_user_id(c)
            user_entities[user_id] = set()
            # a user cannot hold more distinct entities than exist
            n_entities = rng.randint(1, min(args.max_user_entities, args.n_entities))
            while len(user_entities[user_id]) < n_entities:
                entity_id = get_entity_id(rng.randrange(args.n_entities))
                if entity_id in user_entities[user_id]:
                    continue
                try:
                    rng.choice(clients).add_entity(user_id, entity_id)
                except UserClientError as e:
                    logger.error(f"adding entity failed: {e}", extra={"user_id": user_id, "entity_id": entity_id})
                    return 1
                logger.info("added entity", extra={"user_id": user_id, "entity_id": entity_id})
                user_entities[user_id].add(entity_id)

        for c in range(args.n_users):
            user_id = get_user_id(c)
            try:
                entity_ids = rng.choice(clients).get_entities(user_id)
            except UserClientError as e:
                logger.error(f"getting entities failed: {e}", extra={"user_id": user_id})
                return 1
            logger.info("got user entities", extra={"user_id": user_id, "n_entities": len(entity_ids)})
            if set(entity_ids) != user_entities[user_id]:
                logger.error("entities mismatch", extra={"user_id": user_id})
                return 1
    finally:
        for client in clients:
            client.close()

    return 0


def version(args: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="user-service", description="operate a User server")
    parser.add_argument("--log-level", default=None, help="log level")
    sub = parser.add_subparsers(dest="command", required=True)

    start_cmd = sub.add_parser("start", help="start a User server")
    start_cmd.add_argument("--host", default=None)
    start_cmd.add_argument("--port", type=int, default=None)
    start_cmd.add_argument("--storage", choices=["memory", "postgres", "datastore"], default=None)
    start_cmd.add_argument("--db-url", default=None, help="Postgres DB URL, including username")
    start_cmd.add_argument("--db-password", default=None, help="DB user's password")
    start_cmd.add_argument("--gcp-project-id", default=None, help="GCP project for Datastore storage")
    start_cmd.set_defaults(func=start)

    test_cmd = sub.add_parser("test", help="test one or more User servers")
    test_sub = test_cmd.add_subparsers(dest="test_command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--addresses", type=parse_addresses, required=True,
                       help="comma-separated host:port addresses")
        p.add_argument("--timeout", type=float, default=5.0, help="per-request timeout (seconds)")

    health_cmd = test_sub.add_parser("health", help="check server health")
    add_common(health_cmd)
    health_cmd.set_defaults(func=run_health_check)

    io_cmd = test_sub.add_parser("io", help="add and get random user-entity associations")
    add_common(io_cmd)
    io_cmd.add_argument("--n-users", type=positive_int, default=4)
    io_cmd.add_argument("--n-entities", type=positive_int, default=32)
    io_cmd.add_argument("--max-user-entities", type=positive_int, default=8)
    io_cmd.add_argument("--seed", type=int, default=0)
    io_cmd.set_defaults(func=run_io_check)

    version_cmd = sub.add_parser("version", help="print the version")
    version_cmd.set_defaults(func=version)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "start":
        configure_logging("development", args.log_level or "INFO")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
