"""
rpgf/cli.py: Command-line interface for operating an RPGF deployment.

Usage:
    python -m rpgf init-db                          # create tables
    python -m rpgf serve --port 8000                # run the HTTP API
    python -m rpgf results ROUND_ID --user-id ID    # print (or recalculate) results
    python -m rpgf force-state SLUG voting          # testing only: pin a round's phase

Configuration comes from the environment (see rpgf.config.config_from_env),
after loading ./.env or the file given with --env-file.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from rpgf.errors import RPGFError


# ── .env loader ───────────────────────────────────────────────────────────────

def _load_dotenv(env_file: str | None = None) -> dict[str, str]:
    """Copy KEY=VALUE lines from env_file (default ./.env) into os.environ.

    Variables already set in the environment win. Returns what was loaded.
    """
    path = Path(env_file or ".env")
    if not path.is_file():
        return {}

    loaded: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#") or key in os.environ:
            continue
        os.environ[key] = loaded[key] = value.strip().strip("\"'")
    return loaded


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once, with timestamps."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s: %(message)s"
    logging.basicConfig(level=numeric, format=fmt, datefmt="%H:%M:%S", stream=sys.stderr)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


logger = logging.getLogger("rpgf.cli")


def _prepare(args: argparse.Namespace):
    """Shared preamble: .env, logging, config, services."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)

    from rpgf.config import config_from_env
    from rpgf.core import build_services

    return build_services(config_from_env())


# ── Subcommand: init-db ───────────────────────────────────────────────────────

def cmd_init_db(args: argparse.Namespace) -> int:
    services = _prepare(args)
    services.database.create_all()
    print("Database schema is up to date.")
    return 0


# ── Subcommand: serve ─────────────────────────────────────────────────────────

def cmd_serve(args: argparse.Namespace) -> int:
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    from rpgf.api.endpoints import create_app

    services = _prepare(args)
    services.database.create_all()
    app = create_app(services)

    logger.info("Serving RPGF API on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


# ── Subcommand: results ───────────────────────────────────────────────────────

def cmd_results(args: argparse.Namespace) -> int:
    """Print a round's results, optionally recalculating them first."""
    services = _prepare(args)

    if args.recalculate:
        results = services.results.recalculate_results(args.round_id, args.method, args.user_id)
    else:
        results = services.results.get_results(args.round_id, args.user_id)

    if not results:
        print("No results stored for this round.")
        return 0

    exported = services.applications.export_applications(args.round_id, args.user_id, "json")
    names = {a["id"]: a["projectName"] for a in exported}
    print()
    print("=" * 60)
    print(f"  RESULTS ({results[0].method})")
    print("=" * 60)
    for rank, r in enumerate(results, start=1):
        print(f"  {rank:>3}. {names.get(r.application_id, r.application_id):<40} {r.score:>10.2f}")
    print("=" * 60)
    return 0


# ── Subcommand: force-state ───────────────────────────────────────────────────

def cmd_force_state(args: argparse.Namespace) -> int:
    """Testing only: pin a round's phase (requires ENABLE_DANGEROUS_TEST_ROUTES)."""
    from rpgf.models import RoundPhase

    services = _prepare(args)
    phase = None if args.state == "none" else RoundPhase(args.state)
    round_ = services.rounds.force_round_phase(args.slug, phase)
    print(f"Round '{round_.slug}' is now {services.rounds.current_phase(round_.id).value}.")
    return 0


# ── Argument parser ───────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpgf",
        description="RPGF round core: database setup, HTTP API and results tooling.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables in the configured database
  RPGF_DATABASE_URL=postgresql+psycopg://localhost/rpgf python -m rpgf init-db

  # Serve the API locally
  python -m rpgf serve --host 127.0.0.1 --port 8000

  # Recalculate a round's results with the sum method
  python -m rpgf results <round-id> --user-id <admin-id> --recalculate --method sum
        """,
    )

    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: ./.env)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    p_init = subparsers.add_parser("init-db", help="Create all tables that do not exist yet")
    p_init.set_defaults(func=cmd_init_db)

    p_serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    p_results = subparsers.add_parser("results", help="Print a round's results")
    p_results.add_argument("round_id", metavar="ROUND_ID")
    p_results.add_argument(
        "--user-id", required=True, metavar="ID",
        help="Acting user; must be a round admin to recalculate or read unpublished results",
    )
    p_results.add_argument(
        "--recalculate", action="store_true",
        help="Recalculate from ballots before printing (round must be in its results phase)",
    )
    p_results.add_argument(
        "--method", default=None, choices=["sum", "avg", "median"],
        help="Aggregation method (default: RPGF_DEFAULT_RESULTS_METHOD or median)",
    )
    p_results.set_defaults(func=cmd_results)

    p_force = subparsers.add_parser(
        "force-state",
        help="Testing only: override a round's phase (needs ENABLE_DANGEROUS_TEST_ROUTES=true)",
    )
    p_force.add_argument("slug", metavar="SLUG")
    p_force.add_argument(
        "state", metavar="STATE",
        choices=["draft", "upcoming", "intake", "voting", "results", "closed", "none"],
        help="Target phase, or 'none' to clear the override",
    )
    p_force.set_defaults(func=cmd_force_state)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except RPGFError as exc:
        logger.error("%s", exc.message)
        return 2


if __name__ == "__main__":
    sys.exit(main())
