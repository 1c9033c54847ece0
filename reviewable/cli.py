"""
Reviewable: CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Build the reviewable type registry from ``[types.*]``.
  4. Open the database and run the engine operation.
  5. Report the result to stdout.

Install and run::

    pip install -e .
    reviewable --help
    reviewable init-db
    reviewable register-entity user 7
    reviewable register-target product 1
    reviewable submit product 1 --by user:7 --rating 4 --body "Solid."
    reviewable rating product 1
    reviewable reviewed product
    reviewable retract product 1 --by user:7

Reviewer tokens are ``<type>:<id>`` for registered entities, or an IP address.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer

app = typer.Typer(
    name="reviewable",
    help="Reviewable: rating aggregation and idempotent-review engine.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from reviewable.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from reviewable.utils.logging import configure_logging
    configure_logging(config.logging)


def _build_registry_or_exit(config):
    from reviewable.errors import InvalidConfigValueError
    from reviewable.registry import build_registry

    try:
        return build_registry(config.types)
    except InvalidConfigValueError as exc:
        typer.echo(f"[ERROR] Invalid reviewable type config: {exc}", err=True)
        raise typer.Exit(code=1)


@contextmanager
def _engine(config_path: Optional[str], db_path: Optional[str]) -> Iterator[Any]:
    """Yield a ``ReviewEngine`` on the configured database.

    Engine errors are reported as ``[ERROR]`` lines and exit code 1.
    """
    from reviewable.db.connection import get_connection
    from reviewable.engine.engine import ReviewEngine
    from reviewable.errors import ReviewableError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    registry = _build_registry_or_exit(config)

    try:
        with get_connection(
            db_path or config.database.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        ) as conn:
            yield ReviewEngine(conn, registry)
    except (ReviewableError, KeyError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


def parse_reviewer_token(token: str) -> dict[str, Any]:
    """Turn a ``type:id`` or IP token into engine identifiers.

    Raises:
        typer.BadParameter: If the token is neither.
    """
    from pydantic import ValidationError

    from reviewable.engine.resolver import is_ip
    from reviewable.models.reviewer import EntityRef

    token = token.strip()
    if is_ip(token):
        return {"ip": token}
    entity_type, sep, entity_id = token.partition(":")
    if not sep or not entity_type or not entity_id:
        raise typer.BadParameter(f"Reviewer must be '<type>:<id>' or an IP address, got '{token}'.")
    try:
        return {"by": EntityRef(entity_type=entity_type, entity_id=entity_id)}
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise typer.BadParameter(f"Invalid reviewer '{token}': {messages}") from exc


def _parse_fields(pairs: list[str]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Custom fields must be 'key=value', got '{pair}'.")
        fields[key.strip()] = value
    return fields


_DB_PATH_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from reviewable.db.connection import get_connection
    from reviewable.db.migrations import run_migrations
    from reviewable.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print full config as JSON."),
) -> None:
    """Validate the configuration file and print the resolved reviewable types.

    Exits with code 1 if the config or any type's scale fails validation.
    """
    config = _load_config_or_exit(config_path)
    registry = _build_registry_or_exit(config)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")
    typer.echo(f"  Reviewable types: {len(registry)}")
    for rtype in registry.list_types():
        cached = [
            name
            for name, on in (
                ("total_reviews", rtype.cache_fields.total),
                ("average_rating", rtype.cache_fields.average),
            )
            if on
        ]
        typer.echo(
            f"    {rtype.type_name}: scale={list(rtype.scale.values)} "
            f"precision={rtype.precision} accept_ip={rtype.accept_ip} "
            f"reviewers={list(rtype.reviewer_types) or 'any'} "
            f"cached={cached or 'none'}"
        )

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("register-entity")
def register_entity(
    entity_type: str = typer.Argument(..., help="Entity type, e.g. user."),
    entity_id: str = typer.Argument(..., help="Entity id."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Register an entity so it can act as a reviewer."""
    with _engine(config_path, db_path) as engine:
        ref = engine.register_entity(entity_type, entity_id, display_name=name)
    typer.echo(f"[OK] Entity registered: {ref}")


@app.command("register-target")
def register_target(
    target_type: str = typer.Argument(..., help="Reviewable type, e.g. product."),
    target_id: str = typer.Argument(..., help="Target id."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Register a reviewable target (initializes its cached stats)."""
    with _engine(config_path, db_path) as engine:
        ref = engine.register_target(target_type, target_id, display_name=name)
    typer.echo(f"[OK] Target registered: {ref}")


@app.command("submit")
def submit(
    target_type: str = typer.Argument(..., help="Reviewable type."),
    target_id: str = typer.Argument(..., help="Target id."),
    by: str = typer.Option(..., "--by", help="Reviewer: '<type>:<id>' or an IP address."),
    rating: Optional[str] = typer.Option(None, "--rating", help="Rating on the type's scale."),
    body: Optional[str] = typer.Option(None, "--body", help="Review text."),
    field: list[str] = typer.Option([], "--field", help="Custom field 'key=value'. Repeatable."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Create or update a review. Re-submitting by the same reviewer updates it."""
    from reviewable.models.target import TargetRef

    payload: dict[str, Any] = {**_parse_fields(field), **parse_reviewer_token(by)}
    if rating is not None:
        payload["rating"] = rating
    if body is not None:
        payload["body"] = body

    with _engine(config_path, db_path) as engine:
        target = TargetRef(target_type=target_type, target_id=target_id)
        review = engine.submit(target, payload)
        stats = engine.stats(target)

    typer.echo(f"[OK] Review #{review.review_id} by {review.reviewer} on {target}")
    typer.echo(f"  Rating:          {review.rating}")
    typer.echo(f"  Total reviews:   {stats.total_reviews}")
    typer.echo(f"  Average rating:  {stats.average_rating}")


@app.command("retract")
def retract(
    target_type: str = typer.Argument(..., help="Reviewable type."),
    target_id: str = typer.Argument(..., help="Target id."),
    by: str = typer.Option(..., "--by", help="Reviewer: '<type>:<id>' or an IP address."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Remove a reviewer's review of a target."""
    from reviewable.models.target import TargetRef

    identifiers = parse_reviewer_token(by)
    with _engine(config_path, db_path) as engine:
        target = TargetRef(target_type=target_type, target_id=target_id)
        engine.retract(target, identifiers)
        stats = engine.stats(target)

    typer.echo(f"[OK] Review by {by} on {target} retracted.")
    typer.echo(f"  Total reviews:   {stats.total_reviews}")
    typer.echo(f"  Average rating:  {stats.average_rating}")


@app.command("rating")
def rating(
    target_type: str = typer.Argument(..., help="Reviewable type."),
    target_id: str = typer.Argument(..., help="Target id."),
    by: Optional[str] = typer.Option(None, "--by", help="Restrict the average to one reviewer."),
    recalculate: bool = typer.Option(False, "--recalculate", help="Bypass cached stats."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Print the aggregate rating of a target."""
    from reviewable.models.target import TargetRef

    identifiers = parse_reviewer_token(by) if by else None
    with _engine(config_path, db_path) as engine:
        target = TargetRef(target_type=target_type, target_id=target_id)
        stats = engine.stats(target, recalculate=recalculate)
        average_by = engine.average_rating_by(target, identifiers) if identifiers else None

    typer.echo(f"Rating for {target}")
    typer.echo(f"  Total reviews:   {stats.total_reviews}")
    typer.echo(f"  Average rating:  {stats.average_rating}")
    if average_by is not None:
        typer.echo(f"  Average by {by}: {average_by}")


@app.command("reviews")
def list_reviews(
    target_type: str = typer.Argument(..., help="Reviewable type."),
    target_id: str = typer.Argument(..., help="Target id."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List all reviews of a target, oldest first."""
    from reviewable.models.target import TargetRef

    with _engine(config_path, db_path) as engine:
        target = TargetRef(target_type=target_type, target_id=target_id)
        reviews = engine.reviews_of(target)

    if not reviews:
        typer.echo(f"No reviews for {target}.")
        return

    typer.echo(f"{len(reviews)} review(s) for {target}:")
    for review in reviews:
        extra = f" {json.dumps(review.extra, sort_keys=True)}" if review.extra else ""
        typer.echo(
            f"  #{review.review_id} {review.reviewer} rating={review.rating} "
            f"body={review.body!r}{extra}"
        )


@app.command("reviewed")
def reviewed(
    target_type: str = typer.Argument(..., help="Reviewable type."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List targets of one type that have at least one review."""
    with _engine(config_path, db_path) as engine:
        targets = engine.reviewed_targets(target_type)
        stats = [engine.stats(target) for target in targets]

    if not targets:
        typer.echo(f"No reviewed {target_type} targets.")
        return

    typer.echo(f"{len(targets)} reviewed {target_type} target(s):")
    for target, target_stats in zip(targets, stats):
        typer.echo(
            f"  {target} total={target_stats.total_reviews} "
            f"average={target_stats.average_rating}"
        )


if __name__ == "__main__":
    app()
