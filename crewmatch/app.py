import argparse
import json
from datetime import date
from pathlib import Path
from typing import Optional

from .env import load_env

from . import __version__
from .availability import AvailabilityEngine
from .booking import BookingCoordinator
from .cache import TTLCache
from .config import Settings
from .distance import DistanceService
from .errors import CrewmatchError
from .logger import get_logger
from .models import AssignmentCommand
from .recommend import RecommendationOrchestrator
from .retry import CircuitBreaker
from .routing import RoutingClient
from .schema import parse_date, parse_instant, validate_directory
from .storage import InMemoryDirectory, SqlAssignmentStore, SqlAuditStore, SqlWeightsStore
from .weights import FactorWeights, RotationConfig, TIE_BREAKERS


def _load_json(path: Path) -> dict:
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _db_path(args: argparse.Namespace, settings: Settings) -> Path:
    return Path(args.db) if getattr(args, "db", None) else settings.db_path


def build_distance_service(settings: Settings) -> DistanceService:
    client: Optional[RoutingClient] = None
    if settings.routing_enabled:
        client = RoutingClient(
            base_url=settings.routing_url,
            api_key=settings.routing_api_key,
            timeout=settings.routing_timeout,
            attempts=settings.routing_retries,
            breaker=CircuitBreaker(
                failure_threshold=settings.breaker_threshold,
                recovery_timeout=settings.breaker_open_seconds,
            ),
        )
    return DistanceService(
        client=client,
        cache=TTLCache(ttl_seconds=settings.cache_ttl_seconds),
        average_speed_kmh=settings.average_speed_kmh,
        bucket_minutes=settings.cache_bucket_minutes,
        batch_size=settings.routing_batch,
    )


def _directory_and_store(args: argparse.Namespace, settings: Settings):
    data = _load_json(Path(args.data))
    directory = InMemoryDirectory.from_dict(data)
    db_path = _db_path(args, settings)
    store = SqlAssignmentStore(db_path)
    store.seed(directory.assignments)
    return directory, store, db_path


def cmd_recommend(args: argparse.Namespace, settings: Settings) -> None:
    directory, store, db_path = _directory_and_store(args, settings)
    orchestrator = RecommendationOrchestrator(
        directory=directory,
        assignments=store,
        weights_store=SqlWeightsStore(db_path),
        distance=build_distance_service(settings),
        audit=SqlAuditStore(db_path),
        settings=settings,
    )
    desired: Optional[date] = parse_date(args.date, "--date") if args.date else None
    response = orchestrator.get_recommendations(args.job, desired_date=desired, max_results=args.max_results)

    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
        return

    print(f"Request: {response.request_id} (weights v{response.config_version})")
    if not response.recommendations:
        print(response.message)
        return
    for rec in response.recommendations:
        print(f"{rec.contractor_id}  score={rec.final_score:.2f}  eta={rec.eta_minutes:.0f}m ({rec.eta_source})")
        print(f"  {rec.rationale}")
        for slot in rec.suggested_slots:
            print(f"  - [{slot.kind}] {slot.start_utc.isoformat()} -> {slot.end_utc.isoformat()}")
    if response.degraded:
        print("Note: some travel times are straight-line estimates.")


def cmd_assign(args: argparse.Namespace, settings: Settings) -> None:
    directory, store, db_path = _directory_and_store(args, settings)
    # Same travel buffers as the recommend command
    engine = AvailabilityEngine(eta_fn=DistanceService(average_speed_kmh=settings.average_speed_kmh).leg_eta)
    coordinator = BookingCoordinator(directory, store, engine=engine, audit=SqlAuditStore(db_path))
    command = AssignmentCommand(
        job_id=args.job,
        contractor_id=args.contractor,
        start_utc=parse_instant(args.start, "--start"),
        end_utc=parse_instant(args.end, "--end"),
        source=args.source,
        audit_id=args.audit_id,
    )
    result = coordinator.try_assign(command)
    print(json.dumps(result.to_dict(), indent=2))
    if result.status != "committed":
        raise SystemExit(3)


def cmd_validate(args: argparse.Namespace, settings: Settings) -> None:
    data = _load_json(Path(args.data))
    errors = validate_directory(data)
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)
    print("Valid")


def cmd_weights(args: argparse.Namespace, settings: Settings) -> None:
    store = SqlWeightsStore(_db_path(args, settings))

    if args.action == "show":
        print(json.dumps(store.active().to_dict(), indent=2))
    elif args.action == "history":
        for config in store.history():
            w = config.weights
            print(
                f"v{config.version}  availability={w.availability} rating={w.rating} "
                f"distance={w.distance}  created={config.created_at.isoformat() if config.created_at else '-'}"
            )
    elif args.action == "publish":
        current = store.active()
        weights = FactorWeights(
            availability=args.availability if args.availability is not None else current.weights.availability,
            rating=args.rating if args.rating is not None else current.weights.rating,
            distance=args.distance if args.distance is not None else current.weights.distance,
        )
        rotation = RotationConfig(
            enabled=False if args.no_rotation else current.rotation.enabled,
            boost=args.boost if args.boost is not None else current.rotation.boost,
            under_utilization_threshold=(
                args.threshold if args.threshold is not None
                else current.rotation.under_utilization_threshold
            ),
        )
        tie_breakers = (
            tuple(t.strip() for t in args.tie_breakers.split(",") if t.strip())
            if args.tie_breakers else current.tie_breakers
        )
        config = store.publish(weights, tie_breakers, rotation)
        print(f"Published weights v{config.version}")
    elif args.action == "rollback":
        config = store.rollback(args.target_version)
        print(f"Re-published v{args.target_version} as v{config.version}")


def main():
    # Load .env if present (CREWMATCH_ROUTING_API_KEY, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="crewmatch", description="Contractor recommendation and booking CLI")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    rec = subparsers.add_parser("recommend", help="Rank contractors for a job")
    rec.add_argument("--data", required=True, help="Directory JSON with contractors, jobs and assignments")
    rec.add_argument("--job", required=True, help="Job id")
    rec.add_argument("--date", help="Desired date YYYY-MM-DD (searches the whole day in the job's timezone)")
    rec.add_argument("--max-results", type=int, default=10, help="Number of recommendations (default 10, max 50)")
    rec.add_argument("--json", action="store_true", help="Print the full response as JSON")
    rec.add_argument("--db", help="SQLite database path (default: CREWMATCH_DB_PATH)")
    rec.set_defaults(func=cmd_recommend)

    asg = subparsers.add_parser("assign", help="Book a contractor for a job")
    asg.add_argument("--data", required=True, help="Directory JSON with contractors, jobs and assignments")
    asg.add_argument("--job", required=True, help="Job id")
    asg.add_argument("--contractor", required=True, help="Contractor id")
    asg.add_argument("--start", required=True, help="Slot start, ISO-8601 with offset")
    asg.add_argument("--end", required=True, help="Slot end, ISO-8601 with offset")
    asg.add_argument("--source", default="auto", choices=["auto", "manual"], help="Booking source")
    asg.add_argument("--audit-id", help="Recommendation request id this booking came from")
    asg.add_argument("--db", help="SQLite database path (default: CREWMATCH_DB_PATH)")
    asg.set_defaults(func=cmd_assign)

    val = subparsers.add_parser("validate", help="Validate a directory JSON document")
    val.add_argument("--data", required=True, help="Directory JSON to check")
    val.set_defaults(func=cmd_validate)

    wts = subparsers.add_parser("weights", help="Show, publish or roll back scoring weights")
    wts.add_argument("action", choices=["show", "history", "publish", "rollback"])
    wts.add_argument("--availability", type=float, help="Availability weight (publish)")
    wts.add_argument("--rating", type=float, help="Rating weight (publish)")
    wts.add_argument("--distance", type=float, help="Distance weight (publish)")
    wts.add_argument("--boost", type=float, help="Rotation boost (publish)")
    wts.add_argument("--threshold", type=float, help="Under-utilization threshold (publish)")
    wts.add_argument("--no-rotation", action="store_true", help="Disable rotation (publish)")
    wts.add_argument("--tie-breakers", help=f"Comma-separated order from: {', '.join(TIE_BREAKERS)}")
    wts.add_argument("--to", dest="target_version", type=int, help="Version to roll back to")
    wts.add_argument("--db", help="SQLite database path (default: CREWMATCH_DB_PATH)")
    wts.set_defaults(func=cmd_weights)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            settings = Settings.from_env()
        except CrewmatchError as e:
            raise SystemExit(f"Configuration error: {e}")
        logger = get_logger()
        logger.set_level(settings.log_level)
        logger.set_log_dir(settings.log_dir)
        if args.func is cmd_weights and args.action == "rollback" and args.target_version is None:
            parser.error("weights rollback needs --to VERSION")
        try:
            args.func(args, settings)
        except CrewmatchError as e:
            raise SystemExit(f"Error: {e}")
        finally:
            logger.log_metrics_summary()
        return

    parser.print_help()


if __name__ == "__main__":
    main()
