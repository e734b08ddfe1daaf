import argparse
import asyncio
import atexit
import json
import logging
from dataclasses import asdict

from tqdm import tqdm

from . import config
from .database import (
    SQLiteStore, close_pool, database_stats, delete_watch_action, ensure_profile, follow,
    get_db, init_db, parse_timestamp_naive, record_watch_action, unfollow, upsert_rating,
    upsert_show, utcnow,
)
from .feed import format_time_ago, get_following_activity
from .home_picks import get_home_picks
from .models import DeckMode, Rating, Show, WatchActionKind
from .recommender import get_personalized_recommendations
from .shelves import fetch_inspiration_shelves
from .similarity import find_similar_users
from .tmdb import CatalogError, TMDBClient

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _current_user(args: argparse.Namespace) -> str | None:
    try:
        return config.resolve_user_id(config.load_settings(), getattr(args, "user", None))
    except config.NotAuthenticatedError as e:
        logger.error(f"{e}. Pass --user or set SHOWRECO_DEV_MODE=1")
        return None


def _catalog() -> TMDBClient:
    settings = config.load_settings()
    return TMDBClient(api_key=settings.tmdb_api_key, base_url=settings.tmdb_base_url)


def _emit_json(payload) -> None:
    logger.info(json.dumps(payload, indent=2, default=str))


def cmd_init(args: argparse.Namespace) -> None:
    """Create the database schema."""
    init_db()
    logger.info("Database initialized")


def _rating_from_dict(entry: dict) -> Rating:
    created_at = entry.get("created_at")
    return Rating(
        user_id=entry["user_id"],
        show_id=str(entry["show_id"]),
        enjoyment=float(entry["enjoyment"]),
        hook=entry.get("hook"),
        consistency=entry.get("consistency"),
        payoff=entry.get("payoff"),
        heat=entry.get("heat"),
        recommend=entry.get("recommend"),
        tags=entry.get("tags") or [],
        created_at=parse_timestamp_naive(created_at) if created_at else utcnow(),
    )


def cmd_import(args: argparse.Namespace) -> None:
    """Import profiles, shows, ratings, follows and watch actions from JSON."""
    with open(args.file, 'r') as f:
        data = json.load(f)

    init_db()

    with get_db() as conn:
        for profile in data.get('profiles', []):
            if profile.get('username'):
                conn.execute(
                    "INSERT INTO profiles (id, username) VALUES (?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET username = excluded.username",
                    (profile['id'], profile['username']),
                )
            else:
                ensure_profile(profile['id'], profile['email'])
        if 'profiles' in data:
            logger.info(f"Imported {len(data['profiles'])} profiles")

        for show in data.get('shows', []):
            upsert_show(Show(
                id=str(show['id']),
                title=show.get('title') or 'Unknown',
                poster_path=show.get('poster_path'),
                overview=show.get('overview') or '',
                first_air_date=show.get('first_air_date'),
            ))
        if 'shows' in data:
            logger.info(f"Imported {len(data['shows'])} shows")

        ratings = data.get('ratings', [])
        for entry in tqdm(ratings, desc="Ratings", disable=not ratings):
            upsert_rating(_rating_from_dict(entry))
        if ratings:
            logger.info(f"Imported {len(ratings)} ratings")

        for edge in data.get('follows', []):
            follow(edge['follower_id'], edge['followee_id'])

        for action in data.get('watch_actions', []):
            created_at = action.get('created_at')
            record_watch_action(
                action['user_id'],
                str(action['show_id']),
                action['action'],
                parse_timestamp_naive(created_at) if created_at else None,
            )

    logger.info(f"Import completed from {args.file}")


def cmd_rate(args: argparse.Namespace) -> None:
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    upsert_rating(Rating(
        user_id=user_id,
        show_id=args.show_id,
        enjoyment=args.enjoyment,
        hook=args.hook,
        consistency=args.consistency,
        payoff=args.payoff,
        heat=args.heat,
        recommend=args.recommend,
        tags=args.tags or [],
        created_at=utcnow(),
    ))
    logger.info(f"Rated {args.show_id}: {args.enjoyment:.1f}")


def cmd_follow(args: argparse.Namespace) -> None:
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    if args.unfollow:
        unfollow(user_id, args.followee)
        logger.info(f"Unfollowed {args.followee}")
        return
    try:
        created = follow(user_id, args.followee)
    except ValueError as e:
        logger.error(str(e))
        return
    logger.info(f"Now following {args.followee}" if created else f"Already following {args.followee}")


def cmd_action(args: argparse.Namespace) -> None:
    """Record (or undo) a swipe action on a show."""
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    try:
        if args.undo:
            delete_watch_action(user_id, args.show_id, args.action)
            logger.info(f"Removed '{args.action}' for {args.show_id}")
        else:
            record_watch_action(user_id, args.show_id, args.action)
            logger.info(f"Recorded '{args.action}' for {args.show_id}")
    except ValueError as e:
        logger.error(str(e))


def cmd_recommend(args: argparse.Namespace) -> None:
    """Personalized ranking from similar users."""
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    recs = get_personalized_recommendations(SQLiteStore(), user_id, args.mode)[:args.limit]

    if args.format == 'json':
        _emit_json([asdict(r) for r in recs])
        return

    if not recs:
        logger.info("No recommendations yet. Rate at least 3 shows and follow a few people.")
        return
    logger.info(f"\nTop {len(recs)} shows for {user_id} ({args.mode.value}):")
    logger.info("-" * 50)
    for i, r in enumerate(recs, 1):
        logger.info(f"{i:2}. {r.title} - Score: {r.score:.1f}")
        logger.info(f"      {r.explanation}")


def cmd_home(args: argparse.Namespace) -> None:
    """Home deck with fallback tiers."""
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    with _catalog() as catalog:
        picks = get_home_picks(SQLiteStore(), catalog, user_id, args.mode)

    if args.format == 'json':
        _emit_json([asdict(p) for p in picks])
        return

    logger.info(f"\nHome picks ({len(picks)}):")
    for i, p in enumerate(picks, 1):
        percent = f" | {p.overall_percent}% recommend" if p.overall_percent is not None else ""
        logger.info(f"{i:2}. {p.title} - {p.score:.1f}{percent}")
        logger.info(f"      {p.explanation}")


def cmd_shelves(args: argparse.Namespace) -> None:
    """Inspiration shelves, fetched concurrently."""
    user_id = _current_user(args)
    init_db()
    with _catalog() as catalog:
        shelves = asyncio.run(fetch_inspiration_shelves(SQLiteStore(), catalog, user_id))

    if args.format == 'json':
        _emit_json({name: [asdict(item) for item in items] for name, items in shelves.items()})
        return

    for name, items in shelves.items():
        logger.info(f"\n{name.replace('_', ' ').title()}:")
        if not items:
            logger.info("  (empty)")
        for item in items:
            logger.info(f"  {item.title} [{item.media_type}] - {item.label}")


def cmd_similar_users(args: argparse.Namespace) -> None:
    """Users whose enjoyment scores track yours."""
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    store = SQLiteStore()
    matches = find_similar_users(user_id, store.fetch_ratings(), store.fetch_usernames(), limit=args.limit)

    if args.format == 'json':
        _emit_json([asdict(m) for m in matches])
        return

    if not matches:
        logger.info("No taste matches yet. Rate at least 3 shows.")
        return
    logger.info("\nTaste matches:")
    logger.info("-" * 50)
    for m in matches:
        logger.info(f"  @{m.username}: {m.similarity:.2f} similarity")


def cmd_activity(args: argparse.Namespace) -> None:
    user_id = _current_user(args)
    if not user_id:
        return
    init_db()
    activity = get_following_activity(SQLiteStore(), user_id, limit=args.limit)
    if not activity:
        logger.info("No activity from people you follow.")
        return
    now = utcnow()
    for item in activity:
        logger.info(f"  @{item.username} rated {item.show_title} {item.enjoyment:.1f} ({format_time_ago(item.created_at, now)})")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show database statistics."""
    init_db()
    stats = database_stats()
    logger.info("\nDatabase Statistics:")
    logger.info(f"  Users: {stats['users']}")
    logger.info(f"  Shows: {stats['shows']}")
    logger.info(f"  Ratings: {stats['ratings']}")
    logger.info(f"  Follows: {stats['follows']}")
    logger.info(f"  Watch actions: {stats['watch_actions']}")


def cmd_search(args: argparse.Namespace) -> None:
    """Search the external catalog; optionally cache the hits locally."""
    try:
        with _catalog() as catalog:
            results = catalog.search(args.query)[:args.limit]
    except CatalogError as e:
        logger.error(str(e))
        return

    if args.cache and results:
        init_db()
        for show in results:
            upsert_show(show)

    for show in results:
        year = (show.first_air_date or "")[:4]
        logger.info(f"  {show.id}: {show.title} ({year or '?'}) [{show.media_type}]")
    if not results:
        logger.info(f"No results for '{args.query}'")


def _add_mode(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--mode", type=DeckMode.parse, default="tonight",
                        help="Deck mode: tonight (immediate) or this_weekend (planned)")


def _add_format(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")


def _recommend_flag(value: str) -> bool | None:
    lowered = value.lower()
    if lowered in ("yes", "true", "1"):
        return True
    if lowered in ("no", "false", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Invalid recommend value: {value}. Use yes or no")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Show recommendations from people who share your taste")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--user", help="Acting user id (defaults to the dev user in dev mode)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init)

    import_parser = subparsers.add_parser("import", help="Import data from a JSON file")
    import_parser.add_argument("file", help="JSON file with profiles/shows/ratings/follows/watch_actions")
    import_parser.set_defaults(func=cmd_import)

    rate_parser = subparsers.add_parser("rate", help="Rate a show")
    rate_parser.add_argument("show_id")
    rate_parser.add_argument("enjoyment", type=float, help="Overall enjoyment, 0-10")
    rate_parser.add_argument("--hook", type=float)
    rate_parser.add_argument("--consistency", type=float)
    rate_parser.add_argument("--payoff", type=float)
    rate_parser.add_argument("--heat", type=float)
    rate_parser.add_argument("--recommend", type=_recommend_flag, help="yes or no")
    rate_parser.add_argument("--tags", nargs="+", help="Free-text tags, e.g. 'easy watch'")
    rate_parser.set_defaults(func=cmd_rate)

    follow_parser = subparsers.add_parser("follow", help="Follow (or unfollow) a user")
    follow_parser.add_argument("followee", help="User id to follow")
    follow_parser.add_argument("--unfollow", action="store_true")
    follow_parser.set_defaults(func=cmd_follow)

    action_parser = subparsers.add_parser("action", help="Record a swipe action on a show")
    action_parser.add_argument("show_id")
    action_parser.add_argument("action", choices=[k.value for k in WatchActionKind])
    action_parser.add_argument("--undo", action="store_true", help="Remove the action instead")
    action_parser.set_defaults(func=cmd_action)

    rec_parser = subparsers.add_parser("recommend", help="Personalized recommendations")
    _add_mode(rec_parser)
    rec_parser.add_argument("--limit", type=int, default=20, help="Number of recommendations")
    _add_format(rec_parser)
    rec_parser.set_defaults(func=cmd_recommend)

    home_parser = subparsers.add_parser("home", help="Home deck with fallback tiers")
    _add_mode(home_parser)
    _add_format(home_parser)
    home_parser.set_defaults(func=cmd_home)

    shelves_parser = subparsers.add_parser("shelves", help="Inspiration shelves")
    _add_format(shelves_parser)
    shelves_parser.set_defaults(func=cmd_shelves)

    similar_users_parser = subparsers.add_parser("similar-users", help="Find users with similar taste")
    similar_users_parser.add_argument("--limit", type=int, default=10, help="Number of similar users to find")
    _add_format(similar_users_parser)
    similar_users_parser.set_defaults(func=cmd_similar_users)

    activity_parser = subparsers.add_parser("activity", help="Latest ratings from people you follow")
    activity_parser.add_argument("--limit", type=int, default=20)
    activity_parser.set_defaults(func=cmd_activity)

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.set_defaults(func=cmd_stats)

    search_parser = subparsers.add_parser("search", help="Search the external catalog")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=10)
    search_parser.add_argument("--cache", action="store_true", help="Store results in the local show cache")
    search_parser.set_defaults(func=cmd_search)

    args = parser.parse_args(argv)

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
