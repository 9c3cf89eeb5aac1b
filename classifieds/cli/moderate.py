import argparse
import sys

from classifieds.db import Base, SessionLocal, engine
from classifieds.errors import ClassifiedsError, ConflictError
from classifieds.repositories import SqlAlchemyGateway
from classifieds.seed import seed_categories
from classifieds.services.moderation import ADMIN_ROLE, ModerationEngine


def _print_listing(listing):
    print(f"{listing.id}  [{listing.status.value}]  {listing.title}")
    print(f"    slug: {listing.slug}  city: {listing.city}  price: {listing.price}")
    owner = getattr(listing, "owner_name", None)
    if owner:
        print(f"    owner: {owner} ({listing.owner_phone or '-'})")


def build_parser():
    parser = argparse.ArgumentParser(description="Listing moderation admin CLI")
    parser.add_argument("--admin", help="User id of the acting admin")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("pending", help="List listings waiting for moderation")
    approve = sub.add_parser("approve", help="Approve a pending listing")
    approve.add_argument("listing_id")
    reject = sub.add_parser("reject", help="Reject a pending listing")
    reject.add_argument("listing_id")
    sub.add_parser("stats", help="Show dashboard counters")
    sub.add_parser("seo-report", help="Audit SEO fields of approved listings")

    grant = sub.add_parser("grant-admin", help="Give a user the admin role")
    grant.add_argument("user_id")
    sub.add_parser("seed", help="Create tables and default categories")
    return parser


def run(args, gateway) -> int:
    moderation = ModerationEngine(gateway)

    if args.command == "seed":
        print(f"Added {seed_categories(gateway)} categories.")
        return 0

    if args.command == "grant-admin":
        try:
            gateway.insert("user_roles", {"user_id": args.user_id, "role": ADMIN_ROLE})
        except ConflictError:
            print(f"{args.user_id} is already an admin.")
            return 0
        print(f"{args.user_id} is now an admin.")
        return 0

    if args.command == "pending":
        pending = moderation.pending_queue(args.admin)
        if not pending:
            print("No listings waiting for moderation.")
        for listing in pending:
            _print_listing(listing)
        return 0

    if args.command == "approve":
        _print_listing(moderation.approve(args.listing_id, args.admin))
        return 0

    if args.command == "reject":
        _print_listing(moderation.reject(args.listing_id, args.admin))
        return 0

    if args.command == "stats":
        stats = moderation.dashboard_stats(args.admin)
        print(f"Listings: {stats.total_listings} (pending {stats.pending_listings}, approved {stats.approved_listings})")
        print(f"Users: {stats.total_users}")
        return 0

    if args.command == "seo-report":
        report = moderation.seo_report(args.admin)
        for entry in report:
            verdict = "optimal" if entry.optimal else ", ".join(entry.issues)
            print(f"{entry.slug}: {verdict}")
        optimal = sum(1 for e in report if e.optimal)
        print(f"\n{optimal}/{len(report)} approved listings are optimal.")
        return 0

    return 2


def main(argv=None):
    args = build_parser().parse_args(argv)
    Base.metadata.create_all(bind=engine)
    try:
        return run(args, SqlAlchemyGateway(SessionLocal))
    except ClassifiedsError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
