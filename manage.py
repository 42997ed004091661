"""Maintenance commands: create an admin account and seed the catalog."""

import argparse
import sys

from pymongo.errors import PyMongoError

from catalog import CatalogStore
from database import get_db
from errors import StorefrontError
from schemas import Category, ProductCreate
from users import UserService

SAMPLE_PRODUCTS = [
    ProductCreate(name="Chicken Burger", description="Juicy grilled chicken patty with fresh vegetables and special sauce",
                  price=12.99, category=Category.FOOD, stock=50),
    ProductCreate(name="Caesar Salad", description="Fresh romaine lettuce with Caesar dressing, croutons, and parmesan cheese",
                  price=9.99, category=Category.FOOD, stock=30),
    ProductCreate(name="Iced Coffee", description="Chilled coffee with milk and ice, perfect for hot days",
                  price=4.99, category=Category.BEVERAGES, stock=100),
    ProductCreate(name="Chocolate Brownie", description="Rich chocolate brownie with a soft center and chocolate chips",
                  price=6.99, category=Category.DESSERTS, stock=40),
    ProductCreate(name="French Fries", description="Crispy golden fries served with ketchup",
                  price=3.99, category=Category.SNACKS, stock=80),
]


def cmd_create_admin(args: argparse.Namespace) -> int:
    """Create the admin account, or reset its password and role."""
    try:
        user = UserService(get_db()).upsert_admin(args.name, args.email, args.password)
    except PyMongoError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Admin user ready: {user['email']}")
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    """Insert the sample products into an empty catalog."""
    try:
        db = get_db()
        existing = db["product"].count_documents({})
        if existing and not args.force:
            print(f"Products already exist ({existing}); use --force to add samples anyway")
            return 0
        catalog = CatalogStore(db)
        for sample in SAMPLE_PRODUCTS:
            catalog.create_product(sample)
    except (PyMongoError, StorefrontError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Seeded {len(SAMPLE_PRODUCTS)} products")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage", description="Derin Foods maintenance commands.")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    admin_parser = subparsers.add_parser("create-admin", help="Create or reset the admin account")
    admin_parser.add_argument("--email", default="admin@example.com")
    admin_parser.add_argument("--password", required=True)
    admin_parser.add_argument("--name", default="Admin")

    seed_parser = subparsers.add_parser("seed", help="Insert sample products")
    seed_parser.add_argument("--force", action="store_true", help="Seed even if products exist")

    return parser


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    commands = {
        "create-admin": cmd_create_admin,
        "seed": cmd_seed,
    }
    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
