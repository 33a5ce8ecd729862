"""
Seed script to populate the permission catalog.

Run this script after database initialization to create:
- The known roles
- The permission suite of every entity type, with public fields opened
- The grants and audiences described by the permissions policy file

Usage:
    uv run python -m scripts.seed_permissions [path/to/permissions.yml]
"""
import asyncio
import sys

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.bootstrap import bootstrap_permissions
from app.features.permissions.exceptions import PermissionEngineError
from app.features.permissions.policy import load_policy
from app.utils import get_logger


log = get_logger(__name__)


async def main(policy_path: str) -> int:
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            policy = load_policy(policy_path)
            result = await bootstrap_permissions(db, policy=policy)
        except PermissionEngineError as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            return 1

    log.info("Permission seeding completed successfully!")
    log.info("")
    log.info("Roles available:")
    for role_name in result.registry.names():
        log.info(f"  - {role_name.value}")
    return 0


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else config.PERMISSIONS_FILE
    sys.exit(asyncio.run(main(path)))
