from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from wallet.config import load_settings  # noqa: E402
from wallet.migrations import apply_migrations, seed_defaults  # noqa: E402
from wallet.persistence import Persistence  # noqa: E402


def main() -> None:
    settings = load_settings()
    persistence = Persistence(settings.database_url)
    try:
        applied = apply_migrations(persistence.engine)
        for name in applied:
            print(f"Applied: {name}")
        if not applied:
            print("No pending migrations.")
        if seed_defaults(persistence, settings):
            print(f"Seeded admin user '{settings.admin_username}' and default lookups.")
    finally:
        persistence.dispose()

    print("Migration run finished.")


if __name__ == "__main__":
    main()
