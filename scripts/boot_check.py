import os
import traceback

def main():
    print("=== BOOT CHECK ===")
    print("PYTHONPATH:", os.getcwd())
    print("PORT:", os.getenv("PORT"))
    print("DATABASE_URL set:", bool(os.getenv("DATABASE_URL")))
    print("ADMIN_SECRET set:", bool(os.getenv("ADMIN_SECRET")))
    print("RUN_SCHEDULER_WITH_API:", os.getenv("RUN_SCHEDULER_WITH_API"))

    try:
        print("\n--- Validating rank ladder ---")
        from src.core.ranks import TIER_ORDER, validate_rank_configs
        validate_rank_configs()
        print("✅ Rank ladder OK:", [t.value for t in TIER_ORDER])

        print("\n--- Trying to import src.api.main ---")
        from src.api.main import app
        print("✅ Imported src.api.main:app OK")
        routes = [getattr(r, "path", None) for r in app.router.routes]
        print("Routes:", [p for p in routes if p])
    except Exception:
        print("❌ Boot check failed:")
        traceback.print_exc()
        raise

if __name__ == "__main__":
    main()
