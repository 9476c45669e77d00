import argparse
import logging
import sys

# 1. GLOBAL LOGGING SETUP
# -----------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Silence specific noisy loggers
logging.getLogger("torch").setLevel(logging.ERROR)

from faceauth.config import DEFAULT_CONFIG_PATH, load_faceauth_config  # noqa: E402
from faceauth.core.errors import FaceAuthError  # noqa: E402
from faceauth.infrastructure.database import FaceAuthDatabase  # noqa: E402
from faceauth.infrastructure.profile_store import ProfileRepository  # noqa: E402
from faceauth.presentation.messages import guide_text  # noqa: E402
from faceauth.services.auth_logger import install_embedding_mask  # noqa: E402

install_embedding_mask()

log = logging.getLogger("faceauth.main")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="FaceAuth profile store administration")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML config file")
    p.add_argument("--db", default=None, help="override storage.database_file")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("users", help="list enrolled users with NORMAL/HELMET counts")
    sub.add_parser("export", help="print active profiles as tab-separated text")

    d = sub.add_parser("delete", help="deactivate every profile of a user")
    d.add_argument("user_id")

    r = sub.add_parser("reset", help="delete all profiles and audit records")
    r.add_argument("--yes", action="store_true", help="confirm the wipe")

    a = sub.add_parser("audit", help="show recent authentication audit records")
    a.add_argument("--limit", type=int, default=20)
    return p


def run(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_faceauth_config(args.config)
    repo = ProfileRepository(
        FaceAuthDatabase(args.db or cfg.storage.database_file),
        model_version=cfg.embedding.model_version,
        poc_mode=cfg.storage.poc_mode,
    )

    try:
        if args.command == "users":
            users = repo.list_enrolled_users()
            if not users:
                print("No enrolled users.")
            for uid in users:
                counts = repo.profile_counts(uid)
                print(f"{uid}\tNORMAL={counts.get('NORMAL', 0)}\tHELMET={counts.get('HELMET', 0)}")
        elif args.command == "export":
            sys.stdout.write(repo.export_text())
        elif args.command == "delete":
            repo.logical_delete(args.user_id)
            print(f"Deactivated profiles of {args.user_id}")
        elif args.command == "reset":
            if not args.yes:
                print("Refusing to reset without --yes")
                return 2
            repo.reset_all()
            print("Storage reset.")
        elif args.command == "audit":
            for row in repo.recent_audits(args.limit):
                cols = ["" if v is None else str(v) for v in row]
                print("\t".join(cols + [guide_text(row[2])]))
    except FaceAuthError as e:
        log.error("Command '%s' failed: %s", args.command, e)
        return 1
    finally:
        repo.db.close()
    return 0


if __name__ == "__main__":
    sys.exit(run())
