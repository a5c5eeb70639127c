import argparse
import os
import sys
from pathlib import Path
from client.common.logger import attach_log_file, detach_log_file, set_debug_mode, setup_logger
from client.updater import PatchClient, UpdateError

BASE_URL = "http://localhost:8081"

logger = setup_logger("PatchClient")


def cmd_check(client: PatchClient, args):
    manifest = client.fetch_manifest()
    needed = client.plan(manifest, args.dir)
    print(f"Server version: {manifest['version']}")
    if needed:
        print(f"Outdated or missing ({len(needed)}):")
        for name in needed:
            print(f"  {name}")
    else:
        print("Up to date.")
    return 1 if needed else 0


def cmd_update(client: PatchClient, args):
    client.update(args.dir)
    remaining = client.plan(client.fetch_manifest(), args.dir)
    return 1 if remaining else 0


def cmd_verify(client: PatchClient, args):
    result = client.verify(args.dir)
    print(f"Valid: {result['valid']}")
    for name in result["mismatches"]:
        print(f"  mismatch: {name}")
    for name in result["missing"]:
        print(f"  missing:  {name}")
    return 0 if result["valid"] else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description="Patch update client")
    parser.add_argument("--server", default=os.getenv("PATCH_SERVER", BASE_URL))
    parser.add_argument("--token", default=os.getenv("PATCH_TOKEN"))
    parser.add_argument("--dir", type=Path, default=Path("."), help="Install directory")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--log-file", type=Path, default=os.getenv("PATCH_LOG_FILE"),
                        help="Also write log lines to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("check", help="List files that need updating").set_defaults(func=cmd_check)
    subparsers.add_parser("update", help="Download missing and stale files").set_defaults(func=cmd_update)
    subparsers.add_parser("verify", help="Ask the server to verify local files").set_defaults(func=cmd_verify)

    args = parser.parse_args(argv)
    set_debug_mode(args.debug)
    file_handler = attach_log_file(args.log_file) if args.log_file else None

    client = PatchClient(args.server, token=args.token)
    try:
        return args.func(client, args)
    except UpdateError as e:
        logger.error(str(e))
        return 2
    finally:
        if file_handler is not None:
            detach_log_file(file_handler)


if __name__ == "__main__":
    sys.exit(main())
