"""Administrative CLI for chatbot knowledge bases."""

from __future__ import annotations

import argparse
import json
import sys

from botkb.config import Settings
from botkb.errors import KnowledgeBaseError, PurgeError
from botkb.jobs import available_actions
from botkb.service import KnowledgeBase, build_knowledge_base


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage chatbot knowledge bases")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    files = subparsers.add_parser("files", help="List a chatbot's files with their build status")
    files.add_argument("chatbot_id")

    reconcile = subparsers.add_parser("reconcile", help="Recompute a chatbot's file count and storage")
    reconcile.add_argument("chatbot_id")

    account = subparsers.add_parser("reconcile-account", help="Recompute an account's totals")
    account.add_argument("owner")

    purge = subparsers.add_parser("purge", help="Delete every build job and file of a chatbot")
    purge.add_argument("chatbot_id")
    purge.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    create = subparsers.add_parser("create-chatbot", help="Create a chatbot and provision its folder")
    create.add_argument("name")
    create.add_argument("slug")
    create.add_argument("--owner", default=None)
    create.add_argument("--business", default=None)
    return parser


def _emit(payload: dict, as_json: bool, text: str) -> None:
    print(json.dumps(payload, indent=2) if as_json else text)


def _run(kb: KnowledgeBase, args: argparse.Namespace) -> int:
    if args.command == "files":
        files = kb.list_files(args.chatbot_id)
        rows = []
        lines = []
        for item in files:
            tabular = kb.tracker.is_tabular(item.file)
            actions = [action.value for action in available_actions(item, tabular=tabular)]
            rows.append({**item.to_dict(), "actions": actions})
            lines.append(f"{item.id}\t{item.status.value:<10}\t{item.file.size:>10}\t{item.file.name}")
        _emit({"files": rows}, args.json, "\n".join(lines) if lines else "No files")
        return 0

    if args.command == "reconcile":
        chatbot = kb.reconcile(args.chatbot_id)
        _emit(
            {"id": chatbot.id, "file_count": chatbot.file_count, "storage_mb": chatbot.storage_mb},
            args.json,
            f"{chatbot.id}: {chatbot.file_count} file(s), {chatbot.storage_mb} MB",
        )
        return 0

    if args.command == "reconcile-account":
        profile = kb.reconcile_account(args.owner)
        if profile is None:
            print(f"No profile found for account {args.owner}", file=sys.stderr)
            return 1
        _emit(
            profile.to_dict(),
            args.json,
            f"{args.owner}: {profile.chatbot_count} chatbot(s), {profile.file_count} file(s), "
            f"{profile.storage_mb} MB, {profile.message_count} message(s)",
        )
        return 0

    if args.command == "purge":
        if not args.yes:
            answer = input(f"Delete all files and build jobs of chatbot {args.chatbot_id}? [y/N] ")
            if answer.strip().lower() not in {"y", "yes"}:
                print("Aborted")
                return 1
        report = kb.purge(args.chatbot_id)
        _emit(
            report.to_dict(),
            args.json,
            f"Deleted {report.jobs_deleted} job(s) and {report.files_deleted} file(s)",
        )
        return 0

    chatbot = kb.create_chatbot(args.owner, args.name, args.slug, args.business)
    folder = chatbot.folder.path if chatbot.folder else "not provisioned"
    _emit(
        {"id": chatbot.id, "slug": chatbot.slug, "folder": chatbot.folder.id if chatbot.folder else None},
        args.json,
        f"Created chatbot {chatbot.id} ({chatbot.slug}), folder: {folder}",
    )
    return 0


def main(argv: list[str] | None = None, *, knowledge_base: KnowledgeBase | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        kb = knowledge_base or build_knowledge_base(Settings.from_env())
        return _run(kb, args)
    except PurgeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        for failure in exc.failures:
            print(f"  {failure.kind} {failure.item_id}: {failure.error}", file=sys.stderr)
        return 2
    except KnowledgeBaseError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
