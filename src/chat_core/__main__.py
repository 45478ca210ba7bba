"""Entrypoint: python -m chat_core <worker>"""
from __future__ import annotations

import argparse

from chat_core.workers import outbox_worker, typing_janitor

WORKERS = {
    "outbox": outbox_worker.main,
    "typing-janitor": typing_janitor.main,
}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="chat_core", description="Run a chat core background worker.")
    parser.add_argument("worker", choices=sorted(WORKERS))
    args = parser.parse_args(argv)
    WORKERS[args.worker]()


if __name__ == "__main__":
    main()
