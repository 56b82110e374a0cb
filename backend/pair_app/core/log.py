import sys

from pair_app.config import settings


def _format(tag: str, message: str) -> str:
    if settings.log_prefix:
        return f"[{settings.log_prefix} | {tag}] {message}"
    return f"[{tag}] {message}"


def log(tag: str, message: str):
    print(_format(tag, message), flush=True)


def error_log(tag: str, message: str):
    print(_format(tag, message), file=sys.stderr, flush=True)
