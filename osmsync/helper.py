from __future__ import annotations


def join_path(root: str, *args: str) -> str:
    if args:
        root = root.rstrip("/")
    parts = [root] + [p.strip("/") for p in args[:-1]] + [p.lstrip("/") for p in args[-1:]]
    return "/".join(parts)
