from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from domain.ledger import BeancountFile, Ledger

logger = logging.getLogger(__name__)


class LedgerReadError(Exception):
    def __init__(self, message: str, *, path: Path) -> None:
        super().__init__(message)
        self.path = path


def load_file(path: Path) -> BeancountFile:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LedgerReadError(f"Cannot read ledger file {path}: {exc.strerror}", path=path) from exc

    try:
        return BeancountFile.model_validate_json(raw)
    except ValidationError as exc:
        raise LedgerReadError(f"Invalid ledger file {path}:\n{exc}", path=path) from exc


def load_ledger(path: Path) -> Ledger:
    """Read a ledger file and everything it includes, root first.

    Include paths are relative to the including file. A missing file, an include
    cycle or any value that fails validation aborts the whole read.
    """
    files: dict[Path, BeancountFile] = {}
    _load_tree(path.resolve(), files, stack=[])
    logger.info(
        "Loaded %d directives from %d files rooted at %s",
        sum(len(file.directives) for file in files.values()),
        len(files),
        path,
    )
    return Ledger(files=files)


def _load_tree(path: Path, files: dict[Path, BeancountFile], *, stack: list[Path]) -> None:
    if path in stack:
        cycle = " -> ".join(str(p) for p in [*stack, path])
        raise LedgerReadError(f"Include cycle: {cycle}", path=path)
    if path in files:
        return

    file = load_file(path)
    files[path] = file
    stack.append(path)
    for include in file.includes:
        _load_tree((path.parent / include).resolve(), files, stack=stack)
    stack.pop()


def dump_file(file: BeancountFile) -> str:
    """Serialize a file, turning amounts inferred by the booker back into elided postings."""
    data = file.model_dump(mode="json", exclude_none=True)
    for directive in data["directives"]:
        content = directive["content"]
        if content["type"] == "open":
            content["currencies"] = sorted(content["currencies"])
        if content["type"] != "transaction":
            continue
        content.pop("balanced", None)
        content["tags"] = sorted(content["tags"])
        content["links"] = sorted(content["links"])
        for posting in content["postings"]:
            if posting.pop("autocomputed", False):
                posting.pop("amount", None)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def save_ledger(ledger: Ledger) -> None:
    """Rewrite every file of the ledger in place.

    All files are serialized before the first write, and each write replaces
    the target atomically.
    """
    serialized = {path: dump_file(file) for path, file in ledger.files.items()}
    for path, text in serialized.items():
        _atomic_write(path, text)
        logger.info("Wrote %s", path)


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def dump_ledger(ledger: Ledger) -> str:
    """Serialize the whole ledger; a multi-file ledger becomes an object keyed by path."""
    if len(ledger.files) == 1:
        return dump_file(ledger.root)
    data = {str(path): json.loads(dump_file(file)) for path, file in ledger.files.items()}
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
