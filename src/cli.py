"""Check saved conversation histories for corrupted tool-call pairing.

Reads conversation files containing a ``messages`` list serialized with
LangChain's ``messages_to_dict`` and prints a verdict per file.

Usage:
    uv run python -m src.cli conversations/*.json
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

from langchain_core.messages import messages_from_dict

from src.sessions.models import ValidationVerdict
from src.sessions.validator import validate_message_history

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def check_file(path: Path) -> ValidationVerdict:
    """Load one conversation file and validate its tool-call history.

    Raises:
        OSError: If the file can't be read.
        KeyError: If a message entry is malformed.
        ValueError: If the file isn't a conversation export.
    """
    data: Any = json.loads(path.read_text())
    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        msg = f"{path.name} has no 'messages' list"
        raise ValueError(msg)
    messages = messages_from_dict(data["messages"])
    return validate_message_history(messages)


def _print_verdict(path: Path, verdict: ValidationVerdict) -> None:
    print(f"{path}: {verdict.recommendation}")
    for error in verdict.errors:
        print(f"  error:   {error}")
    for warning in verdict.warnings:
        print(f"  warning: {warning}")
    for mismatch in verdict.mismatches:
        print(f"  mismatch: call {mismatch.call_id} answered by {mismatch.result_id}")


def main(argv: list[str] | None = None) -> int:
    """Validate every file given on the command line.

    Returns:
        0 if all files are ok or only warn, 1 if any needs its session cleared,
        2 on usage or read errors.
    """
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: python -m src.cli <conversation.json> [...]")
        return 2

    exit_code = 0
    for arg in args:
        path = Path(arg)
        try:
            verdict = check_file(path)
        except (OSError, ValueError, KeyError) as e:
            print(f"{path}: could not check ({e})")
            exit_code = 2
            continue

        _print_verdict(path, verdict)
        if verdict.recommendation == "clear_session" and exit_code == 0:
            exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
