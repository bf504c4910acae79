import argparse
import json
import sys
from collections import Counter
from pathlib import Path

from realtalk.corpus import CORPUS_FILE, validate_corpus

def _default_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "realtalk" / CORPUS_FILE)

def _load_json(path: str):
    return json.loads(Path(path).read_text(encoding="utf-8"))

def validate(path: str) -> int:
    try:
        data = _load_json(path)
    except (OSError, ValueError) as exc:
        print(f"ERROR: cannot read {path}: {exc}")
        return 1
    errors = validate_corpus(data)
    if errors:
        for err in errors:
            print(f"ERROR: {err}")
        return 1
    levels = Counter(item["level"] for item in data["corpus"])
    summary = ", ".join(f"{level}={count}" for level, count in sorted(levels.items()))
    print(f"OK seeds={len(data['corpus'])} {summary}")
    return 0

def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Validate a scenario seed corpus file.")
    parser.add_argument("path", nargs="?", default=_default_path())
    args = parser.parse_args(argv)
    return validate(args.path)

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
