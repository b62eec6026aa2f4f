from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from pathlib import Path

DEFAULT_OUTPUT_PATH = Path("openapi") / "openapi.json"


def write_openapi_schema(output_path: Path) -> Path:
    from backend.app.main import app

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(app.openapi(), indent=2), encoding="utf-8")
    return output_path


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Export the check API OpenAPI schema.")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT_PATH)
    args = parser.parse_args(argv)
    schema_path = write_openapi_schema(args.output)
    print(f"Wrote OpenAPI schema to {schema_path}")


if __name__ == "__main__":
    main()
