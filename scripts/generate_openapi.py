"""Write the wiki chat service's OpenAPI schema to a JSON file."""

import json
import sys
from pathlib import Path

from wiki_chat.main import app


def main() -> None:
    output = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("openapi.json")
    schema = app.openapi()
    output.write_text(json.dumps(schema, indent=2, ensure_ascii=False) + "\n")
    print(f"Generated {output} ({len(schema['paths'])} paths, version {schema['info']['version']})")


if __name__ == "__main__":
    main()
