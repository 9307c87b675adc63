"""Utility script to write the development environment variables for the studio."""
from __future__ import annotations

import argparse
import shutil
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or update a .env file with the settings required for local development."
    )
    parser.add_argument(
        "--flask-app",
        default="outline_studio:create_app",
        help="Entry point used by Flask (default: outline_studio:create_app)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help=(
            "Secret key for Flask sessions. If omitted, the current value in .env is preserved or "
            "fallback defaults are used."
        ),
    )
    parser.add_argument("--openai-api-key", help="API key for the generation backend.")
    parser.add_argument("--openai-base-url", help="Alternative OpenAI-compatible endpoint (optional).")
    parser.add_argument("--generation-model", help="Model used for outlines and settings (optional).")
    parser.add_argument("--chapter-model", help="Model used for chapter prose (optional).")
    parser.add_argument("--prompt-config", type=Path, help="JSON file overriding bundled prompt templates (optional).")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    print(f"Updated environment variables written to {path}.")


def collect_updates(args: argparse.Namespace) -> Dict[str, str]:
    updates = {"FLASK_APP": args.flask_app}
    optional = {
        "SECRET_KEY": args.secret_key,
        "OPENAI_API_KEY": args.openai_api_key,
        "OPENAI_BASE_URL": args.openai_base_url,
        "GENERATION_MODEL": args.generation_model,
        "CHAPTER_MODEL": args.chapter_model,
        "PROMPT_CONFIG_PATH": str(args.prompt_config.resolve()) if args.prompt_config else None,
    }
    updates.update({key: value for key, value in optional.items() if value})
    return updates


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_data.update(collect_updates(args))
    write_env(args.env_path, env_data)
    return env_data


def _redact(key: str, value: str) -> str:
    if key in {"SECRET_KEY", "OPENAI_API_KEY"} and len(value) > 8:
        return value[:4] + "…" + value[-4:]
    return value


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if "OPENAI_API_KEY" not in env_values:
        print("Warning: OPENAI_API_KEY is not set; every generation request will fail until it is.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        print(f"  {key}={_redact(key, env_values[key])}")


if __name__ == "__main__":
    main()
