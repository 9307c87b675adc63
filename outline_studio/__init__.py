from __future__ import annotations

import os
from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .config import Config
from .extensions import csrf, workspaces


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    if "PROMPT_CONFIG_PATH" not in app.config:
        env_prompt_path = os.environ.get("PROMPT_CONFIG_PATH")
        if env_prompt_path:
            app.config["PROMPT_CONFIG_PATH"] = env_prompt_path

    register_extensions(app)
    register_blueprints(app)

    return app


def register_extensions(app: Flask) -> None:
    csrf.init_app(app)
    workspaces.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .studio import bp as studio_bp

    app.register_blueprint(studio_bp)
