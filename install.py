#!/usr/bin/env python3
"""Bootstrap a pairbot checkout: virtualenv, package, runtime directories, config.

Usage:
    python install.py          # runtime dependencies only
    python install.py --dev    # plus pytest / pytest-asyncio
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))
VENV_DIR = os.path.join(PROJECT_DIR, ".venv")
IS_WINDOWS = platform.system() == "Windows"

# Transport credentials and images served to templates live here by default
# (session.auth_dir and images.public_dir in config.example.yaml).
RUNTIME_DIRS = ("auth_info", os.path.join("public", "imagenes"))
CONFIG_COPIES = (("config.example.yaml", "config.yaml"), (".env.example", ".env"))


def _venv_executable(name: str) -> str:
    return os.path.join(VENV_DIR, "Scripts" if IS_WINDOWS else "bin", name)


def _require_python() -> None:
    found = sys.version_info[:2]
    if found < MIN_PYTHON:
        sys.exit(f"pairbot needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+, found {found[0]}.{found[1]}.")
    print(f"Using Python {found[0]}.{found[1]}.")


def _install_package(dev: bool) -> None:
    if os.path.isdir(VENV_DIR):
        print(f"Reusing {VENV_DIR}")
    else:
        print(f"Creating {VENV_DIR}")
        subprocess.check_call([sys.executable, "-m", "venv", VENV_DIR])

    pip = _venv_executable("pip")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = [".[dev]"] if dev else ["."]
    editable = ["-e"] if dev else []
    print("Installing pairbot" + (" (editable, with test tools)" if dev else ""))
    subprocess.check_call([pip, "install", *editable, *target], cwd=PROJECT_DIR)


def _prepare_runtime() -> None:
    for relative in RUNTIME_DIRS:
        os.makedirs(os.path.join(PROJECT_DIR, relative), exist_ok=True)

    for example, target in CONFIG_COPIES:
        target_path = os.path.join(PROJECT_DIR, target)
        example_path = os.path.join(PROJECT_DIR, example)
        if os.path.exists(target_path):
            print(f"Keeping existing {target}")
        elif os.path.exists(example_path):
            shutil.copy(example_path, target_path)
            print(f"Wrote {target} from {example}")


def main() -> None:
    _require_python()
    _install_package(dev="--dev" in sys.argv)
    _prepare_runtime()

    activate = r".\.venv\Scripts\activate" if IS_WINDOWS else "source .venv/bin/activate"
    print()
    print("pairbot is installed. Next:")
    print("  - point session.transport in config.yaml at your transport factory (module:attr)")
    print("  - set BASE_URL in .env if templates link to images under /public/")
    print(f"  - {activate}")
    print("  - python -m pairbot config-check && python -m pairbot flow-check")
    print("  - python -m pairbot start")


if __name__ == "__main__":
    main()
