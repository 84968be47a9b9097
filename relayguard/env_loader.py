"""
Environment file loader for .guardenv files.

Reads key=value pairs from env files and populates os.environ
WITHOUT overwriting values that are already set (explicit env wins).
Supports # comments, blank lines, ``export`` prefixes and optional quoting.
"""

import os
from pathlib import Path
from typing import Iterable, MutableMapping, Optional


def _parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env-style file into a dict."""
    result: dict[str, str] = {}
    if not path.is_file():
        return result
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):]
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()
            if not key:
                continue
            # Strip optional surrounding quotes
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            result[key] = value
    return result


def env_files(root: Path, explicit: Optional[Path] = None) -> list[Path]:
    """Load order: .guardenv, .guardenv.local, then an explicit file if given."""
    files = [root / ".guardenv", root / ".guardenv.local"]
    if explicit is not None:
        files.append(explicit)
    return files


def load_env_files(
    root: Optional[Path] = None,
    *,
    extra: Optional[Path] = None,
    environ: Optional[MutableMapping[str, str]] = None,
    files: Optional[Iterable[Path]] = None,
) -> dict[str, str]:
    """
    Load .guardenv files into os.environ.

    - Existing env vars take precedence (never overwritten).
    - .guardenv.local overrides .guardenv; ``extra`` overrides both.
    - Returns dict of all loaded key-value pairs (for debugging).

    Parameters
    ----------
    root : Path, optional
        Directory holding the env files. Defaults to the working directory.
    extra : Path, optional
        Additional env file (CLI ``--env-file``), loaded last.
    environ : mapping, optional
        Target mapping; defaults to ``os.environ``.
    """
    root = Path.cwd() if root is None else root
    target = os.environ if environ is None else environ

    loaded: dict[str, str] = {}
    for env_file in files if files is not None else env_files(root, extra):
        loaded.update(_parse_env_file(Path(env_file)))

    # Inject (existing values NOT overwritten)
    for key, value in loaded.items():
        if key not in target:
            target[key] = value

    return loaded
