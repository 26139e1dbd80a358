from pathlib import Path

from docinsight.errors import CaptureError

_DEFAULT_PROMPT_DIR = Path(__file__).parent / "prompts"


def load_prompt_template(name: str, prompt_dir: Path | None = None) -> str:
    """Load ``<name>_prompt.txt`` from the prompt directory.

    Raises:
        CaptureError: if the file cannot be read.
    """
    path = (prompt_dir or _DEFAULT_PROMPT_DIR) / f"{name}_prompt.txt"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CaptureError(f"Failed to load prompt template {path.name}: {exc}") from exc


def load_json_schema(name: str, prompt_dir: Path | None = None) -> str:
    """Load ``<name>_schema.json`` from the prompt directory.

    Raises:
        CaptureError: if the file cannot be read.
    """
    path = (prompt_dir or _DEFAULT_PROMPT_DIR) / f"{name}_schema.json"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CaptureError(f"Failed to load JSON schema {path.name}: {exc}") from exc
