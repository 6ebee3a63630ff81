"""Markdown request files with optional YAML frontmatter."""

from dataclasses import dataclass
from pathlib import Path

import frontmatter

from quorum.models import RequestOptions, TaskCategory


@dataclass
class RequestFile:
    text: str
    path: Path
    provider: str | None = None
    task: TaskCategory | None = None
    council: bool | None = None
    no_cache: bool = False


def _parse_task(value: object, source: Path) -> TaskCategory | None:
    if value is None or value == "":
        return None
    try:
        return TaskCategory(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"{source.name}: unknown task {value!r}") from exc


def _parse_flag(metadata: dict, name: str, source: Path) -> bool | None:
    value = metadata.get(name)
    if value is None or isinstance(value, bool):
        return value
    raise ValueError(f"{source.name}: {name} must be true or false, got {value!r}")


def parse_request_file(file_path: Path) -> RequestFile:
    """Parse a markdown request with optional frontmatter.

    Recognized frontmatter keys: provider (str), task (category name),
    council (bool), no_cache (bool). Unknown keys are ignored.

    Raises:
        ValueError: If the body is empty, the task is not a known category,
            or a council/no_cache flag is not a boolean.
    """
    post = frontmatter.load(str(file_path))
    text = post.content.strip()
    if not text:
        raise ValueError(f"{file_path.name}: request body is empty")

    metadata = dict(post.metadata)
    provider = metadata.get("provider")
    return RequestFile(
        text=text,
        path=file_path,
        provider=str(provider) if provider else None,
        task=_parse_task(metadata.get("task"), file_path),
        council=_parse_flag(metadata, "council", file_path),
        no_cache=bool(_parse_flag(metadata, "no_cache", file_path)),
    )


def merge_options(
    request_file: RequestFile | None,
    provider: str | None = None,
    task: TaskCategory | None = None,
    council: bool | None = None,
    no_cache: bool = False,
) -> RequestOptions:
    """Combine frontmatter with command-line flags. Flags win."""
    if request_file is None:
        return RequestOptions(
            provider_override=provider,
            task_hint=task,
            use_cache=not no_cache,
            council_enabled=council,
        )
    return RequestOptions(
        provider_override=provider or request_file.provider,
        task_hint=task or request_file.task,
        use_cache=not (no_cache or request_file.no_cache),
        council_enabled=council if council is not None else request_file.council,
    )
