from pathlib import Path


class WorkspaceViolation(Exception):
    pass


def resolve_path(workspace_path: str, target: str | None, *, restrict: bool = True) -> Path:
    """Resolve ``target`` against the workspace, rejecting paths that escape it."""
    workspace = Path(workspace_path).expanduser().resolve()
    if not target:
        return workspace

    path = Path(target).expanduser()
    if not path.is_absolute():
        path = workspace / path
    path = path.resolve()

    if restrict and not path.is_relative_to(workspace):
        raise WorkspaceViolation(f'Path outside workspace: "{target}"')
    return path
