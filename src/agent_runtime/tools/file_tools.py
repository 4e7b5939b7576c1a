from typing import Any

from agent_runtime.tool import ApprovalLevel, ToolContext
from agent_runtime.tools.workspace import resolve_path


class _WorkspaceFileTool:
    def __init__(self, working_directory: str, *, restrict_to_workspace: bool = True):
        self._working_directory = working_directory
        self._restrict = restrict_to_workspace

    def _resolve(self, path: str | None):
        return resolve_path(self._working_directory, path, restrict=self._restrict)


class ReadFileTool(_WorkspaceFileTool):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a file and return it as text."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "File path (relative to the workspace or absolute)",
                },
            },
            "required": ["path"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        file_path = self._resolve(tool_input["path"])
        return file_path.read_text(encoding="utf-8", errors="replace")


class WriteFileTool(_WorkspaceFileTool):
    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file, creating it and any parent directories if they don't exist."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "File path (relative to the workspace or absolute)",
                },
                "content": {
                    "type": "string",
                    "description": "The content to write to the file",
                },
            },
            "required": ["path", "content"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.SUPERVISED

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        file_path = self._resolve(tool_input["path"])
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(tool_input["content"], encoding="utf-8")
        return f"Successfully wrote to {tool_input['path']}"


class ListDirTool(_WorkspaceFileTool):
    @property
    def name(self) -> str:
        return "list_dir"

    @property
    def description(self) -> str:
        return "List files and directories in a given path (defaults to the workspace root)."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory path (relative to the workspace or absolute)",
                },
            },
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        dir_path = self._resolve(tool_input.get("path"))
        lines = []
        for entry in sorted(dir_path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
            if entry.is_dir():
                lines.append(f"[dir]  {entry.name}/")
            else:
                lines.append(f"[file] {entry.name} ({entry.stat().st_size} bytes)")
        return "\n".join(lines) or "Empty directory."
