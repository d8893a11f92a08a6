"""Uploaded-file tool: read text extracted at upload time."""

from pydantic import Field

from src.store.chat_store import ChatStore
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry


class ReadUploadedFileParams(ToolParams):
    file_id: str = Field(description="The ID of the uploaded file to read")


@registry.tool(
    name="read_uploaded_file",
    description=(
        "Read the content of a previously uploaded file. The file must have "
        "been uploaded in this conversation."
    ),
    params_model=ReadUploadedFileParams,
)
async def read_uploaded_file(file_id: str, conversation_id: str) -> ToolResult:
    record = await ChatStore.get().get_file(file_id, conversation_id)
    if record is None:
        return ToolResult(error="File not found")
    return ToolResult(data={
        "file_id": record.id,
        "filename": record.filename,
        "mimetype": record.mimetype,
        "content": record.content,
    })
