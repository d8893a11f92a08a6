"""Tests for the remember/recall and uploaded-file tools."""

from src.tools.file_tools import read_uploaded_file
from src.tools.memory_tools import recall, remember
from src.tools.registry import registry

# -- remember / recall ---------------------------------------------------------


async def test_remember_then_recall(store) -> None:
    result = await remember(key="user_name", value="Ada", conversation_id="c1")
    assert result.success
    assert result.data == {"message": "Remembered: user_name"}

    recalled = await recall(key="user_name", conversation_id="c1")
    assert recalled.success
    assert recalled.data == {"key": "user_name", "value": "Ada"}


async def test_remember_overwrites_existing_key(store) -> None:
    await remember(key="color", value="red", conversation_id="c1")
    await remember(key="color", value="blue", conversation_id="c1")

    memories = await store.list_memories("c1")
    assert [(m.key, m.value) for m in memories] == [("color", "blue")]


async def test_recall_missing_key(store) -> None:
    result = await recall(key="favorite_color", conversation_id="c1")
    assert not result.success
    assert result.error == "No memory found for key: favorite_color"


async def test_recall_does_not_cross_conversations(store) -> None:
    await remember(key="name", value="Ada", conversation_id="c1")

    result = await recall(key="name", conversation_id="c2")
    assert not result.success


async def test_recall_through_registry_injects_conversation(store) -> None:
    await store.upsert_memory("c7", "city", "Oslo")

    result = await registry.execute("recall", {"key": "city"}, conversation_id="c7")
    assert result.to_dict() == {"success": True, "key": "city", "value": "Oslo"}


# -- read_uploaded_file --------------------------------------------------------


async def test_read_uploaded_file(store) -> None:
    record = await store.add_file("c1", "notes.md", "text/markdown", "# Notes")

    result = await read_uploaded_file(file_id=record.id, conversation_id="c1")
    assert result.success
    assert result.data == {
        "file_id": record.id,
        "filename": "notes.md",
        "mimetype": "text/markdown",
        "content": "# Notes",
    }


async def test_read_uploaded_file_from_other_conversation(store) -> None:
    record = await store.add_file("c1", "notes.md", "text/markdown", "# Notes")

    result = await read_uploaded_file(file_id=record.id, conversation_id="c2")
    assert not result.success
    assert result.error == "File not found"


async def test_read_uploaded_file_unknown_id(store) -> None:
    result = await read_uploaded_file(file_id="nope", conversation_id="c1")
    assert result.error == "File not found"
