import pytest
from fakes import ScriptedProvider

from chatloop.db.store import SqliteChatStore
from chatloop.errors import ToolExecutionError
from chatloop.tools.documents import (
    CreateDocumentArgs,
    RequestSuggestionsArgs,
    UpdateDocumentArgs,
    make_create_document_handler,
    make_request_suggestions_handler,
    make_update_document_handler,
    parse_suggestions,
)

SUGGESTIONS_REPLY = """Here are my suggestions:
```json
[
  {"originalSentence": "The cat sat.", "suggestedSentence": "The cat sat down.",
   "description": "More vivid"},
  {"originalSentence": 3},
  "noise"
]
```"""


@pytest.mark.asyncio
async def test_create_document_drafts_and_stores_content() -> None:
    store = SqliteChatStore()
    provider = ScriptedProvider([], completion="# Pelicans\nThey fly.")
    create = make_create_document_handler(provider, store, "usr_1")

    result = await create(CreateDocumentArgs(title="Pelicans", kind="text"))

    assert result["title"] == "Pelicans"
    assert result["kind"] == "text"
    assert result["content"] == "A document was created and is now visible to the user."
    document = store.get_document_by_id(result["id"])
    assert document is not None
    assert document.content == "# Pelicans\nThey fly."
    assert document.user_id == "usr_1"
    assert provider.completions[0][-1] == {"role": "user", "content": "Pelicans"}


@pytest.mark.asyncio
async def test_update_document_writes_new_version() -> None:
    store = SqliteChatStore()
    original = store.save_document(
        document_id="doc-1", title="Notes", kind="text", content="old", user_id="usr_1"
    )
    provider = ScriptedProvider([], completion="new")
    update = make_update_document_handler(provider, store, "usr_1")

    result = await update(UpdateDocumentArgs(id="doc-1", description="make it new"))

    assert result["content"] == "The document has been updated successfully."
    latest = store.get_document_by_id("doc-1")
    assert latest is not None
    assert latest.content == "new"
    assert latest.created_at > original.created_at
    assert "old" in provider.completions[0][0]["content"]


@pytest.mark.asyncio
async def test_update_unknown_document_returns_error_payload() -> None:
    update = make_update_document_handler(ScriptedProvider([]), SqliteChatStore(), "usr_1")

    result = await update(UpdateDocumentArgs(id="missing", description="x"))

    assert result == {"error": "Document not found"}


@pytest.mark.asyncio
async def test_request_suggestions_stores_parsed_items() -> None:
    store = SqliteChatStore()
    store.save_document(
        document_id="doc-1", title="Story", kind="text", content="The cat sat.", user_id="usr_1"
    )
    provider = ScriptedProvider([], completion=SUGGESTIONS_REPLY)
    suggest = make_request_suggestions_handler(provider, store, "usr_1")

    result = await suggest(RequestSuggestionsArgs.model_validate({"documentId": "doc-1"}))

    assert result["message"] == "1 suggestions have been added to the document"
    [row] = store.get_suggestions_by_document_id("doc-1")
    assert row["original_text"] == "The cat sat."
    assert row["suggested_text"] == "The cat sat down."
    assert row["is_resolved"] == 0


def test_parse_suggestions_rejects_replies_without_array() -> None:
    with pytest.raises(ToolExecutionError):
        parse_suggestions("I have no suggestions.")
    with pytest.raises(ToolExecutionError):
        parse_suggestions("[not json")


def test_parse_suggestions_caps_count() -> None:
    item = '{"originalSentence": "a", "suggestedSentence": "b"}'
    parsed = parse_suggestions("[" + ",".join([item] * 8) + "]")

    assert len(parsed) == 5
    assert parsed[0]["description"] == ""
