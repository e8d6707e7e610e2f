from datetime import date, datetime, timezone

import pytest

from oxygenpress.errors import TransportError
from oxygenpress.frontmatter import decode
from oxygenpress.stores import LocalContentStore
from oxygenpress.workflow import (
    STATE_DELETED,
    STATE_DRAFT_SAVED,
    STATE_FAILED,
    STATE_PUBLISHED,
    STATE_UPDATED,
    PublishWorkflow,
    WorkflowSettings,
)


def _workflow(root, clock, **settings):
    store = LocalContentStore(root)
    return PublishWorkflow(
        store, WorkflowSettings(default_category="技术", **settings), clock=clock
    ), store


def test_publish_writes_frontmatter_document(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    result = workflow.publish(
        {"title": "Hello World", "category": "生活", "tags": ["a", "b"]}, "first post"
    )
    assert result.success is True
    assert result.state == STATE_PUBLISHED
    assert result.filename == "hello-world.md"
    assert result.url == "/blogs/hello-world"

    metadata, body = decode(store.read("hello-world.md").content)
    assert body == "first post"
    assert metadata.slug == "hello-world"
    assert metadata.draft is False
    assert metadata.category == "生活"
    assert metadata.tags == ["a", "b"]
    assert metadata.date == "2025-01-02"
    assert metadata.published_at == "2025-01-02T03:04:05.000Z"
    assert metadata.read_time == 1


def test_publishing_same_title_twice_keeps_both(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    first = workflow.publish({"title": "Hello World"}, "one")
    second = workflow.publish({"title": "Hello World"}, "two")
    assert first.filename == "hello-world.md"
    assert second.filename != first.filename
    assert second.filename.startswith("hello-world-2025-01-02T")
    assert decode(store.read(first.filename).content)[1] == "one"
    assert decode(store.read(second.filename).content)[1] == "two"
    assert second.slug == first.slug == "hello-world"


def test_collision_detected_by_stored_slug(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    store.create(
        "renamed.md",
        '---\ntitle: "Old"\nslug: "hello-world"\n---\n\nold body',
        "seed",
    )
    result = workflow.publish({"title": "Hello World"}, "new body")
    assert result.filename != "hello-world.md"
    assert result.filename.startswith("hello-world-")
    assert "old body" in store.read("renamed.md").content


def test_malformed_neighbours_do_not_block_publish(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    store.create("broken.md", "no frontmatter here", "seed")
    result = workflow.publish({"title": "Fresh"}, "body")
    assert result.filename == "fresh.md"


@pytest.mark.parametrize("title", ["", "   ", "!!!"])
def test_invalid_title_fails_without_writing(tmp_path, clock, title):
    workflow, store = _workflow(tmp_path / "blogs", clock)
    result = workflow.publish({"title": title}, "body")
    assert result.success is False
    assert result.state == STATE_FAILED
    assert result.error_type == "validation_error"
    assert not (tmp_path / "blogs").exists()


def test_missing_body_fails(tmp_path, clock):
    workflow, _store = _workflow(tmp_path, clock)
    result = workflow.publish({"title": "Title"}, "")
    assert result.error_type == "validation_error"
    assert "content" in result.error


def test_persist_failure_reports_filename(tmp_path, clock):
    class FullDisk(LocalContentStore):
        def create(self, path, content, message):
            raise TransportError("disk full")

    workflow = PublishWorkflow(
        FullDisk(tmp_path), WorkflowSettings(default_category="技术"), clock=clock
    )
    result = workflow.publish({"title": "Hello"}, "body")
    assert result.success is False
    assert result.error_type == "transport_error"
    assert result.error == "hello.md: disk full"


def test_save_draft_goes_to_drafts_namespace(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    result = workflow.save_draft({"title": "Work In Progress"}, "draft body")
    assert result.state == STATE_DRAFT_SAVED
    assert result.path == f"drafts/{result.filename}"
    assert result.filename.startswith("work-in-progress-2025-01-02T03-04-05-000Z")
    metadata, _ = decode(store.read(result.path).content)
    assert metadata.draft is True
    assert metadata.created_at == "2025-01-02T03:04:05.000Z"
    assert store.list() == []


def test_update_missing_file_is_not_found(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    result = workflow.update("ghost.md", {"title": "Ghost"}, "body")
    assert result.success is False
    assert result.error_type == "not_found"
    assert store.list() == []


def test_update_replaces_document_and_keeps_identity(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    published = workflow.publish({"title": "Hello World"}, "v1")
    result = workflow.update(published.filename, {"title": "Hello Again", "tags": ["x"]}, "v2")
    assert result.state == STATE_UPDATED
    assert result.slug == "hello-world"

    metadata, body = decode(store.read("hello-world.md").content)
    assert body == "v2"
    assert metadata.title == "Hello Again"
    assert metadata.tags == ["x"]
    assert metadata.slug == "hello-world"
    assert metadata.published_at == "2025-01-02T03:04:05.000Z"
    assert metadata.updated_at == "2025-01-02T03:04:06.000Z"


def test_update_rejects_path_traversal(tmp_path, clock):
    workflow, _store = _workflow(tmp_path / "blogs", clock)
    result = workflow.update("../secrets.md", {"title": "x"}, "body")
    assert result.error_type == "validation_error"


def test_delete(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    workflow.publish({"title": "Bye"}, "body")
    result = workflow.delete("bye.md")
    assert result.state == STATE_DELETED
    assert store.list() == []
    assert workflow.delete("bye.md").error_type == "not_found"


def test_promote_draft_copies_then_deletes(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    draft = workflow.save_draft({"title": "Soon", "tags": ["t"]}, "draft body")
    result = workflow.promote_draft(draft.filename)
    assert result.state == STATE_PUBLISHED
    assert result.filename == "soon.md"
    assert store.list("drafts") == []
    metadata, body = decode(store.read("soon.md").content)
    assert metadata.draft is False
    assert metadata.tags == ["t"]
    assert body == "draft body"


def test_list_published_fills_fallbacks(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    store.create("bare.md", "---\ndraft: false\n---\n\n" + "x" * 250, "seed")
    workflow.publish({"title": "Complete", "excerpt": "short"}, "body")

    summaries = {item["filename"]: item for item in workflow.list_published()}
    bare = summaries["bare.md"]
    assert bare["title"] == "bare"
    assert bare["category"] == "其他"
    assert bare["readTime"] == 1
    assert bare["excerpt"] == "x" * 200 + "..."
    assert bare["slug"] == "bare"

    complete = summaries["complete.md"]
    assert complete["excerpt"] == "short"
    assert complete["slug"] == "complete"
    assert complete["publishedAt"] == "2025-01-02T03:04:05.000Z"
    assert complete["size"] > 0


def test_list_drafts(tmp_path, clock):
    workflow, _store = _workflow(tmp_path, clock)
    workflow.save_draft({"title": "One"}, "body")
    drafts = workflow.list_drafts()
    assert len(drafts) == 1
    assert drafts[0]["draft"] is True
    assert drafts[0]["createdAt"] == "2025-01-02T03:04:05.000Z"


def test_read_returns_record(tmp_path, clock):
    workflow, _store = _workflow(tmp_path, clock)
    workflow.publish({"title": "Readable"}, "text")
    record = workflow.read("readable.md")
    assert record.metadata.title == "Readable"
    assert record.body == "text"
    assert record.revision


def test_category_subdirectories(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock, category_subdirs=True)
    result = workflow.publish({"title": "Deep Dive", "category": "技术"}, "body")
    assert result.path == result.filename == "技术/deep-dive.md"
    assert store.list("技术") == ["deep-dive.md"]
    assert [item["filename"] for item in workflow.list_published("技术")] == ["技术/deep-dive.md"]
    assert workflow.read(result.filename).metadata.title == "Deep Dive"


def test_same_title_in_two_categories_is_disambiguated(tmp_path, clock):
    workflow, _store = _workflow(tmp_path, clock, category_subdirs=True)
    first = workflow.publish({"title": "Hello", "category": "A"}, "one")
    second = workflow.publish({"title": "Hello", "category": "B"}, "two")

    assert first.path == "A/hello.md"
    assert second.path.startswith("B/hello-2025-01-02T")
    assert first.url == "/blogs/hello"
    assert second.url != first.url

    listed = [item["filename"] for item in workflow.list_published()]
    assert listed == [first.filename, second.filename]

    updated = workflow.update(first.filename, {"title": "Hello", "category": "A"}, "one, edited")
    assert updated.success is True
    assert workflow.read(first.filename).body == "one, edited"
    assert workflow.delete(second.filename).success is True
    assert [item["filename"] for item in workflow.list_published()] == [first.filename]


def test_list_published_walks_folders_but_skips_drafts(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    workflow.publish({"title": "Root Post", "category": "生活"}, "body")
    workflow.save_draft({"title": "Pending"}, "body")
    store.create("archive/old.md", '---\ntitle: "Old"\ncategory: "技术"\n---\n\nold', "seed")

    assert [item["filename"] for item in workflow.list_published()] == [
        "root-post.md",
        "archive/old.md",
    ]
    assert [item["filename"] for item in workflow.list_published("技术")] == ["archive/old.md"]


def test_non_utf8_neighbour_does_not_block_publish(tmp_path, clock):
    workflow, _store = _workflow(tmp_path, clock)
    (tmp_path / "legacy.md").write_bytes(b"---\ntitle: \xff\xfe\n---\n\nbody")
    result = workflow.publish({"title": "Hello"}, "body")
    assert result.success is True
    assert result.filename == "hello.md"
    assert [item["filename"] for item in workflow.list_published()] == ["hello.md"]


def test_update_keeps_nested_extra_fields(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    store.create("old.md", "---\ntitle: Old\nseo:\n  lastmod: 2024-01-01\n---\n\nold body", "seed")
    result = workflow.update("old.md", {"title": "Old"}, "new body")
    assert result.success is True
    metadata, body = decode(store.read("old.md").content)
    assert metadata.extra == {"seo": {"lastmod": date(2024, 1, 1)}}
    assert body == "new body"


def test_same_millisecond_names_get_a_sequence(tmp_path):
    frozen = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    workflow, _store = _workflow(tmp_path, lambda: frozen)
    drafts = [workflow.save_draft({"title": "Idea"}, "body") for _ in range(2)]
    assert [d.success for d in drafts] == [True, True]
    assert drafts[0].filename == "idea-2025-01-02T03-04-05-000Z.md"
    assert drafts[1].filename == "idea-2025-01-02T03-04-05-000Z-2.md"

    published = [workflow.publish({"title": "Idea"}, "body") for _ in range(3)]
    assert [p.filename for p in published] == [
        "idea.md",
        "idea-2025-01-02T03-04-05-000Z.md",
        "idea-2025-01-02T03-04-05-000Z-2.md",
    ]


def test_commit_file_upserts(tmp_path, clock):
    workflow, store = _workflow(tmp_path, clock)
    first = workflow.commit_file("posts/raw.md", "---\ntitle: a\n---\n\none", "raw.md")
    second = workflow.commit_file("posts/raw.md", "---\ntitle: a\n---\n\ntwo", "raw.md")
    assert first.success and second.success
    assert store.read("posts/raw.md").content.endswith("two")
    assert workflow.commit_file("posts/raw.md", "", "raw.md").error_type == "validation_error"
