"""Unit tests for the workflow engine on an in-memory project."""

import pytest

from conftest import FIXED_DATE, MEMORY_PROJECT_ROOT
from markflow.contexts.collections import WorkflowEngine
from markflow.utils.event_logging import deduce_statuses_from_events
from markflow.utils.exceptions import CollectionNotFoundError, ConsistencyError, ValidationError

GOOGLE_ID = "google_inc_software_engineer_20250730"
GOOGLE = {"company": "Google Inc", "role": "Software Engineer"}


@pytest.fixture
def google(engine):
    return engine.create("job", GOOGLE)


@pytest.mark.unit
def test_create_job_collection(engine, memory_storage, google):
    path = MEMORY_PROJECT_ROOT / "job" / "active" / GOOGLE_ID

    assert google.collection_id == GOOGLE_ID
    assert google.path == path
    assert google.stage == "active"
    assert memory_storage.is_file(path / "collection.yml")
    assert memory_storage.is_file(path / "resume_test_user.md")
    assert memory_storage.is_file(path / "cover_letter_test_user.md")

    metadata = google.metadata
    assert metadata.status == "active"
    assert metadata.extra == GOOGLE
    assert [(e.status, e.date) for e in metadata.status_history] == [("active", FIXED_DATE)]

    resume = memory_storage.read_text(path / "resume_test_user.md")
    assert "# Test User" in resume
    assert "Software Engineer position at Google Inc" in resume
    assert "July 30, 2025" in memory_storage.read_text(path / "cover_letter_test_user.md")


@pytest.mark.unit
def test_create_existing_requires_force(engine, google):
    with pytest.raises(ValidationError, match="already exists"):
        engine.create("job", GOOGLE)

    engine.advance("job", GOOGLE_ID, "submitted")
    recreated = engine.create("job", GOOGLE, force=True)

    assert recreated.stage == "active"
    assert [c.collection_id for c in engine.get_collections("job")] == [GOOGLE_ID]


@pytest.mark.unit
def test_unknown_workflow_touches_nothing(engine, memory_storage):
    before = memory_storage.snapshot()

    with pytest.raises(ValidationError, match="Unknown workflow"):
        engine.create("nope", GOOGLE)

    assert memory_storage.snapshot() == before


@pytest.mark.unit
def test_create_validates_fields_and_variant(engine):
    with pytest.raises(ValidationError, match="role"):
        engine.create("job", {"company": "Google Inc"})
    with pytest.raises(ValidationError, match="template variant"):
        engine.create("job", GOOGLE, template_variant="backend")
    with pytest.raises(ValidationError, match="Reserved"):
        engine.create("job", {**GOOGLE, "status": "offered"})


@pytest.mark.unit
def test_create_with_template_variant(engine, memory_storage):
    collection = engine.create("job", GOOGLE, template_variant="mobile")

    resume = memory_storage.read_text(collection.path / "resume_test_user.md")
    assert "Mobile engineer applying for the Software Engineer position at Google Inc" in resume


@pytest.mark.unit
def test_blog_ids_follow_workflow_max_length(engine):
    post = engine.create("blog", {"title": "This is a very long blog post title"})

    assert post.collection_id == "this_is_a_very_long_blog_post_t_20250730"
    assert post.path == MEMORY_PROJECT_ROOT / "blog" / "draft" / post.collection_id


@pytest.mark.unit
def test_project_override_of_blog_max_length(memory_storage):
    engine = WorkflowEngine.from_cwd(
        MEMORY_PROJECT_ROOT,
        storage=memory_storage,
        overrides=["workflows.blog.collection_id.max_length=25"],
    )

    post = engine.create("blog", {"title": "This is a very long blog post title"})

    assert post.collection_id == "this_is_a_very_l_20250730"


@pytest.mark.unit
def test_independent_collections(engine):
    first = engine.create("presentation", {"title": "Quarterly Review"})
    second = engine.create("presentation", {"title": "Roadmap 2026"})

    collections = engine.get_collections("presentation")

    assert {c.collection_id for c in collections} == {first.collection_id, second.collection_id}
    assert all(len(c.metadata.status_history) == 1 for c in collections)


@pytest.mark.unit
def test_advance_moves_directory_and_appends_history(engine, memory_storage, google):
    moved = engine.advance("job", GOOGLE_ID, "submitted")

    assert moved.path == MEMORY_PROJECT_ROOT / "job" / "submitted" / GOOGLE_ID
    assert not memory_storage.exists(google.path)
    assert memory_storage.is_file(moved.path / "resume_test_user.md")

    reloaded = engine.get_collection("job", GOOGLE_ID)
    assert reloaded.stage == "submitted"
    assert reloaded.status == "submitted"
    assert [e.status for e in reloaded.metadata.status_history] == ["active", "submitted"]


@pytest.mark.unit
def test_advance_backwards_needs_force(engine, google):
    engine.advance("job", GOOGLE_ID, "interview")

    with pytest.raises(ValidationError, match="Use --force"):
        engine.advance("job", GOOGLE_ID, "active")

    back = engine.advance("job", GOOGLE_ID, "active", force=True)
    assert back.stage == "active"
    assert [e.status for e in back.metadata.status_history] == ["active", "interview", "active"]


@pytest.mark.unit
def test_advance_rejects_unknown_stage(engine, google):
    with pytest.raises(ValidationError, match="Invalid stage"):
        engine.advance("job", GOOGLE_ID, "hired")

    assert engine.get_collection("job", GOOGLE_ID).stage == "active"


@pytest.mark.unit
def test_advance_to_current_stage_only_records_history(engine, memory_storage, google):
    again = engine.advance("job", GOOGLE_ID, "active")

    assert again.path == google.path
    assert memory_storage.is_dir(google.path)
    assert len(again.metadata.status_history) == 2


@pytest.mark.unit
def test_missing_collection(engine):
    with pytest.raises(CollectionNotFoundError):
        engine.advance("job", "no_such_collection_20250730", "submitted")
    with pytest.raises(CollectionNotFoundError):
        engine.get_collection("job", "no_such_collection_20250730")


@pytest.mark.unit
def test_scan_reports_unreadable_collections(engine, memory_storage, google):
    broken = MEMORY_PROJECT_ROOT / "job" / "active" / "broken_20250730"
    memory_storage.write_text(broken / "collection.yml", "collection_id: [unclosed\n")
    memory_storage.mkdir(MEMORY_PROJECT_ROOT / "job" / "submitted" / "empty_20250730")

    scan = engine.scan_collections("job")

    assert [c.collection_id for c in scan.collections] == [GOOGLE_ID]
    assert {f.path.name for f in scan.failures} == {"broken_20250730", "empty_20250730"}


@pytest.mark.unit
def test_scan_reports_undecodable_metadata(engine, memory_storage, google):
    latin1 = MEMORY_PROJECT_ROOT / "job" / "active" / "latin1_20250730"
    memory_storage.write_bytes(latin1 / "collection.yml", b"collection_id: caf\xe9\n")

    scan = engine.scan_collections("job")

    assert [c.collection_id for c in scan.collections] == [GOOGLE_ID]
    assert [f.path.name for f in scan.failures] == ["latin1_20250730"]
    assert "not valid UTF-8" in scan.failures[0].error
    with pytest.raises(ValidationError, match="not valid UTF-8"):
        engine.get_collection("job", "latin1_20250730")


@pytest.mark.unit
@pytest.mark.parametrize(
    "old, new, error",
    [
        ("status: active", "status: bogus", "unknown status 'bogus'"),
        ("status: active", "status: submitted", "sits in stage 'active'"),
        ("workflow: job", "workflow: blog", "expected 'job'"),
        (f"collection_id: {GOOGLE_ID}", "collection_id: other_20250730", f"expected '{GOOGLE_ID}'"),
    ],
)
def test_metadata_must_match_its_location(engine, memory_storage, google, old, new, error):
    metadata_file = google.path / "collection.yml"
    memory_storage.write_text(metadata_file, memory_storage.read_text(metadata_file).replace(old, new, 1))

    scan = engine.scan_collections("job")

    assert scan.collections == []
    assert error in scan.failures[0].error
    with pytest.raises(ValidationError, match="expected|status"):
        engine.get_collection("job", GOOGLE_ID)


@pytest.mark.unit
def test_same_id_in_two_stages_is_inconsistent(engine, memory_storage, google):
    memory_storage.write_text(
        MEMORY_PROJECT_ROOT / "job" / "rejected" / GOOGLE_ID / "collection.yml",
        memory_storage.read_text(google.path / "collection.yml"),
    )

    with pytest.raises(ConsistencyError):
        engine.scan_collections("job")
    with pytest.raises(ConsistencyError):
        engine.get_collection("job", GOOGLE_ID)


@pytest.mark.unit
def test_update_collection_protects_managed_fields(engine, google):
    updated = engine.update_collection("job", GOOGLE_ID, {"salary": "TBD", "url": "https://example.com"})

    assert updated.metadata.extra["salary"] == "TBD"
    assert engine.get_collection("job", GOOGLE_ID).metadata.extra["url"] == "https://example.com"

    with pytest.raises(ValidationError, match="managed fields"):
        engine.update_collection("job", GOOGLE_ID, {"status": "offered"})


@pytest.mark.unit
def test_write_content(engine, memory_storage, google):
    path = engine.write_content("job", GOOGLE_ID, "resume_test_user.md", "# Rewritten\n")

    assert memory_storage.read_text(path) == "# Rewritten\n"
    with pytest.raises(ValidationError):
        engine.write_content("job", GOOGLE_ID, "../escape.md", "x")
    with pytest.raises(ValidationError):
        engine.write_content("job", GOOGLE_ID, "collection.yml", "x")


@pytest.mark.unit
def test_add_item_renders_prefixed_template(engine, memory_storage, google):
    target = engine.add_item("job", GOOGLE_ID, "notes", prefix="recruiter")

    assert target == google.path / "recruiter_notes.md"
    content = memory_storage.read_text(target)
    assert content.startswith("# Recruiter Notes: Google Inc (Software Engineer)")
    assert "Date: July 30, 2025" in content

    with pytest.raises(ValidationError, match="already exists"):
        engine.add_item("job", GOOGLE_ID, "notes", prefix="recruiter")
    with pytest.raises(ValidationError, match="not defined"):
        engine.add_item("job", GOOGLE_ID, "slides")

    assert engine.add_item("job", GOOGLE_ID, "notes").name == "notes.md"


@pytest.mark.unit
def test_delete_collection(engine, memory_storage, google):
    engine.delete_collection("job", GOOGLE_ID)

    assert not memory_storage.exists(google.path)
    assert engine.get_collections("job") == []


@pytest.mark.unit
def test_events_record_lifecycle(engine, memory_storage, google):
    engine.advance("job", GOOGLE_ID, "submitted")
    other = engine.create("job", {"company": "Acme", "role": "SRE"})
    engine.delete_collection("job", other.collection_id)

    events = engine.get_recent_events(n=10, workflow="job")
    assert [e["event_type"] for e in events] == ["created", "status_change", "created", "deleted"]
    assert events[0]["timestamp"] == FIXED_DATE
    assert events[1]["old_status"] == "active"
    assert events[1]["new_status"] == "submitted"
    assert all(e["source"] == "engine" for e in events)

    assert engine.get_recent_events(n=1, collection_id=GOOGLE_ID)[0]["event_type"] == "status_change"
    assert deduce_statuses_from_events(memory_storage, engine.events_file, "job") == {
        GOOGLE_ID: "submitted"
    }
