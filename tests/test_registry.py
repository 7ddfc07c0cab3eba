from concurrent.futures import ThreadPoolExecutor

import pytest

from studyhub.access import AccessControl, Decision
from studyhub.core.errors import DuplicateUser, Forbidden, NotFound, Unauthenticated, UnknownOwner
from studyhub.db import create_db_engine, init_db
from studyhub.files import Category, FileRegistry, default_title
from studyhub.services.stats import human_bytes, summarize
from studyhub.store import RecordStore
from studyhub.users import Role, UserDirectory, UserRecord


@pytest.fixture
def store(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'registry.db'}")
    init_db(engine)
    return RecordStore(engine, retry_base_delay=0)


@pytest.fixture
def users(store):
    return UserDirectory(store)


@pytest.fixture
def registry(store, users):
    return FileRegistry(store, users)


@pytest.fixture
def access(users):
    return AccessControl(users)


@pytest.fixture
def member(users):
    return users.create_user("u1", "ada@example.com", "Ada")


@pytest.fixture
def admin(users):
    return users.provision_admin("admin-1", "root@example.com", "Root")


def _upload(registry, owner_id="u1", **overrides):
    fields = {"file_name": "lecture-01.pdf", "file_size": 2048, "description": "Week one"}
    fields.update(overrides)
    return registry.create_file(owner_id, **fields)


def test_create_user_defaults_to_member(users):
    user = users.create_user("u1", "ada@example.com", "Ada")
    assert user.role is Role.MEMBER
    assert users.get_user("u1") == user


def test_duplicate_signup_keeps_original_profile(users, member):
    with pytest.raises(DuplicateUser):
        users.create_user("u1", "other@example.com", "Imposter")
    stored = users.get_user("u1")
    assert stored.name == "Ada"
    assert stored.created_at == member.created_at


def test_get_unknown_user_raises_not_found(users):
    with pytest.raises(NotFound):
        users.get_user("ghost")


def test_legacy_user_role_reads_as_member(store, users):
    store.set("user:legacy", {"id": "legacy", "email": "l@example.com", "name": "L", "role": "user",
                              "createdAt": "2024-01-01T00:00:00Z"})
    assert users.get_user("legacy").role is Role.MEMBER


def test_provision_admin_promotes_existing_member(users, member):
    promoted = users.provision_admin("u1", "ada@example.com", "Ada")
    assert promoted.role is Role.ADMIN
    assert users.get_user("u1").created_at == member.created_at


def test_list_all_users(users, member, admin):
    assert [u.id for u in users.list_all()] == ["u1", "admin-1"]


def test_created_file_starts_approved_with_no_downloads(registry, member):
    record = _upload(registry, category="notes")
    assert record.downloads == 0
    assert record.approved is True
    assert record.shared is True
    assert record.author == "Ada"
    assert record.author_id == "u1"
    assert registry.get_file(record.id) == record


def test_title_and_category_defaults(registry, member):
    record = _upload(registry, file_name="chapter.3.notes.docx", category="")
    assert record.title == "chapter.3.notes"
    assert record.category == "notes"


def test_default_title_keeps_extensionless_names():
    assert default_title("README") == "README"


def test_unknown_category_is_kept_and_bucketed_as_other(registry, member):
    record = _upload(registry, category="flashcards")
    assert record.category == "flashcards"
    assert record.category_bucket is Category.OTHER
    assert [f.id for f in registry.list_files(category="other")] == [record.id]


def test_author_name_is_a_snapshot(store, registry, member):
    record = _upload(registry)
    store.update("user:u1", lambda v: {**v, "name": "Ada Lovelace"})
    assert registry.get_file(record.id).author == "Ada"


def test_author_falls_back_to_email(users, registry):
    users.create_user("u2", "anon@example.com", "")
    assert _upload(registry, owner_id="u2").author == "anon@example.com"


def test_unknown_owner_is_rejected(store, registry):
    with pytest.raises(UnknownOwner):
        _upload(registry, owner_id="ghost")
    assert store.scan_by_prefix("file:") == []


def test_file_ids_are_unique(registry, member):
    ids = {_upload(registry).id for _ in range(25)}
    assert len(ids) == 25


def test_record_download_increments_by_one(registry, member):
    record = _upload(registry)
    assert registry.record_download(record.id) == 1
    assert registry.record_download(f"file:{record.id}") == 2
    assert registry.get_file(record.id).downloads == 2


def test_concurrent_downloads_are_all_counted(registry, member):
    record = _upload(registry)
    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(lambda _: registry.record_download(record.id), range(30)))

    assert registry.get_file(record.id).downloads == 30
    assert sorted(results) == list(range(1, 31))


def test_record_download_on_missing_file(registry):
    with pytest.raises(NotFound):
        registry.record_download("123-missing")


def test_approve_is_idempotent(registry, member):
    record = _upload(registry)
    assert registry.approve_file(record.id).approved is True
    assert registry.approve_file(record.id).approved is True


def test_approve_missing_file(registry):
    with pytest.raises(NotFound):
        registry.approve_file("123-missing")


def test_delete_then_read_is_not_found(registry, member):
    record = _upload(registry)
    registry.delete_file(record.id)
    with pytest.raises(NotFound):
        registry.get_file(record.id)
    with pytest.raises(NotFound):
        registry.record_download(record.id)
    with pytest.raises(NotFound):
        registry.delete_file(record.id)
    assert registry.list_files() == []


def test_list_files_filters(store, registry, member):
    notes = _upload(registry, title="Linear Algebra", category="notes")
    paper = _upload(registry, title="Graph Theory", category="research", description="Survey of matchings")
    store.update(f"file:{paper.id}", lambda v: {**v, "approved": False})

    assert {f.id for f in registry.list_files()} == {notes.id, paper.id}
    assert [f.id for f in registry.list_files(include_unapproved=False)] == [notes.id]
    assert [f.id for f in registry.list_files(category="research")] == [paper.id]
    assert [f.id for f in registry.list_files(query="MATCHINGS")] == [paper.id]
    assert len(registry.list_files(query="ada")) == 2
    assert len(registry.list_files(category="all")) == 2


def test_authorize_decisions(access, member, admin):
    assert access.authorize("admin-1", Role.ADMIN) is Decision.AUTHORIZED
    assert access.authorize("u1", Role.ADMIN) is Decision.FORBIDDEN
    assert access.authorize("u1", Role.MEMBER) is Decision.AUTHORIZED
    assert access.authorize("ghost", Role.MEMBER) is Decision.UNAUTHENTICATED
    assert access.authorize(None, Role.MEMBER) is Decision.UNAUTHENTICATED


def test_require_raises_typed_errors(access, member):
    with pytest.raises(Forbidden):
        access.require("u1", Role.ADMIN)
    with pytest.raises(Unauthenticated):
        access.require("ghost", Role.ADMIN)
    assert access.require("u1", Role.MEMBER).id == "u1"


def test_moderation_example(registry, access, member, admin):
    record = _upload(registry, category="notes", file_size=2048)
    with ThreadPoolExecutor(max_workers=2) as pool:
        list(pool.map(lambda _: registry.record_download(record.id), range(2)))
    assert registry.get_file(record.id).downloads == 2

    with pytest.raises(Forbidden):
        access.require("u1", Role.ADMIN)
    assert registry.get_file(record.id).downloads == 2

    access.require("admin-1", Role.ADMIN)
    registry.delete_file(record.id)
    assert record.id not in {f.id for f in registry.list_files()}


def test_summarize_counts(registry, users, member, admin, store):
    a = _upload(registry, category="notes", file_size=1024)
    _upload(registry, category="presentations", file_size=1024)
    _upload(registry, category="memes", file_size=0)
    registry.record_download(a.id)
    store.update(f"file:{a.id}", lambda v: {**v, "approved": False})

    summary = summarize(registry.list_files(), users.list_all())
    assert summary["total_files"] == 3
    assert summary["pending_files"] == 1
    assert summary["total_downloads"] == 1
    assert summary["total_bytes"] == 2048
    assert summary["storage_human"] == "2 KB"
    assert summary["total_users"] == 2
    assert summary["categories"] == {
        "notes": 1,
        "research": 0,
        "assignments": 0,
        "presentations": 1,
        "other": 1,
    }


def test_human_bytes():
    assert human_bytes(0) == "0 B"
    assert human_bytes(1536) == "1.5 KB"
    assert human_bytes(5 * 1024 * 1024) == "5 MB"


def test_user_record_wire_format(member):
    data = member.dump()
    assert set(data) == {"id", "email", "name", "role", "createdAt"}
    assert data["role"] == "member"
    assert UserRecord.model_validate(data) == member
