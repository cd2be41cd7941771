import pytest

from pbn_builder.errors import DuplicateNameError

from conftest import progress_entry


def test_create_and_get_project(state_db):
    project_id = state_db.create_project("alpha", "sys", "user", 3, 10)
    project = state_db.get_project(project_id)
    assert project["name"] == "alpha"
    assert project["status"] == "pending"
    assert project["is_running"] is False
    assert project["progress"] == []
    assert state_db.get_project_by_name("alpha")["id"] == project_id


def test_duplicate_name_leaves_store_unchanged(state_db):
    state_db.create_project("alpha", "sys", "user", 3, 10)
    with pytest.raises(DuplicateNameError):
        state_db.create_project("alpha", "other", "other", 1, 1)
    projects = state_db.list_projects()
    assert len(projects) == 1
    assert projects[0]["system_prompt"] == "sys"


def test_update_rejects_name_of_other_project(state_db):
    state_db.create_project("alpha", "sys", "user", 3, 10)
    beta = state_db.create_project("beta", "sys", "user", 3, 10)
    with pytest.raises(DuplicateNameError):
        state_db.update_project(beta, "alpha", "sys", "user", 3, 10)
    # 保留原名稱可以更新其他欄位
    state_db.update_project(beta, "beta", "new sys", "user", 5, 20)
    assert state_db.get_project(beta)["site_count"] == 5


def test_append_and_reset_progress(state_db):
    project_id = state_db.create_project("alpha", "sys", "user", 3, 10)
    assert state_db.append_progress(project_id, progress_entry(1)) == 1
    assert state_db.append_progress(project_id, progress_entry(2)) == 2
    assert [p["site_id"] for p in state_db.get_project(project_id)["progress"]] == [
        "pbn-1-1",
        "pbn-1-2",
    ]
    state_db.reset_progress(project_id)
    assert state_db.get_project(project_id)["progress"] == []


def test_append_progress_to_missing_project(state_db):
    with pytest.raises(KeyError):
        state_db.append_progress("missing", progress_entry(1))


def test_append_progress_only_while_running(state_db):
    project_id = state_db.create_project("alpha", "sys", "user", 3, 10)
    assert state_db.append_progress(project_id, progress_entry(1), only_running=True) is None
    assert state_db.get_project(project_id)["progress"] == []

    state_db.set_project_state(project_id, "running", True, "2026-01-01T00:00:00+00:00")
    assert state_db.append_progress(project_id, progress_entry(1), only_running=True) == 1


def test_begin_delete_stops_scheduling(state_db):
    project_id = state_db.create_project("alpha", "sys", "user", 3, 10)
    state_db.set_project_state(project_id, "running", True, "2026-01-01T00:00:00+00:00")
    state_db.append_progress(project_id, progress_entry(1))

    project = state_db.begin_delete(project_id)

    assert project["status"] == "deleting"
    assert project["is_running"] is False
    assert project["next_run_at"] is None
    assert len(project["progress"]) == 1
    assert state_db.due_projects("2026-01-02T00:00:00+00:00") == []
    # 標記後進行中的 tick 不能再附加進度
    assert state_db.append_progress(project_id, progress_entry(2), only_running=True) is None
    assert state_db.begin_delete("missing") is None


def test_due_projects(state_db):
    due = state_db.create_project("due", "sys", "user", 1, 1)
    later = state_db.create_project("later", "sys", "user", 1, 1)
    idle = state_db.create_project("idle", "sys", "user", 1, 1)
    state_db.set_project_state(due, "running", True, "2026-01-01T00:00:00+00:00")
    state_db.set_project_state(later, "running", True, "2026-01-01T00:10:00+00:00")
    state_db.set_project_state(idle, "completed", False, None)

    found = state_db.due_projects("2026-01-01T00:05:00+00:00")
    assert [p["id"] for p in found] == [due]
    assert {p["id"] for p in state_db.running_projects()} == {due, later}


def test_cleanup_task_lifecycle(state_db):
    state_db.add_cleanup_task("repo", "site-1", "acme", "boom")
    state_db.add_cleanup_task("repo", "site-1", "acme", "boom again")
    tasks = state_db.pending_cleanup_tasks(max_attempts=2)
    assert len(tasks) == 1
    assert tasks[0]["last_error"] == "boom again"

    state_db.fail_cleanup_task(tasks[0]["id"], "still failing")
    state_db.fail_cleanup_task(tasks[0]["id"], "still failing")
    assert state_db.pending_cleanup_tasks(max_attempts=2) == []

    state_db.complete_cleanup_task(tasks[0]["id"])
    assert state_db.pending_cleanup_tasks(max_attempts=10) == []


def test_users(state_db):
    user_id = state_db.create_user("bob", "hash")
    with pytest.raises(DuplicateNameError):
        state_db.create_user("bob", "hash2")
    state_db.update_user_password(user_id, "hash3")
    assert state_db.get_user_by_name("bob")["password_hash"] == "hash3"
    assert state_db.delete_user(user_id) is True
    assert state_db.delete_user(user_id) is False
