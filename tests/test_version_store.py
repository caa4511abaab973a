"""Tests for the workflow version store on the in-memory and SQL backends."""

import threading

import pytest

from conftest import make_node, make_trigger, make_edge
from workflow_guard.core.exceptions import VersionNotFoundError, ActiveVersionError
from workflow_guard.core.version_store import VersionStore, compute_checksums
from workflow_guard.models.graph import Node, Edge
from workflow_guard.models.validation import ValidationResult
from workflow_guard.models.version import VersionStatus
from workflow_guard.storage.memory import InMemoryVersionBackend

WORKFLOW = "wf-1"


def graph_content(label="Notify team", extra_nodes=()):
    nodes = [make_trigger("t"), make_node("a", label=label)] + list(extra_nodes)
    edges = [make_edge("e1", "t", "a")]
    return nodes, edges


def create(store, label, workflow_id=WORKFLOW, **kwargs):
    nodes, edges = graph_content(label)
    return store.create_version(workflow_id, nodes, edges, "alice", **kwargs)


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    if request.param == "memory":
        return InMemoryVersionBackend()
    return request.getfixturevalue("sql_version_backend")


@pytest.fixture
def store(backend, clock):
    return VersionStore(backend=backend, clock=clock)


def statuses(store, workflow_id=WORKFLOW):
    return {v.version: v.status for v in store.get_version_history(workflow_id, include_archived=True)}


class TestVersionCreation:
    """Test cases for creating versions."""

    def test_sequential_numbers_and_statuses(self, store):
        """Test versions are numbered 1, 2, 3 and only the first is active."""
        versions = [create(store, f"label {i}") for i in range(3)]
        assert [v.version for v in versions] == [1, 2, 3]
        assert [v.status for v in versions] == [VersionStatus.ACTIVE, VersionStatus.DRAFT, VersionStatus.DRAFT]

    def test_identical_content_is_deduplicated(self, store):
        """Test byte-identical content returns the same version."""
        first = create(store, "same")
        second = create(store, "same")
        assert first.id == second.id
        assert len(store.get_version_history(WORKFLOW)) == 1

    def test_dedup_is_per_workflow(self, store):
        """Test the same content in another workflow is a new version."""
        first = create(store, "same")
        other = create(store, "same", workflow_id="wf-2")
        assert first.id != other.id
        assert other.version == 1

    def test_raw_and_model_content_share_checksums(self):
        """Test checksums depend on content only, not on input representation."""
        nodes, edges = graph_content()
        models_nodes = [Node.from_untrusted(node) for node in nodes]
        models_edges = [Edge.from_untrusted(edge) for edge in edges]
        store = VersionStore()
        assert store.create_version(WORKFLOW, nodes, edges, "alice").checksums == \
            compute_checksums(models_nodes, models_edges)

    def test_metadata(self, store, clock):
        """Test provenance is recorded and the parent defaults to the latest version."""
        first = create(store, "one")
        result = ValidationResult(is_valid=True)
        second = create(store, "two", generation_prompt="notify me", tags=["generated"],
                        validation_result=result)

        assert second.metadata.created_by == "alice"
        assert second.metadata.created_at == clock.now
        assert second.metadata.parent_version_id == first.id
        assert second.metadata.generation_prompt == "notify me"
        assert second.metadata.tags == ["generated"]
        assert second.metadata.validation_result["isValid"] is True
        assert second.name == "Version 2"
        assert second.id.startswith("version_")

    def test_round_trips_through_backend(self, store):
        """Test a stored version reads back equal."""
        created = create(store, "stored")
        assert store.get_version(WORKFLOW, created.id) == created

    def test_numbers_unique_under_concurrency(self):
        """Test concurrent creates for one workflow never share a number."""
        store = VersionStore()
        numbers = []
        lock = threading.Lock()

        def worker(index):
            version = create(store, f"thread {index}")
            with lock:
                numbers.append(version.version)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(numbers) == list(range(1, 21))
        assert len([v for v in store.get_version_history(WORKFLOW) if v.status == VersionStatus.ACTIVE]) == 1


class TestVersionQueries:
    """Test cases for reading history."""

    def test_lookups(self, store):
        """Test retrieval by id, number, latest and active."""
        first = create(store, "one")
        second = create(store, "two")

        assert store.get_version(WORKFLOW, first.id).id == first.id
        assert store.get_version("other", first.id) is None
        assert store.get_version(WORKFLOW, "missing") is None
        assert store.get_version_by_number(WORKFLOW, 2).id == second.id
        assert store.get_version_by_number(WORKFLOW, 9) is None
        assert store.get_latest_version(WORKFLOW).id == second.id
        assert store.get_active_version(WORKFLOW).id == first.id
        assert store.get_latest_version("empty") is None

    def test_history_order_and_paging(self, store):
        """Test history is newest first with limit and offset."""
        for i in range(5):
            create(store, f"label {i}")

        assert [v.version for v in store.get_version_history(WORKFLOW)] == [5, 4, 3, 2, 1]
        assert [v.version for v in store.get_version_history(WORKFLOW, limit=2, offset=1)] == [4, 3]

    def test_history_hides_archived(self, store):
        """Test archived versions are excluded unless requested."""
        create(store, "one")
        second = create(store, "two")
        assert store.archive_version(WORKFLOW, second.id) is True

        assert [v.version for v in store.get_version_history(WORKFLOW)] == [1]
        assert [v.version for v in store.get_version_history(WORKFLOW, include_archived=True)] == [2, 1]

    def test_stats(self, store, clock):
        """Test aggregate figures including average spacing in hours."""
        create(store, "one")
        clock.advance(hours=2)
        create(store, "two")
        clock.advance(hours=4)
        third = create(store, "three")
        store.archive_version(WORKFLOW, third.id)

        stats = store.get_version_stats(WORKFLOW)
        assert stats.total_versions == 3
        assert stats.active_version == 1
        assert stats.oldest_version == 1
        assert stats.newest_version == 3
        assert stats.archived_count == 1
        assert stats.draft_count == 1
        assert stats.average_time_between_versions == pytest.approx(3.0)

    def test_stats_for_unknown_workflow(self, store):
        """Test empty history gives zeroed stats."""
        stats = store.get_version_stats("nothing")
        assert stats.total_versions == 0
        assert stats.active_version is None


class TestActivationAndRollback:
    """Test cases for activation and rollback."""

    def test_activate_keeps_single_active(self, store):
        """Test activation demotes the previous active version."""
        first = create(store, "one")
        second = create(store, "two")

        result = store.activate_version(WORKFLOW, second.id)
        assert result.success is True
        assert result.previous_active.id == first.id
        assert result.new_active.status == VersionStatus.ACTIVE
        assert statuses(store) == {1: VersionStatus.DRAFT, 2: VersionStatus.ACTIVE}

    def test_activate_already_active(self, store):
        """Test activating the active version is a no-op."""
        first = create(store, "one")
        result = store.activate_version(WORKFLOW, first.id)
        assert result.previous_active is None
        assert result.new_active.id == first.id

    def test_activate_unknown(self, store):
        """Test activating a missing version raises."""
        with pytest.raises(VersionNotFoundError):
            store.activate_version(WORKFLOW, "version_missing")

    def test_rollback_with_backup(self, store):
        """Test rollback activates the target and snapshots the prior active content."""
        first = create(store, "one")
        second = create(store, "two")
        store.activate_version(WORKFLOW, second.id)

        result = store.rollback(WORKFLOW, first.id, "bob", reason="bad deploy")

        assert result.success is True
        assert result.rolled_back_to.id == first.id
        assert store.get_active_version(WORKFLOW).id == first.id

        backup = result.backup
        assert backup is not None
        assert backup.version == 3
        assert backup.status == VersionStatus.DRAFT
        assert backup.checksums.full == second.checksums.full
        assert backup.metadata.parent_version_id == second.id
        assert backup.metadata.created_by == "bob"
        assert backup.metadata.tags == ["backup", "rollback"]
        assert "bad deploy" in backup.description
        assert result.warnings is None

    def test_rollback_without_backup(self, store):
        """Test the backup can be skipped."""
        first = create(store, "one")
        second = create(store, "two")
        store.activate_version(WORKFLOW, second.id)

        result = store.rollback(WORKFLOW, first.id, "bob", create_backup=False)
        assert result.backup is None
        assert len(store.get_version_history(WORKFLOW)) == 2

    def test_rollback_distance_warning(self, backend, clock):
        """Test rolling back far behind the active version warns."""
        store = VersionStore(backend=backend, clock=clock, rollback_warning_distance=1)
        first = create(store, "one")
        create(store, "two")
        third = create(store, "three")
        store.activate_version(WORKFLOW, third.id)

        result = store.rollback(WORKFLOW, first.id, "bob", create_backup=False)
        assert result.warnings and "potential compatibility issues" in result.warnings[0]

    def test_rollback_unknown_target(self, store):
        """Test rollback to a missing version raises and changes nothing."""
        first = create(store, "one")
        with pytest.raises(VersionNotFoundError):
            store.rollback(WORKFLOW, "version_missing", "bob")
        assert store.get_active_version(WORKFLOW).id == first.id
        assert len(store.get_version_history(WORKFLOW)) == 1


class TestArchiveAndDelete:
    """Test cases for archive, delete and automatic history maintenance."""

    def test_cannot_archive_or_delete_active(self, store):
        """Test the active version is protected."""
        first = create(store, "one")
        with pytest.raises(ActiveVersionError):
            store.archive_version(WORKFLOW, first.id)
        with pytest.raises(ActiveVersionError):
            store.delete_version(WORKFLOW, first.id)

    def test_unknown_versions_return_false(self, store):
        """Test missing ids are reported as False."""
        assert store.archive_version(WORKFLOW, "nope") is False
        assert store.delete_version(WORKFLOW, "nope") is False

    def test_deleted_numbers_are_not_reused(self, store):
        """Test numbering continues past a deleted newest version."""
        create(store, "one")
        second = create(store, "two")
        assert store.delete_version(WORKFLOW, second.id) is True
        assert store.get_version(WORKFLOW, second.id) is None

        third = create(store, "three")
        assert third.version == 3

    def test_auto_archive(self, backend, clock):
        """Test exceeding the cap archives old drafts but never the active version."""
        store = VersionStore(backend=backend, clock=clock, max_versions=3, archive_keep=1)
        for i in range(4):
            create(store, f"label {i}")

        assert statuses(store) == {
            1: VersionStatus.ACTIVE,
            2: VersionStatus.ARCHIVED,
            3: VersionStatus.ARCHIVED,
            4: VersionStatus.DRAFT,
        }


class TestCompareVersions:
    """Test cases for version diffs."""

    def test_compare_with_itself(self, store):
        """Test a version has no differences from itself."""
        version = create(store, "one")
        diff = store.compare_versions(WORKFLOW, version.id, version.id)
        assert diff.nodes_added == [] and diff.nodes_removed == [] and diff.nodes_modified == []
        assert diff.edges_added == [] and diff.edges_removed == [] and diff.edges_modified == []
        assert diff.summary.total_changes == 0
        assert diff.summary.significant_changes is False

    def test_label_change(self, store):
        """Test a relabel is a minor modification."""
        first = create(store, "one")
        second = create(store, "two")
        diff = store.compare_versions(WORKFLOW, first.id, second.id)
        assert [m.changes for m in diff.nodes_modified] == [["label"]]
        assert diff.summary.total_changes == 1
        assert diff.summary.significant_changes is False

    def test_block_type_change_is_significant(self, store):
        """Test changing what a block does is significant on its own."""
        nodes, edges = graph_content()
        first = store.create_version(WORKFLOW, nodes, edges, "alice")
        nodes[1]["blockType"] = "EMAIL"
        second = store.create_version(WORKFLOW, nodes, edges, "alice")

        diff = store.compare_versions(WORKFLOW, first.id, second.id)
        assert diff.nodes_modified[0].changes == ["blockType"]
        assert diff.summary.significant_changes is True

    def test_additions_and_removals(self, store):
        """Test added and removed nodes and edges are listed."""
        nodes, edges = graph_content()
        first = store.create_version(WORKFLOW, nodes, edges, "alice")
        second = store.create_version(
            WORKFLOW,
            [nodes[0], make_node("b")],
            [make_edge("e2", "t", "b")],
            "alice",
        )

        diff = store.compare_versions(WORKFLOW, first.id, second.id)
        assert [n.id for n in diff.nodes_added] == ["b"]
        assert [n.id for n in diff.nodes_removed] == ["a"]
        assert [e.id for e in diff.edges_added] == ["e2"]
        assert [e.id for e in diff.edges_removed] == ["e1"]
        assert diff.summary.significant_changes is True

    def test_compare_unknown(self, store):
        """Test comparing against a missing version raises."""
        version = create(store, "one")
        with pytest.raises(VersionNotFoundError):
            store.compare_versions(WORKFLOW, version.id, "missing")
