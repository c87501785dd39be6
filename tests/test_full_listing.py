"""Tests for full-listing reconciliation."""

from unittest.mock import Mock

import pytest

from onedrive_backup.api import OneDriveClient
from onedrive_backup.config import BackupJobConfig
from onedrive_backup.exceptions import OneDriveDownloadError, OneDriveNetworkError
from onedrive_backup.sync.exclusion import ExclusionFilter
from onedrive_backup.sync.full_listing import LocalTreeReconciler
from onedrive_backup.sync.modes import SyncMode
from onedrive_backup.sync.operations import (
    DownloadExecutor,
    SyncContext,
    SyncOperations,
    job_logger,
)
from onedrive_backup.sync.result import SyncResult
from onedrive_backup.sync.state import METADATA_FILE_NAME, BackupMetadata, RemoteFile


def file_item(item_id, name, e_tag, parent="/drive/root:"):
    return {
        "id": item_id,
        "name": name,
        "size": 7,
        "eTag": e_tag,
        "cTag": f"C-{e_tag}",
        "file": {},
        "parentReference": {"path": parent},
    }


def folder_item(item_id, name, parent="/drive/root:"):
    return {
        "id": item_id,
        "name": name,
        "folder": {},
        "parentReference": {"path": parent},
    }


def fake_download(path, output_path, **kwargs):
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(f"content of {path}")
    return 7


def make_client(pages: dict) -> Mock:
    builder = OneDriveClient(access_token="t")
    client = Mock(spec=OneDriveClient)
    client.children_url.side_effect = builder.children_url
    client.get_children_page.side_effect = lambda url: pages[url]
    client.download_file.side_effect = fake_download
    return client


def make_context(target, client, metadata, root="", excluded=()):
    job = BackupJobConfig(
        account_name="Test",
        client_id="app",
        refresh_token="r",
        local_target_directory=target,
        onedrive_directory=root,
        excluded=list(excluded),
        max_concurrency=2,
    )
    result = SyncResult(account_name="Test", sync_mode=SyncMode.FULL_LISTING)
    log = job_logger("Test")
    operations = SyncOperations(client, target, log=log)
    return SyncContext(
        job=job,
        client=client,
        metadata=metadata,
        operations=operations,
        downloader=DownloadExecutor(operations, 2, result, log=log),
        result=result,
        log=log,
        excluded=ExclusionFilter(excluded),
    )


def run_round(context) -> LocalTreeReconciler:
    reconciler = LocalTreeReconciler(context)
    reconciler.observe()
    reconciler.reconcile()
    reconciler.download()
    reconciler.checkpoint()
    return reconciler


class TestLocalTreeReconciler:
    """Tests for LocalTreeReconciler."""

    @pytest.fixture
    def pages(self):
        """Remote tree with /a.txt (E1) and /sub/b.txt (E2)."""
        return {
            "me/drive/root/children?$top=999": {
                "value": [file_item("F1", "a.txt", "E1"), folder_item("D1", "sub")]
            },
            "me/drive/items/D1/children?$top=999": {
                "value": [file_item("F2", "b.txt", "E2", parent="/drive/root:/sub")]
            },
        }

    def test_first_and_second_run(self, pages, tmp_path):
        """Test the first run mirrors everything and the second changes nothing."""
        client = make_client(pages)
        metadata = BackupMetadata()

        first = make_context(tmp_path, client, metadata)
        run_round(first)

        assert (tmp_path / "sub").is_dir()
        assert (tmp_path / "a.txt").read_text() == "content of /a.txt"
        assert (tmp_path / "sub" / "b.txt").is_file()
        assert first.result.files_downloaded == 2
        assert first.result.folders_created == 1
        assert set(metadata.files) == {"/a.txt", "/sub/b.txt"}
        assert metadata.get_file("/sub/b.txt").e_tag == "E2"

        second = make_context(tmp_path, client, metadata)
        run_round(second)

        assert client.download_file.call_count == 2
        assert second.result.files_downloaded == 0
        assert second.result.files_skipped == 2
        assert second.result.files_deleted == 0
        assert second.result.folders_deleted == 0
        assert second.result.folders_created == 0

    def test_orphans_deleted_checkpoint_kept(self, pages, tmp_path):
        """Test local-only files and directories are removed."""
        (tmp_path / "orphan.txt").write_text("x")
        (tmp_path / "old" / "deep").mkdir(parents=True)
        (tmp_path / "old" / "deep" / "x.txt").write_text("x")
        (tmp_path / METADATA_FILE_NAME).write_text("{}")

        context = make_context(tmp_path, make_client(pages), BackupMetadata())
        run_round(context)

        assert not (tmp_path / "orphan.txt").exists()
        assert not (tmp_path / "old").exists()
        assert (tmp_path / METADATA_FILE_NAME).exists()
        assert context.result.files_deleted == 2
        assert context.result.folders_deleted == 2

    def test_changed_etag_is_downloaded_again(self, pages, tmp_path):
        """Test only the file with a new ETag is fetched."""
        client = make_client(pages)
        metadata = BackupMetadata()
        run_round(make_context(tmp_path, client, metadata))

        pages["me/drive/root/children?$top=999"]["value"][0]["eTag"] = "E1b"
        context = make_context(tmp_path, client, metadata)
        run_round(context)

        assert context.result.files_downloaded == 1
        assert client.download_file.call_args.kwargs["path"] == "/a.txt"
        assert metadata.get_file("/a.txt").e_tag == "E1b"

    def test_missing_local_copy_is_downloaded(self, pages, tmp_path):
        """Test a matching ETag does not skip a file missing locally."""
        client = make_client(pages)
        metadata = BackupMetadata()
        run_round(make_context(tmp_path, client, metadata))
        (tmp_path / "a.txt").unlink()

        context = make_context(tmp_path, client, metadata)
        run_round(context)
        assert context.result.files_downloaded == 1
        assert (tmp_path / "a.txt").is_file()

    def test_failed_download_not_recorded(self, pages, tmp_path):
        """Test a failed transfer leaves no checkpoint entry."""
        client = make_client(pages)

        def flaky(path, output_path, **kwargs):
            if path == "/a.txt":
                raise OneDriveDownloadError("503")
            return fake_download(path, output_path)

        client.download_file.side_effect = flaky
        metadata = BackupMetadata()
        context = make_context(tmp_path, client, metadata)
        run_round(context)

        assert "/a.txt" not in metadata.files
        assert "/sub/b.txt" in metadata.files
        assert len(context.result.errors) == 1

    def test_stale_checkpoint_entries_removed(self, pages, tmp_path):
        """Test entries for files gone remotely are dropped."""
        metadata = BackupMetadata()
        metadata.put_file(RemoteFile(id="GONE", file_name="/gone.txt", e_tag="E"))
        run_round(make_context(tmp_path, make_client(pages), metadata))
        assert "/gone.txt" not in metadata.files
        assert metadata.find_file_by_id("GONE") is None

    def test_newly_excluded_file_deleted(self, pages, tmp_path):
        """Test an excluded file vanishes from the mirror like a deletion."""
        client = make_client(pages)
        metadata = BackupMetadata()
        run_round(make_context(tmp_path, client, metadata))

        run_round(make_context(tmp_path, client, metadata, excluded=["/sub"]))
        assert not (tmp_path / "sub").exists()
        assert (tmp_path / "a.txt").exists()
        assert set(metadata.files) == {"/a.txt"}

    def test_nested_root_keeps_ancestors(self, tmp_path):
        """Test directories above a nested root are not deleted."""
        pages = {
            "me/drive/root:/Documents/Work:/children?$top=999": {
                "value": [
                    file_item("F1", "a.txt", "E1", parent="/drive/root:/Documents/Work")
                ]
            }
        }
        context = make_context(
            tmp_path, make_client(pages), BackupMetadata(), root="/Documents/Work"
        )
        run_round(context)

        assert (tmp_path / "Documents" / "Work" / "a.txt").is_file()
        assert context.result.folders_deleted == 0

        second = make_context(
            tmp_path, make_client(pages), context.metadata, root="/Documents/Work"
        )
        run_round(second)
        assert second.result.folders_deleted == 0
        assert second.result.files_downloaded == 0

    def test_remote_file_named_like_checkpoint_skipped(self, tmp_path):
        """Test a remote file cannot overwrite the local checkpoint."""
        pages = {
            "me/drive/root/children?$top=999": {
                "value": [
                    file_item("F1", "a.txt", "E1"),
                    file_item("F9", METADATA_FILE_NAME, "E9"),
                ]
            },
        }
        client = make_client(pages)
        metadata = BackupMetadata()
        (tmp_path / METADATA_FILE_NAME).write_text("{}")

        run_round(make_context(tmp_path, client, metadata))

        assert (tmp_path / METADATA_FILE_NAME).read_text() == "{}"
        assert client.download_file.call_count == 1
        assert f"/{METADATA_FILE_NAME}" not in metadata.files

    def test_listing_failure_changes_nothing(self, tmp_path):
        """Test a failed listing aborts before any local mutation."""
        (tmp_path / "keep.txt").write_text("x")
        client = make_client({})
        client.get_children_page.side_effect = OneDriveNetworkError("down")

        reconciler = LocalTreeReconciler(
            make_context(tmp_path, client, BackupMetadata())
        )
        with pytest.raises(OneDriveNetworkError):
            reconciler.observe()
        assert (tmp_path / "keep.txt").exists()

    def test_reconcile_requires_observe(self, tmp_path):
        """Test phases must run in order."""
        reconciler = LocalTreeReconciler(
            make_context(tmp_path, make_client({}), BackupMetadata())
        )
        with pytest.raises(RuntimeError):
            reconciler.reconcile()
