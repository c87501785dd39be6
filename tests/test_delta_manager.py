"""Tests for collecting delta rounds."""

from unittest.mock import Mock

import pytest

from onedrive_backup.api import OneDriveClient
from onedrive_backup.delta_manager import DeltaManager
from onedrive_backup.exceptions import OneDriveDeltaExpiredError, OneDriveNetworkError
from onedrive_backup.models import DriveItem
from onedrive_backup.sync.state import BackupMetadata, RemoteFile, RemoteFolder

DELTA_LINK = "https://graph.microsoft.com/v1.0/me/drive/root/delta?token=next"
NEXT_LINK = "https://graph.microsoft.com/v1.0/me/drive/root/delta?skiptoken=2"


def file_item(item_id, name, parent="/drive/root:", c_tag="C1"):
    return {
        "id": item_id,
        "name": name,
        "size": 10,
        "eTag": f"E-{item_id}",
        "cTag": c_tag,
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


def tombstone(item_id):
    return {"id": item_id, "deleted": {"state": "deleted"}}


def make_client(pages: dict) -> Mock:
    builder = OneDriveClient(access_token="t")
    client = Mock(spec=OneDriveClient)
    client.delta_url.side_effect = builder.delta_url
    client.get_delta_page.side_effect = lambda url: pages[url]
    return client


class TestCollectUpdate:
    """Tests for DeltaManager.collect_update."""

    def test_fresh_origin_follows_pages(self):
        """Test bootstrapping without a stored link merges every page."""
        client = make_client(
            {
                "me/drive/root/delta": {
                    "value": [
                        {"id": "ROOT", "name": "root", "root": {}, "folder": {}},
                        folder_item("D1", "sub"),
                    ],
                    "@odata.nextLink": NEXT_LINK,
                },
                NEXT_LINK: {
                    "value": [file_item("F1", "b.txt", parent="/drive/root:/sub")],
                    "@odata.deltaLink": DELTA_LINK,
                },
            }
        )

        update, link = DeltaManager(client).collect_update(BackupMetadata())

        assert link == DELTA_LINK
        assert [f.path for f in update.folders] == ["/sub"]
        assert [f.file_name for f in update.files] == ["/sub/b.txt"]
        assert update.files[0].c_tag == "C1"
        assert update.files[0].e_tag == "E-F1"
        assert update.full_resync is True

    def test_scoped_to_configured_root(self):
        """Test the fresh origin is scoped to the configured directory."""
        client = make_client(
            {
                "me/drive/root:/Documents:/delta": {
                    "value": [],
                    "@odata.deltaLink": DELTA_LINK,
                }
            }
        )
        update, link = DeltaManager(client, root="/Documents").collect_update(
            BackupMetadata()
        )
        assert update.is_empty()
        assert link == DELTA_LINK

    def test_resumes_from_stored_link(self):
        """Test an existing delta link is used as the start URL."""
        stored = "https://graph.microsoft.com/v1.0/me/drive/root/delta?token=old"
        client = make_client({stored: {"value": [], "@odata.deltaLink": DELTA_LINK}})
        metadata = BackupMetadata(delta_link=stored)

        update, link = DeltaManager(client).collect_update(metadata)

        assert link == DELTA_LINK
        client.delta_url.assert_not_called()
        assert update.full_resync is False

    def test_expired_link_restarts_from_fresh_origin(self):
        """Test a 410 on the stored link falls back to a fresh round."""
        stored = "https://graph.microsoft.com/v1.0/me/drive/root/delta?token=old"
        pages = {
            "me/drive/root/delta": {
                "value": [file_item("F1", "a.txt")],
                "@odata.deltaLink": DELTA_LINK,
            }
        }

        def fetch(url):
            if url == stored:
                raise OneDriveDeltaExpiredError("gone")
            return pages[url]

        client = make_client(pages)
        client.get_delta_page.side_effect = fetch

        update, link = DeltaManager(client).collect_update(
            BackupMetadata(delta_link=stored)
        )
        assert link == DELTA_LINK
        assert [f.id for f in update.files] == ["F1"]
        assert update.full_resync is True

    def test_page_failure_propagates(self):
        """Test a failed page fails the whole round."""
        client = make_client({})
        client.get_delta_page.side_effect = OneDriveNetworkError("down")
        with pytest.raises(OneDriveNetworkError):
            DeltaManager(client).collect_update(BackupMetadata())

    def test_duplicate_reports_keep_latest(self):
        """Test an item reported twice in one round keeps its last state."""
        client = make_client(
            {
                "me/drive/root/delta": {
                    "value": [file_item("F1", "a.txt", c_tag="C1")],
                    "@odata.nextLink": NEXT_LINK,
                },
                NEXT_LINK: {
                    "value": [file_item("F1", "renamed.txt", c_tag="C2")],
                    "@odata.deltaLink": DELTA_LINK,
                },
            }
        )
        update, _ = DeltaManager(client).collect_update(BackupMetadata())
        assert len(update.files) == 1
        assert update.files[0].file_name == "/renamed.txt"
        assert update.files[0].c_tag == "C2"


class TestClassifyItems:
    """Tests for sorting items into upserts and tombstones."""

    @pytest.fixture
    def metadata(self):
        metadata = BackupMetadata()
        metadata.put_file(RemoteFile(id="F1", file_name="/x.txt"))
        metadata.put_folder(RemoteFolder(id="D1", path="/sub"))
        return metadata

    def test_tombstones_classified_by_checkpoint(self, metadata):
        """Test tombstones resolve to file or folder deletions by id."""
        manager = DeltaManager(Mock(spec=OneDriveClient))
        page = [tombstone("F1"), tombstone("D1"), tombstone("UNKNOWN")]
        update = manager.classify_items(
            [DriveItem.from_api_response(item) for item in page], metadata
        )
        assert update.deleted_file_ids == ["F1"]
        assert update.deleted_folder_ids == ["D1"]

    def test_created_and_deleted_in_one_round(self):
        """Test an id first seen earlier in the round is recognized."""
        client = make_client(
            {
                "me/drive/root/delta": {
                    "value": [file_item("F9", "temp.txt")],
                    "@odata.nextLink": NEXT_LINK,
                },
                NEXT_LINK: {
                    "value": [tombstone("F9")],
                    "@odata.deltaLink": DELTA_LINK,
                },
            }
        )
        update, _ = DeltaManager(client).collect_update(BackupMetadata())
        assert update.deleted_file_ids == ["F9"]

    def test_percent_encoded_parent_path(self):
        """Test parent paths are decoded."""
        client = make_client(
            {
                "me/drive/root/delta": {
                    "value": [
                        file_item("F1", "a b.txt", parent="/drive/root:/My%20Docs")
                    ],
                    "@odata.deltaLink": DELTA_LINK,
                }
            }
        )
        update, _ = DeltaManager(client).collect_update(BackupMetadata())
        assert update.files[0].file_name == "/My Docs/a b.txt"

    def test_item_without_parent_path_skipped(self):
        """Test items whose path cannot be derived are skipped."""
        item = file_item("F1", "a.txt")
        item["parentReference"] = {"id": "P"}
        client = make_client(
            {"me/drive/root/delta": {"value": [item], "@odata.deltaLink": DELTA_LINK}}
        )
        update, _ = DeltaManager(client).collect_update(BackupMetadata())
        assert update.files == []
