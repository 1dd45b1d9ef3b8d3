from __future__ import annotations

import os
from pathlib import Path

import pytest

from tos.checkpoint import (
    CopyCheckpoint,
    CopyPartInfo,
    CopySourceObjectInfo,
    DownloadCheckpoint,
    DownloadFileInfo,
    DownloadObjectInfo,
    DownloadPartInfo,
    FileInfo,
    PartInfo,
    UploadCheckpoint,
    default_checkpoint_path,
    dump_checkpoint,
    file_info_of,
    load_checkpoint,
    remove_checkpoint,
)
from tos.errors import TosClientError

MiB = 1024 * 1024


def _upload_checkpoint(file_path: str, info: FileInfo) -> UploadCheckpoint:
    return UploadCheckpoint(
        bucket="bkt",
        key="dir/a.bin",
        upload_id="u-1",
        part_size=5 * MiB,
        file_path=file_path,
        file_info=info,
        parts=[
            PartInfo(part_number=1, offset=0, size=5 * MiB, etag='"p1"', is_completed=True),
            PartInfo(part_number=2, offset=5 * MiB, size=MiB),
        ],
    )


def test_dump_and_load_round_trip(tmp_path: Path) -> None:
    path = str(tmp_path / "cp" / "upload.json")
    checkpoint = _upload_checkpoint("/data/a.bin", FileInfo(size=6 * MiB, last_modified=1))

    dump_checkpoint(checkpoint, path)
    loaded = load_checkpoint(path, UploadCheckpoint)

    assert loaded == checkpoint.model_copy(update={"checkpoint_path": path})
    assert loaded.checkpoint_path == path
    assert [part.part_number for part in loaded.pending_parts()] == [2]
    assert [part.etag for part in loaded.uploaded_parts()] == ['"p1"', ""]
    assert "checkpoint_path" not in Path(path).read_text(encoding="utf-8")
    assert os.listdir(tmp_path / "cp") == ["upload.json"]


@pytest.mark.parametrize("content", [None, b"", b"   ", b"{broken", b'{"bucket": "bkt"}'])
def test_load_missing_or_corrupt_checkpoint_returns_none(tmp_path: Path, content) -> None:
    path = tmp_path / "cp.json"
    if content is not None:
        path.write_bytes(content)

    assert load_checkpoint(str(path), UploadCheckpoint) is None


def test_upload_checkpoint_validity(tmp_path: Path) -> None:
    source = tmp_path / "a.bin"
    source.write_bytes(b"x" * 10)
    info = file_info_of(str(source))
    checkpoint = _upload_checkpoint(str(source), info)
    inputs = dict(bucket="bkt", key="dir/a.bin", file_path=str(source), file_info=info, part_size=5 * MiB)

    assert checkpoint.is_valid_for(**inputs)
    assert not checkpoint.is_valid_for(**{**inputs, "part_size": 6 * MiB})
    assert not checkpoint.is_valid_for(**{**inputs, "file_info": FileInfo(size=11, last_modified=info.last_modified)})
    assert not checkpoint.is_valid_for(**inputs, ssec_key_md5="md5")
    assert not checkpoint.model_copy(update={"upload_id": ""}).is_valid_for(**inputs)


def test_update_part_replaces_by_number() -> None:
    checkpoint = _upload_checkpoint("/a", FileInfo(size=1, last_modified=1))

    checkpoint.update_part(PartInfo(part_number=2, offset=5 * MiB, size=MiB, etag='"p2"', is_completed=True))

    assert checkpoint.pending_parts() == []


def test_download_checkpoint_requires_temp_file(tmp_path: Path) -> None:
    temp = tmp_path / "out.bin.temp"
    object_info = DownloadObjectInfo(etag='"e"', object_size=10)
    checkpoint = DownloadCheckpoint(
        bucket="bkt",
        key="k",
        part_size=5 * MiB,
        object_info=object_info,
        file_info=DownloadFileInfo(file_path=str(tmp_path / "out.bin"), temp_file_path=str(temp)),
        parts=[DownloadPartInfo(part_number=1, range_start=0, range_end=9)],
    )
    inputs = dict(
        bucket="bkt", key="k", version_id="", part_size=5 * MiB, object_info=object_info, file_path=str(tmp_path / "out.bin")
    )

    assert not checkpoint.is_valid_for(**inputs)
    temp.write_bytes(b"")
    assert checkpoint.is_valid_for(**inputs)
    assert not checkpoint.is_valid_for(**{**inputs, "object_info": DownloadObjectInfo(etag='"other"', object_size=10)})
    assert checkpoint.parts[0].size == 10


def test_copy_checkpoint_validity() -> None:
    source = CopySourceObjectInfo(etag='"s"', object_size=20)
    checkpoint = CopyCheckpoint(
        bucket="dst",
        key="k2",
        src_bucket="src",
        src_key="k1",
        upload_id="u-9",
        part_size=5 * MiB,
        source_object_info=source,
        parts=[CopyPartInfo(part_number=1, copy_source_range_start=0, copy_source_range_end=19, etag='"c1"')],
    )
    inputs = dict(
        bucket="dst", key="k2", src_bucket="src", src_key="k1", src_version_id="", part_size=5 * MiB,
        source_object_info=source,
    )

    assert checkpoint.is_valid_for(**inputs)
    assert not checkpoint.is_valid_for(**{**inputs, "src_version_id": "v2"})
    assert checkpoint.parts[0].size == 20
    assert checkpoint.uploaded_parts()[0].etag == '"c1"'


def test_default_checkpoint_path(tmp_path: Path) -> None:
    base = str(tmp_path / "local.bin")

    derived = default_checkpoint_path("", base, "bkt", "dir/sub\\k", "upload")
    in_dir = default_checkpoint_path(str(tmp_path), base, "bkt", "k", "download")
    explicit = default_checkpoint_path(str(tmp_path / "my.cp"), base, "bkt", "k", "copy")

    assert derived == str(tmp_path / "local.bin.bkt.dir_sub_k.upload")
    assert in_dir == str(tmp_path / "local.bin.bkt.k.download")
    assert explicit == str(tmp_path / "my.cp")


def test_remove_checkpoint_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "cp.json"
    path.write_text("{}", encoding="utf-8")

    remove_checkpoint(str(path))
    remove_checkpoint(str(path))
    remove_checkpoint("")

    assert not path.exists()


def test_file_info_of_missing_file(tmp_path: Path) -> None:
    with pytest.raises(TosClientError):
        file_info_of(str(tmp_path / "absent"))
