import os
import json
import struct

import pytest

from gcnres.gameres import FormatCatalog, FormatError, PolicyError
from gcnres.utility import EntryMetadataManager, name_hash
from formats.binaryview import BinaryView
from jsystem import yaz0, yay0
from jsystem.compression import CompressionType
from jsystem.rarcunpack import open_archive, RarcOpener, EntryFlags, StorageTier, NO_PARENT
from jsystem.rarcrepack import ArchiveType, build, build_to_file, RarcWriter, StringTable, node_type


def write_file(path, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def read_tree(root):
    files, dirs = {}, set()
    for cur, subdirs, names in os.walk(root):
        rel = os.path.relpath(cur, root).replace(os.sep, "/")
        for d in subdirs:
            dirs.add(d if rel == "." else f"{rel}/{d}")
        for n in names:
            key = n if rel == "." else f"{rel}/{n}"
            with open(os.path.join(cur, n), "rb") as f:
                files[key] = f.read()
    return files, dirs


@pytest.fixture
def stage(tmp_path):
    src = tmp_path / "stage"
    write_file(str(src / "a.bin"), b"hello")
    os.makedirs(src / "empty")
    write_file(str(src / "sub" / "x.txt"), b"sub file " * 10)
    write_file(str(src / "sub" / "deep" / "y.dat"), bytes(range(100)))
    write_file(str(src / "sub" / "deep" / "a.bin"), b"same name, other dir")
    return src


def u32_at(data, offset):
    return struct.unpack_from(">I", data, offset)[0]


def test_round_trip_tree(stage, tmp_path):
    arc = open_archive(build(str(stage)), "stage")
    out = tmp_path / "out"
    out.mkdir()
    root = arc.extract(str(out))

    assert root == os.path.join(str(out), "stage_dir", "stage")
    assert read_tree(root) == read_tree(str(stage))


def test_empty_dir_and_five_byte_file(tmp_path):
    src = tmp_path / "small"
    os.makedirs(src / "nothing")
    write_file(str(src / "five.bin"), b"12345")

    data = build(str(src))
    assert len(data) == 0x120
    arc = open_archive(data, "small")
    out = tmp_path / "out"
    out.mkdir()
    root = arc.extract(str(out))

    files, dirs = read_tree(root)
    assert files == {"five.bin": b"12345"}
    assert dirs == {"nothing"}
    assert os.listdir(os.path.join(root, "nothing")) == []


def test_node_and_entry_layout(stage):
    arc = open_archive(build(str(stage)), "stage")

    # 깊이 우선 전위 순서
    assert [n.name for n in arc.nodes] == ["stage", "empty", "sub", "deep"]
    assert arc.root.type == "ROOT"
    assert arc.nodes[2].type == "SUB "
    assert arc.nodes[3].type == "DEEP"

    # 파일 → 하위 디렉토리 → "." → ".."
    assert [e.name for e in arc.root.entries] == ["a.bin", "empty", "sub", ".", ".."]
    assert [e.name for e in arc.nodes[2].entries] == ["x.txt", "deep", ".", ".."]

    for node in arc.nodes:
        dot, dotdot = node.entries[-2:]
        assert dot.node_index == node.index
        assert dot.id == dotdot.id == 0xFFFF
        assert dot.name_offset == 0 and dotdot.name_offset == 2
    assert arc.root.entries[-1].data_offset == NO_PARENT
    assert arc.root.entries[-1].node_index is None
    assert arc.nodes[3].entries[-1].node_index == 2

    assert [e.name for e in arc.nodes[2].subdirectories()] == ["deep"]
    assert [e.name for e in arc.nodes[2].files()] == ["x.txt"]


def test_file_ids_are_entry_indices(stage):
    arc = open_archive(build(str(stage)), "stage")
    # 0x3A = 1: id가 엔트리 인덱스와 동기화됨
    assert arc.header.sync_flag == 1
    for entry in arc.entries:
        if entry.is_file():
            assert entry.id == entry.index
        else:
            assert entry.id == 0xFFFF
            assert entry.size == 0x10


def test_hashes_and_deduplicated_names(stage):
    arc = open_archive(build(str(stage)), "stage")
    for entry in arc.entries:
        assert entry.name_hash == name_hash(entry.name)
    for node in arc.nodes:
        assert node.name_hash == name_hash(node.name)

    same = [e for e in arc.entries if e.name == "a.bin"]
    assert len(same) == 2
    assert same[0].name_offset == same[1].name_offset


def test_header_fields(stage):
    data = build(str(stage))
    arc = open_archive(data, "stage")
    h = arc.header
    assert h.file_size == len(data)
    assert h.node_count == 4
    assert h.entry_count == len(arc.entries)
    assert h.entry_count_u16 == h.entry_count
    assert not h.legacy
    assert h.node_offset == 0x40
    assert h.entry_offset % 32 == 0
    assert h.string_table_offset % 32 == 0
    assert h.string_table_size % 32 == 0
    assert h.data_offset % 32 == 0
    # 기본 정책 = DVD
    assert h.dvd_size == h.data_size
    assert h.mram_size == h.aram_size == 0


def test_tier_ordering_with_compressed_policy(tmp_path):
    src = tmp_path / "mix"
    write_file(str(src / "a.szs"), b"A" * 300)
    write_file(str(src / "b.bin"), b"raw bytes" * 3)
    write_file(str(src / "c.szp"), b"C" * 300)
    write_file(str(src / "d.bin"), b"more raw")

    arc = open_archive(build(str(src), ArchiveType.COMPRESSED), "mix")
    files = {e.name: e for e in arc.entries if e.is_file()}

    assert files["a.szs"].flags == EntryFlags.FILE | EntryFlags.COMPRESSED | EntryFlags.YAZ0 | EntryFlags.ARAM
    assert files["c.szp"].flags == EntryFlags.FILE | EntryFlags.COMPRESSED | EntryFlags.ARAM
    assert files["b.bin"].flags == EntryFlags.FILE | EntryFlags.DVD
    assert files["a.szs"].is_szs() and not files["a.szs"].is_szp()
    assert files["c.szp"].is_szp() and not files["c.szp"].is_szs()
    assert files["b.bin"].tier == StorageTier.DVD

    compressed = [e for e in files.values() if e.is_compressed()]
    raw = [e for e in files.values() if not e.is_compressed()]
    assert max(e.data_offset for e in compressed) < min(e.data_offset for e in raw)
    assert all(e.is_marked_compressed for e in compressed)
    assert not any(e.is_marked_compressed for e in raw)

    # 압축 파일 순서는 원래 순서 유지
    assert files["a.szs"].data_offset < files["c.szp"].data_offset
    assert arc.header.aram_size + arc.header.dvd_size == arc.header.data_size


def test_extract_decompresses_flagged_entries(tmp_path):
    src = tmp_path / "packed"
    write_file(str(src / "a.szs"), b"A" * 300)
    write_file(str(src / "c.szp"), b"C" * 300)
    arc = open_archive(build(str(src)), "packed")

    assert yaz0.is_yaz0(arc.read("a.szs"))
    assert yay0.is_yay0(arc.read("c.szp"))

    out = tmp_path / "out"
    out.mkdir()
    root = arc.extract(str(out))
    files, _ = read_tree(root)
    assert files == {"a.szs": b"A" * 300, "c.szp": b"C" * 300}

    raw_out = tmp_path / "raw"
    raw_out.mkdir()
    files, _ = read_tree(arc.extract(str(raw_out), decompress=False))
    assert yaz0.is_yaz0(files["a.szs"])


def test_precompressed_and_incompressible_inputs(tmp_path):
    src = tmp_path / "pre"
    payload = b"already packed " * 20
    write_file(str(src / "ready.szs"), yaz0.compress(payload))
    write_file(str(src / "tiny.szs"), b"xy")
    write_file(str(src / "hidden.bin"), yay0.compress(payload))

    arc = open_archive(build(str(src)), "pre")
    files = {e.name: e for e in arc.entries if e.is_file()}

    # 이미 Yaz0이면 다시 압축하지 않고, 압축 플래그도 붙이지 않음
    assert files["ready.szs"].data == yaz0.compress(payload)
    assert not files["ready.szs"].is_compressed()
    # 압축해도 안 작아지면 원본 그대로, 압축 플래그 없음
    assert files["tiny.szs"].data == b"xy"
    assert not files["tiny.szs"].is_compressed()
    assert not files["hidden.bin"].is_compressed()

    out = tmp_path / "out"
    out.mkdir()
    assert read_tree(arc.extract(str(out)))[0] == read_tree(str(src))[0]


# 코덱 매직으로 시작하는 일반 파일도 추출하면 그대로
def test_raw_file_starting_with_codec_tag_round_trips(tmp_path):
    src = tmp_path / "tagged"
    write_file(str(src / "magic.bin"), b"Yaz0" + b"\x00" * 12)
    write_file(str(src / "other.bin"), b"Yay0" + b"\x00" * 12)

    arc = open_archive(build(str(src), ArchiveType.COMPRESSED), "tagged")
    assert all(e.flags == EntryFlags.FILE | EntryFlags.DVD for e in arc.entries if e.is_file())

    out = tmp_path / "out"
    out.mkdir()
    files, _ = read_tree(arc.extract(str(out)))
    assert files == {"magic.bin": b"Yaz0" + b"\x00" * 12, "other.bin": b"Yay0" + b"\x00" * 12}


def test_memory_policy_sets_mram(stage):
    arc = open_archive(build(str(stage), ArchiveType.MEMORY), "stage")
    assert all(e.tier == StorageTier.MRAM for e in arc.entries if e.is_file())
    assert arc.header.mram_size == arc.header.data_size
    assert arc.header.aram_size == arc.header.dvd_size == 0


def test_aram_policy_marks_everything(stage):
    arc = open_archive(build(str(stage), ArchiveType.ARAM), "stage")
    assert arc.header.aram_size == arc.header.data_size
    assert all(e.is_marked_compressed for e in arc.entries if e.is_file() and e.size)


def test_whole_archive_compression(tmp_path):
    src = tmp_path / "big"
    write_file(str(src / "zeros.bin"), b"\x00" * 4000)

    for kind, check in ((CompressionType.SZS, yaz0.is_yaz0), (CompressionType.SZP, yay0.is_yay0)):
        data = build(str(src), archive_compression=kind)
        assert check(data)
        arc = open_archive(data, "big")
        assert arc.source_compression == kind
        assert arc.read("zeros.bin") == b"\x00" * 4000

    path = build_to_file(str(src), archive_compression=CompressionType.SZS)
    assert path == str(tmp_path / "big.arc.szs")
    assert os.path.isfile(path)
    assert build_to_file(str(src)) == str(tmp_path / "big.arc")


def test_walk_and_read(stage):
    arc = open_archive(build(str(stage)), "stage")
    paths = [p for p, _ in arc.walk()]
    assert paths == ["a.bin", "sub/x.txt", "sub/deep/a.bin", "sub/deep/y.dat"]
    assert arc.file_count == 4
    assert arc.read("sub/deep/y.dat") == bytes(range(100))
    assert arc.read("/sub/x.txt") == b"sub file " * 10
    with pytest.raises(KeyError):
        arc.read("sub/missing.bin")
    assert arc.entry_path(0) == "a.bin"


def test_build_rejects_missing_source(tmp_path):
    with pytest.raises(PolicyError):
        build(str(tmp_path / "nope"))


def test_extract_requires_existing_root(stage, tmp_path):
    arc = open_archive(build(str(stage)), "stage")
    target = tmp_path / "missing"
    with pytest.raises(PolicyError):
        arc.extract(str(target))
    assert not target.exists()


def test_string_table_rejects_unencodable_names():
    table = StringTable()
    assert table.add(".") == 0
    assert table.add("..") == 2
    assert table.add("file") == 5
    assert table.add("file") == 5
    with pytest.raises(PolicyError):
        table.add("emoji \U0001F600")


def test_node_type_tag():
    assert node_type("anything", is_root=True) == b"ROOT"
    assert node_type("ab") == b"AB  "
    assert node_type("scene") == b"SCEN"


def test_writer_can_be_driven_directly(stage):
    writer = RarcWriter(ArchiveType.DVD)
    writer.add_tree(str(stage))
    assert writer.write() == build(str(stage))


# ============================
# 잘못된 입력
# ============================
@pytest.fixture
def good(stage):
    return bytearray(build(str(stage)))


def test_bad_magic(good):
    good[0:4] = b"RARX"
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_short_buffer():
    with pytest.raises(FormatError):
        open_archive(b"RARC" + b"\x00" * 20, "short")


def test_bad_header_size(good):
    struct.pack_into(">I", good, 0x08, 0x40)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_count_mismatch(good):
    struct.pack_into(">H", good, 0x38, 3)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_legacy_header_without_redundant_count(good):
    struct.pack_into(">H", good, 0x38, 0)
    arc = open_archive(bytes(good), "legacy")
    assert arc.header.legacy
    assert arc.file_count == 4


def test_nonzero_reserved_field(good):
    entry_offset = 0x20 + u32_at(good, 0x2C)
    struct.pack_into(">I", good, entry_offset + 0x10, 1)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_link_to_missing_node(good):
    entry_offset = 0x20 + u32_at(good, 0x2C)
    # 엔트리 #1 = 루트의 "empty" 링크
    struct.pack_into(">I", good, entry_offset + 0x14 + 8, 99)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_link_cycle_detected_before_writing(good, tmp_path):
    entry_offset = 0x20 + u32_at(good, 0x2C)
    struct.pack_into(">I", good, entry_offset + 0x14 + 8, 0)
    arc = open_archive(bytes(good), "cycle")
    out = tmp_path / "out"
    out.mkdir()
    with pytest.raises(FormatError):
        arc.extract(str(out))
    assert os.listdir(out) == []


def test_node_entry_slice_out_of_range(good):
    struct.pack_into(">H", good, 0x40 + 10, 0x100)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_truncated_archive(good):
    with pytest.raises(FormatError):
        open_archive(bytes(good[:0x80]), "cut")


def test_payload_outside_buffer(good):
    entry_offset = 0x20 + u32_at(good, 0x2C)
    # 엔트리 #0 = a.bin
    struct.pack_into(">I", good, entry_offset + 12, 0x100000)
    with pytest.raises(FormatError):
        open_archive(bytes(good), "bad")


def test_path_separator_in_name_rejected_on_extract(good, tmp_path):
    pos = bytes(good).index(b"x.txt\x00")
    good[pos:pos + 5] = b"x/txt"
    arc = open_archive(bytes(good), "sneaky")
    out = tmp_path / "out"
    out.mkdir()
    with pytest.raises(FormatError):
        arc.extract(str(out))


# 링크 엔트리는 id 0xFFFF 만으로도 디렉토리로 인식
def test_directory_link_recognised_by_id_alone(good, stage, tmp_path):
    entry_offset = 0x20 + u32_at(good, 0x2C)
    for i in range(u32_at(good, 0x28)):
        pos = entry_offset + i * 0x14
        if good[pos:pos + 2] == b"\xff\xff":
            good[pos + 4] = 0
    arc = open_archive(bytes(good), "stage")
    assert arc.file_count == 4
    assert all(e.is_directory() for e in arc.entries if e.id == 0xFFFF)

    out = tmp_path / "out"
    out.mkdir()
    assert read_tree(arc.extract(str(out))) == read_tree(str(stage))


# 압축 해제 실패 시 어떤 파일도 쓰지 않음
def test_failed_decode_leaves_no_output(tmp_path):
    src = tmp_path / "stage"
    write_file(str(src / "a.txt"), b"hello")
    write_file(str(src / "b.szs"), b"B" * 300)
    data = bytearray(build(str(src)))

    arc = open_archive(bytes(data), "stage")
    entry = next(e for e in arc.entries if e.name == "b.szs")
    assert entry.is_szs()
    # 선언된 해제 크기를 늘려서 스트림이 먼저 끝나게 함
    struct.pack_into(">I", data, arc.header.data_offset + entry.data_offset + 4, entry.size * 50)

    arc = open_archive(bytes(data), "stage")
    out = tmp_path / "out"
    out.mkdir()
    with pytest.raises(FormatError):
        arc.extract(str(out))
    assert os.listdir(out) == []


# ============================
# FormatCatalog / 메타데이터
# ============================
def test_catalog_opens_file(stage, tmp_path):
    path = build_to_file(str(stage), archive_compression=CompressionType.SZS)
    arc = FormatCatalog.open_archive(path)
    assert arc.name == "stage"
    assert arc.file_count == 4


def test_opener_returns_none_for_garbage():
    assert RarcOpener().try_open(BinaryView(b"RARC" + b"\xff" * 0x40, name="junk")) is None
    assert FormatCatalog.lookup_signature(b"RARC\x00\x00\x00\x00").name == "RARC"


def test_metadata_export(stage, tmp_path):
    arc = open_archive(build(str(stage), ArchiveType.COMPRESSED), "stage")
    meta_path = tmp_path / "entry_meta.json"
    EntryMetadataManager(str(meta_path)).save_metadata(arc)

    with open(meta_path, encoding="utf-8") as f:
        meta = json.load(f)
    assert len(meta) == len(arc.entries)
    by_path = {m["path"]: m for m in meta if m["type"] == "file"}
    assert set(by_path) == {"a.bin", "sub/x.txt", "sub/deep/y.dat", "sub/deep/a.bin"}
    assert by_path["a.bin"]["size"] == "0x5"
    assert by_path["a.bin"]["tier"] == "DVD"
    assert by_path["a.bin"]["codec"] is None

    reloaded = EntryMetadataManager(str(meta_path))
    assert reloaded.meta_list == meta
