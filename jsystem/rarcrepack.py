# rarcrepack.py - 폴더 → JSystem RARC 아카이브 리팩
#
# Licensed under the MIT License.

# 노드 번호는 깊이 우선 전위 순서. 엔트리 테이블은 노드 순서대로 연속 배치하고
# 노드마다 [파일들, 하위 디렉토리 링크들, ".", ".."] 순서로 기록함.
# 데이터 영역은 압축 파일이 먼저 오도록 안정 정렬 (ARAM 구간이 앞쪽 한 덩어리가 되어야 함).

import os
import logging
from enum import Enum

from tqdm import tqdm

from formats.binaryview import Writer, CP932
from gcnres.gameres import FormatError, PolicyError, GarStrings
from gcnres.utility import name_hash, align, pad_to
from jsystem import compression, yaz0, yay0
from jsystem.compression import CompressionType
from jsystem.rarcunpack import (
    MAGIC, HEADER_SIZE, INFO_BASE, NODE_SIZE, ENTRY_SIZE,
    DIRECTORY_ID, NO_PARENT, DIRECTORY_SIZE, EntryFlags,
)

DATA_ALIGNMENT = 32
MAX_NAME_OFFSET = 0xFFFFFF      # 엔트리의 이름 오프셋은 24비트
MAX_ENTRIES = 0xFFFF            # 0x38 보조 카운트 / 노드별 엔트리 수가 u16
SYNC_IDS = 1                    # 0x3A: 파일 id = 엔트리 인덱스


# 파일이 놓일 메모리 구역 정책
class ArchiveType(Enum):
    MEMORY = 0          # 전부 MRAM (0x10)
    ARAM = 1            # 전부 ARAM (0x20)
    DVD = 2             # 전부 DVD  (0x40)
    COMPRESSED = 3      # 압축 파일은 ARAM, 나머지는 DVD

    def tier_flag(self, compressed: bool) -> int:
        if self == ArchiveType.COMPRESSED:
            return EntryFlags.ARAM if compressed else EntryFlags.DVD
        return 0x10 << self.value


def node_type(name: str, is_root: bool = False) -> bytes:
    if is_root:
        return b"ROOT"
    return name.upper().encode(CP932)[:4].ljust(4, b" ")


# 이름 → 오프셋. "."(0), ".."(2)로 시작하고 같은 이름은 한 번만 기록
class StringTable:
    def __init__(self):
        self.buffer = bytearray()
        self.offsets = {}
        self.add(".")
        self.add("..")

    def add(self, name: str) -> int:
        if name in self.offsets:
            return self.offsets[name]
        try:
            raw = name.encode(CP932)
        except UnicodeEncodeError:
            raise PolicyError(f"{GarStrings.MsgInvalidFileName}: '{name}' cannot be encoded as {CP932}")
        if b"\x00" in raw:
            raise PolicyError(f"{GarStrings.MsgInvalidFileName}: '{name}' contains a NUL byte")

        offset = len(self.buffer)
        if offset > MAX_NAME_OFFSET:
            raise PolicyError(f"string table exceeds 24-bit offsets at '{name}'")
        self.buffer += raw + b"\x00"
        self.offsets[name] = offset
        return offset

    def __len__(self):
        return len(self.buffer)

    def getvalue(self) -> bytes:
        return bytes(self.buffer)


class RarcWriter:
    def __init__(self, archive_type: ArchiveType = ArchiveType.DVD, progress: bool = False):
        self.archive_type = archive_type
        self.progress = progress
        self.nodes = []
        self.entries = []
        self.strings = StringTable()
        self.data_order = []
        self.data_size = 0
        self.tier_sizes = {EntryFlags.MRAM: 0, EntryFlags.ARAM: 0, EntryFlags.DVD: 0}

    # ============================
    # 폴더 스캔
    # ============================
    def add_tree(self, source_dir: str):
        if not os.path.isdir(source_dir):
            raise PolicyError(f"{GarStrings.MsgNotADirectory}: {source_dir}")
        root_name = os.path.basename(os.path.abspath(source_dir))
        self._scan(source_dir, root_name, None)
        self._build_entries()
        self._layout_data()
        logging.info(
            f"[repack] {root_name}: 노드 {len(self.nodes)}개, 엔트리 {len(self.entries)}개, "
            f"데이터 0x{self.data_size:X} bytes"
        )

    def _scan(self, path: str, name: str, parent):
        index = len(self.nodes)
        node = {
            "index": index,
            "name": name,
            "type": node_type(name, is_root=parent is None),
            "name_offset": self.strings.add(name),
            "path": path,
            "parent": parent,
            "files": [],
            "subdirs": [],
        }
        self.nodes.append(node)

        dirs = []
        for child in sorted(os.listdir(path)):
            full = os.path.join(path, child)
            if os.path.isdir(full):
                dirs.append(child)
            elif os.path.isfile(full):
                node["files"].append(child)
            else:
                logging.warning(f"[repack] 파일/디렉토리 아님, 건너뜀: {full}")

        for child in dirs:
            child_index = self._scan(os.path.join(path, child), child, index)
            node["subdirs"].append((child, child_index))
        return index

    # ============================
    # 엔트리 테이블 구성
    # ============================
    def _add_entry(self, entry_id, name, flags, data_offset=0, data=b"", size=None):
        entry = {
            "id": entry_id,
            "name": name,
            "name_offset": self.strings.add(name),
            "hash": name_hash(name),
            "flags": int(flags),
            "data_offset": data_offset,
            "data": data,
            "size": len(data) if size is None else size,
        }
        self.entries.append(entry)
        if len(self.entries) > MAX_ENTRIES:
            raise PolicyError(f"too many entries (> {MAX_ENTRIES})")
        return entry

    # .szs / .szp 이름인데 아직 압축 안 된 파일은 압축 (작아질 때만).
    # 압축 플래그는 여기서 직접 압축한 파일에만. 원래 매직으로 시작하는 파일은 그대로 보관
    def prepare_file(self, name: str, data: bytes):
        kind = CompressionType.NONE
        lower = name.lower()
        if lower.endswith(".szs") and not yaz0.is_yaz0(data):
            data, kind = compression.compress_if_smaller(data, CompressionType.SZS, name)
        elif lower.endswith(".szp") and not yay0.is_yay0(data):
            data, kind = compression.compress_if_smaller(data, CompressionType.SZP, name)

        flags = EntryFlags.FILE
        if kind == CompressionType.SZP:
            flags |= EntryFlags.COMPRESSED
        elif kind == CompressionType.SZS:
            flags |= EntryFlags.COMPRESSED | EntryFlags.YAZ0
        flags |= self.archive_type.tier_flag(kind != CompressionType.NONE)
        return data, flags

    def _build_entries(self):
        total_files = sum(len(node["files"]) for node in self.nodes)
        with tqdm(total=total_files, desc="리팩 진행중", unit="파일", disable=not self.progress) as bar:
            for node in self.nodes:
                node["first_entry"] = len(self.entries)

                for name in node["files"]:
                    with open(os.path.join(node["path"], name), "rb") as f:
                        raw = f.read()
                    data, flags = self.prepare_file(name, raw)
                    self._add_entry(len(self.entries), name, flags, data=data)
                    logging.debug(f"[repack] 파일 추가: {name} (0x{len(raw):X} → 0x{len(data):X}, flags=0x{int(flags):02X})")
                    bar.update(1)

                for name, child_index in node["subdirs"]:
                    self._add_entry(DIRECTORY_ID, name, EntryFlags.DIRECTORY, data_offset=child_index, size=DIRECTORY_SIZE)

                parent = NO_PARENT if node["parent"] is None else node["parent"]
                self._add_entry(DIRECTORY_ID, ".", EntryFlags.DIRECTORY, data_offset=node["index"], size=DIRECTORY_SIZE)
                self._add_entry(DIRECTORY_ID, "..", EntryFlags.DIRECTORY, data_offset=parent, size=DIRECTORY_SIZE)

                node["entry_count"] = len(self.entries) - node["first_entry"]

    # 압축 파일 먼저 (안정 정렬) → 32바이트 정렬 오프셋 부여, 구역별 크기 합산
    def _layout_data(self):
        files = [e for e in self.entries if e["flags"] & EntryFlags.FILE]
        self.data_order = sorted(files, key=lambda e: 0 if e["flags"] & EntryFlags.COMPRESSED else 1)

        cursor = 0
        for entry in self.data_order:
            entry["data_offset"] = cursor
            padded = align(len(entry["data"]), DATA_ALIGNMENT)
            cursor += padded
            for tier in self.tier_sizes:
                if entry["flags"] & tier:
                    self.tier_sizes[tier] += padded
        self.data_size = cursor

    # ============================
    # 출력
    # ============================
    def write(self) -> bytes:
        node_count = len(self.nodes)
        padded_nodes = node_count + (node_count & 1)
        entry_rel = INFO_BASE + padded_nodes * NODE_SIZE
        string_rel = entry_rel + align(len(self.entries) * ENTRY_SIZE, DATA_ALIGNMENT)
        string_size = align(len(self.strings), DATA_ALIGNMENT)
        data_rel = string_rel + string_size
        file_size = INFO_BASE + data_rel + self.data_size

        w = Writer()
        w.write_bytes(MAGIC)
        w.write_u32(file_size)
        w.write_u32(INFO_BASE)
        w.write_u32(data_rel)
        w.write_u32(self.data_size)
        w.write_u32(self.tier_sizes[EntryFlags.MRAM])
        w.write_u32(self.tier_sizes[EntryFlags.ARAM])
        w.write_u32(self.tier_sizes[EntryFlags.DVD])

        w.write_u32(node_count)
        w.write_u32(HEADER_SIZE - INFO_BASE)
        w.write_u32(len(self.entries))
        w.write_u32(entry_rel)
        w.write_u32(string_size)
        w.write_u32(string_rel)
        w.write_u16(len(self.entries))
        w.write_u16(SYNC_IDS)
        w.write_u32(0)
        if len(w) != HEADER_SIZE:
            raise FormatError(f"RARC header is 0x{len(w):X} bytes, expected 0x{HEADER_SIZE:X}")

        for node in self.nodes:
            w.write_bytes(node["type"])
            w.write_u32(node["name_offset"])
            w.write_u16(name_hash(node["name"]))
            w.write_u16(node["entry_count"])
            w.write_u32(node["first_entry"])
        if node_count & 1:
            w.write_bytes(b"\x00" * NODE_SIZE)

        for entry in self.entries:
            w.write_u16(entry["id"])
            w.write_u16(entry["hash"])
            w.write_u32((entry["flags"] << 24) | entry["name_offset"])
            w.write_u32(entry["data_offset"])
            w.write_u32(entry["size"])
            w.write_u32(0)
        w.align(DATA_ALIGNMENT)

        w.write_bytes(pad_to(self.strings.getvalue(), DATA_ALIGNMENT))
        for entry in self.data_order:
            w.write_bytes(pad_to(entry["data"], DATA_ALIGNMENT))

        if len(w) != file_size:
            raise FormatError(f"RARC image is 0x{len(w):X} bytes, header says 0x{file_size:X}")
        return w.getvalue()


def build(source_dir: str, archive_type: ArchiveType = ArchiveType.DVD,
          archive_compression: CompressionType = CompressionType.NONE, progress: bool = False) -> bytes:
    writer = RarcWriter(archive_type, progress=progress)
    writer.add_tree(source_dir)
    data = writer.write()
    if archive_compression != CompressionType.NONE:
        data, _ = compression.compress_if_smaller(data, archive_compression, "archive")
    return data


# <source_dir>.arc[.szp|.szs] 로 저장하고 경로 반환
def output_path_for(source_dir: str, archive_compression: CompressionType = CompressionType.NONE) -> str:
    return os.path.abspath(source_dir) + ".arc" + archive_compression.extension


def build_to_file(source_dir: str, archive_type: ArchiveType = ArchiveType.DVD,
                  archive_compression: CompressionType = CompressionType.NONE, progress: bool = False) -> str:
    data = build(source_dir, archive_type, archive_compression, progress=progress)
    out_path = output_path_for(source_dir, archive_compression)
    with open(out_path, "wb") as f:
        f.write(data)
    logging.info(f"[repack] 저장 완료: {out_path} ({len(data)} bytes)")
    return out_path
