# rarcunpack.py - JSystem RARC 아카이브 읽기 / 추출
#
# Licensed under the MIT License.

# 구조 (전부 빅엔디안, "rel" 오프셋은 0x20 기준)
#   0x00 헤더 (0x40)
#   0x40 노드 테이블   (노드 1개 = 0x10, 노드 = 디렉토리)
#   ...  엔트리 테이블 (엔트리 1개 = 0x14, 노드마다 연속 구간을 가짐)
#   ...  문자열 테이블 (NULL 종료, cp932)
#   ...  데이터 영역   (파일마다 32바이트 정렬)
# 디렉토리 링크 엔트리는 id 0xFFFF, 데이터 오프셋 자리에 노드 인덱스가 들어감.

import os
import logging
from enum import IntFlag

from tqdm import tqdm

from formats.binaryview import BinaryView, Reader
from gcnres.gameres import ArchiveFormat, FormatCatalog, FormatError, PolicyError, GarStrings
from jsystem import compression, yaz0, yay0

MAGIC = b"RARC"
HEADER_SIZE = 0x40
INFO_BASE = 0x20            # rel 오프셋 기준점 = 헤더 크기 필드 값
NODE_SIZE = 0x10
ENTRY_SIZE = 0x14
DIRECTORY_ID = 0xFFFF
NO_PARENT = 0xFFFFFFFF      # 루트 노드의 ".." 링크
DIRECTORY_SIZE = 0x10       # 디렉토리 링크의 size 필드 값


class EntryFlags(IntFlag):
    FILE = 0x01
    DIRECTORY = 0x02
    COMPRESSED = 0x04
    MRAM = 0x10
    ARAM = 0x20
    DVD = 0x40
    YAZ0 = 0x80             # COMPRESSED일 때만 의미 있음. 꺼져 있으면 Yay0


class StorageTier(IntFlag):
    MRAM = 0x10
    ARAM = 0x20
    DVD = 0x40


TIER_MASK = 0x70


# 헤더 파싱. 0x38 보조 카운트가 0인 구형 헤더(legacy)도 같은 형태로 정규화
class RarcHeader:
    def __init__(self):
        self.file_size = 0
        self.header_size = INFO_BASE
        self.data_offset = 0        # 절대 오프셋
        self.data_size = 0
        self.mram_size = 0
        self.aram_size = 0
        self.dvd_size = 0
        self.node_count = 0
        self.node_offset = HEADER_SIZE
        self.entry_count = 0
        self.entry_offset = 0
        self.string_table_size = 0
        self.string_table_offset = 0
        self.entry_count_u16 = 0
        self.sync_flag = 0
        self.legacy = False

    @classmethod
    def parse(cls, view: BinaryView) -> "RarcHeader":
        if view.size < HEADER_SIZE:
            raise FormatError(f"{view.name}: {view.size} bytes is too short for a RARC header")
        if not view.ascii_equal(0, MAGIC):
            raise FormatError(f"{view.name}: {GarStrings.MsgInvalidFormat} (magic {view.read(0, 4)!r})")

        h = cls()
        r = Reader(view, len(MAGIC))
        h.file_size = r.read_u32()
        h.header_size = r.read_u32()
        if h.header_size != INFO_BASE:
            raise FormatError(f"{view.name}: unexpected header size 0x{h.header_size:X}")

        h.data_offset = INFO_BASE + r.read_u32()
        h.data_size = r.read_u32()
        h.mram_size = r.read_u32()
        h.aram_size = r.read_u32()
        h.dvd_size = r.read_u32()
        h.node_count = r.read_u32()
        h.node_offset = INFO_BASE + r.read_u32()
        h.entry_count = r.read_u32()
        h.entry_offset = INFO_BASE + r.read_u32()
        h.string_table_size = r.read_u32()
        h.string_table_offset = INFO_BASE + r.read_u32()
        h.entry_count_u16 = r.read_u16()
        h.sync_flag = r.read_u16()

        h.legacy = h.entry_count_u16 == 0
        if not h.legacy and h.entry_count_u16 != h.entry_count:
            raise FormatError(
                f"{view.name}: entry counts disagree (0x28={h.entry_count}, 0x38={h.entry_count_u16})"
            )
        if h.file_size != view.size:
            logging.warning(f"[rarc] {view.name}: 헤더 파일 크기 0x{h.file_size:X} ≠ 실제 크기 0x{view.size:X}")
        return h


class Node:
    def __init__(self, index, type_tag, name, name_offset, name_hash, entry_count, first_entry):
        self.index = index
        self.type = type_tag
        self.name = name
        self.name_offset = name_offset
        self.name_hash = name_hash
        self.entry_count = entry_count
        self.first_entry = first_entry
        self.entries = []

    def subdirectories(self):
        return [e for e in self.entries if e.is_directory() and not e.is_special_link()]

    def files(self):
        return [e for e in self.entries if e.is_file()]

    def __repr__(self):
        return f"<Node #{self.index} {self.type!r} '{self.name}' entries={self.entry_count}>"


class Entry:
    def __init__(self, index, entry_id, name_hash, flags, name_offset, data_offset, size, name):
        self.index = index
        self.id = entry_id
        self.name_hash = name_hash
        self.flags = flags
        self.name_offset = name_offset
        self.data_offset = data_offset
        self.size = size
        self.name = name
        self.parent_index = None        # 이 엔트리를 가진 노드
        self.data = b""
        self.is_marked_compressed = False

    # id 0xFFFF 또는 디렉토리 플래그
    def is_directory(self) -> bool:
        return self.id == DIRECTORY_ID or bool(self.flags & EntryFlags.DIRECTORY)

    def is_file(self) -> bool:
        return not self.is_directory()

    # "." / ".." 링크
    def is_special_link(self) -> bool:
        return self.is_directory() and self.name in (".", "..")

    def is_compressed(self) -> bool:
        return self.is_file() and bool(self.flags & EntryFlags.COMPRESSED)

    def is_szs(self) -> bool:
        return self.is_compressed() and bool(self.flags & EntryFlags.YAZ0)

    def is_szp(self) -> bool:
        return self.is_compressed() and not self.flags & EntryFlags.YAZ0

    @property
    def tier(self):
        bits = self.flags & TIER_MASK
        return StorageTier(bits) if bits else None

    # 링크 대상 노드 (파일이면 None)
    @property
    def node_index(self):
        if not self.is_directory() or self.data_offset == NO_PARENT:
            return None
        return self.data_offset

    def __repr__(self):
        kind = "dir" if self.is_directory() else "file"
        return f"<Entry #{self.index} {kind} '{self.name}' flags=0x{self.flags:02X} size=0x{self.size:X}>"


# 파일 / 디렉토리 이름이 경로 구성요소 하나인지 확인
def _check_component(name: str, where: str):
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise FormatError(f"{where}: {GarStrings.MsgInvalidFileName} '{name}'")


class Archive:
    def __init__(self, buf, name: str = "archive"):
        data = buf.data if isinstance(buf, BinaryView) else bytes(buf)

        # Yaz0 / Yay0로 통째로 압축된 .arc는 먼저 해제
        self.source_compression = compression.detect(data)
        if self.source_compression != compression.CompressionType.NONE:
            logging.info(f"[rarc] {name}: {self.source_compression.name} 압축 아카이브 → 해제 후 파싱")
            data = compression.decode(data)

        self.name = name
        self.view = BinaryView(data, name=name)
        self.header = RarcHeader.parse(self.view)
        self.nodes = self._read_nodes()
        self.entries = self._read_entries()
        self._assign_entries()
        self._node_paths = None
        self._path_index = None
        logging.debug(
            f"[rarc] {name}: 노드 {len(self.nodes)}개, 엔트리 {len(self.entries)}개"
            f"{' (legacy 헤더)' if self.header.legacy else ''}"
        )

    @property
    def root(self) -> Node:
        return self.nodes[0]

    @property
    def file_count(self) -> int:
        return sum(1 for e in self.entries if e.is_file())

    def _check_region(self, offset: int, length: int, what: str):
        if offset < 0 or length < 0 or offset + length > self.view.get_max_offset():
            raise FormatError(
                f"{self.name}: {what} (0x{offset:X}+0x{length:X}) lies outside the 0x{self.view.size:X}-byte buffer"
            )

    def _read_name(self, name_offset: int, what: str) -> str:
        h = self.header
        if name_offset >= h.string_table_size:
            raise FormatError(f"{self.name}: {what} name offset 0x{name_offset:X} outside string table")
        return self.view.read_cstring(h.string_table_offset + name_offset, limit=h.string_table_size - name_offset)

    def _read_nodes(self):
        h = self.header
        if not ArchiveFormat.is_sane_count(h.node_count):
            raise FormatError(f"{self.name}: invalid node count {h.node_count}")
        self._check_region(h.node_offset, h.node_count * NODE_SIZE, "node table")
        self._check_region(h.string_table_offset, h.string_table_size, "string table")

        nodes = []
        r = Reader(self.view, h.node_offset)
        for i in range(h.node_count):
            type_tag = r.read_string(4)
            name_offset = r.read_u32()
            name_hash = r.read_u16()
            entry_count = r.read_u16()
            first_entry = r.read_u32()
            if first_entry + entry_count > h.entry_count:
                raise FormatError(
                    f"{self.name}: node #{i} entries {first_entry}..{first_entry + entry_count} "
                    f"exceed entry table ({h.entry_count})"
                )
            name = self._read_name(name_offset, f"node #{i}")
            nodes.append(Node(i, type_tag, name, name_offset, name_hash, entry_count, first_entry))
        return nodes

    def _read_entries(self):
        h = self.header
        self._check_region(h.entry_offset, h.entry_count * ENTRY_SIZE, "entry table")

        entries = []
        r = Reader(self.view, h.entry_offset)
        for i in range(h.entry_count):
            entry_id = r.read_u16()
            name_hash = r.read_u16()
            packed = r.read_u32()
            data_offset = r.read_u32()
            size = r.read_u32()
            reserved = r.read_u32()
            if reserved != 0:
                raise FormatError(f"{self.name}: entry #{i} reserved field is 0x{reserved:X}")

            flags = packed >> 24
            name_offset = packed & 0x00FFFFFF
            name = self._read_name(name_offset, f"entry #{i}")
            entry = Entry(i, entry_id, name_hash, flags, name_offset, data_offset, size, name)

            if entry.is_directory():
                if data_offset >= h.node_count and not (data_offset == NO_PARENT and name == ".."):
                    raise FormatError(f"{self.name}: entry #{i} '{name}' links to missing node {data_offset}")
            else:
                start = h.data_offset + data_offset
                self._check_region(start, size, f"payload of '{name}'")
                entry.data = self.view.read(start, size)
                # ARAM 크기 안쪽 = 압축 영역으로 표시된 구간
                entry.is_marked_compressed = data_offset < h.aram_size
            entries.append(entry)
        return entries

    def _assign_entries(self):
        for node in self.nodes:
            node.entries = self.entries[node.first_entry:node.first_entry + node.entry_count]
            for entry in node.entries:
                if entry.parent_index is None:
                    entry.parent_index = node.index

    # (상대 경로, 노드) 를 깊이 우선으로 반환. 루트 = "". 이름 검사와 순환 검사 포함
    def walk_nodes(self):
        _check_component(self.root.name, f"{self.name}: root node")
        visited = set()
        stack = [("", self.root)]
        while stack:
            rel, node = stack.pop()
            if node.index in visited:
                raise FormatError(f"{self.name}: directory link cycle at node #{node.index} '{node.name}'")
            visited.add(node.index)
            yield rel, node

            children = []
            for entry in node.entries:
                if entry.is_special_link():
                    continue
                _check_component(entry.name, f"{self.name}: {rel or '/'}")
                if entry.is_directory():
                    child_rel = f"{rel}/{entry.name}" if rel else entry.name
                    children.append((child_rel, self.nodes[entry.node_index]))
            stack.extend(reversed(children))

    # 파일 엔트리만 (상대 경로, 엔트리)
    def walk(self):
        for rel, node in self.walk_nodes():
            for entry in node.files():
                yield (f"{rel}/{entry.name}" if rel else entry.name), entry

    def _build_node_paths(self):
        if self._node_paths is None:
            self._node_paths = {node.index: rel for rel, node in self.walk_nodes()}
        return self._node_paths

    # 메타데이터용 경로. 트리에서 닿지 않는 엔트리는 이름만 반환
    def entry_path(self, index: int) -> str:
        entry = self.entries[index]
        parent = self._build_node_paths().get(entry.parent_index)
        if parent is None:
            return entry.name
        return f"{parent}/{entry.name}" if parent else entry.name

    def read(self, path: str) -> bytes:
        if self._path_index is None:
            self._path_index = dict(self.walk())
        key = path.replace("\\", "/").strip("/")
        if key not in self._path_index:
            raise KeyError(path)
        return self._path_index[key].data

    def entry_data(self, entry: Entry, decompress: bool = True) -> bytes:
        data = entry.data
        if not decompress or not entry.is_compressed():
            return data
        if entry.is_szs() and yaz0.is_yaz0(data):
            return yaz0.decompress(data)
        if entry.is_szp() and yay0.is_yay0(data):
            return yay0.decompress(data)
        logging.warning(f"[rarc] '{entry.name}': 압축 플래그가 있지만 매직 불일치 → 원본 그대로 저장")
        return data

    # root_dir/<이름>_dir/<루트 노드 이름>/... 에 추출. 출력 루트 경로 반환
    def extract(self, root_dir: str, decompress: bool = True, progress: bool = False) -> str:
        if not os.path.isdir(root_dir):
            raise PolicyError(f"{GarStrings.MsgNotADirectory}: {root_dir}")

        # 쓰기 전에 트리 전체 검사 + 모든 페이로드 해제. 실패하면 디스크에 아무것도 남기지 않음
        tree = list(self.walk_nodes())
        files = [(rel, entry, self.entry_data(entry, decompress)) for rel, entry in self.walk()]

        out_root = os.path.join(root_dir, f"{self.name}_dir", self.root.name)
        for rel, _node in tree:
            os.makedirs(os.path.join(out_root, *rel.split("/")) if rel else out_root, exist_ok=True)

        for rel, entry, data in tqdm(files, desc=f"{self.name} 추출 중", unit="파일", disable=not progress):
            out_path = os.path.join(out_root, *rel.split("/"))
            with open(out_path, "wb") as f:
                f.write(data)
            logging.debug(f"[rarc] 추출: {rel} ({len(entry.data)} → {len(data)} bytes)")

        logging.info(f"[rarc] {self.name}: 파일 {len(files)}개, 디렉토리 {len(tree)}개 추출 완료 → {out_root}")
        return out_root


def open_archive(buf, name: str = "archive") -> Archive:
    return Archive(buf, name)


# FormatCatalog 등록용
class RarcOpener(ArchiveFormat):
    def __init__(self):
        super().__init__()
        self.name = "RARC"
        self.extensions = ["arc", "rarc"]
        self.signatures = [MAGIC]

    def try_open(self, view: BinaryView):
        try:
            return Archive(view, view.name)
        except FormatError as e:
            logging.debug(f"[RarcOpener] 열기 실패: {e}")
            return None


FormatCatalog.add_format(RarcOpener())
