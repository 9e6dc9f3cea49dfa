# utility.py - 엔디안 / 문자열 / 해시 / 정렬 헬퍼와 메타데이터 저장
#
# Licensed under the MIT License.

import os
import json
import logging

# ============================
# Encodings
# ============================
SHIFT_JIS = 'cp932'


# ============================
# Endian Utilities
# ============================
class BigEndian:
    @staticmethod
    def ToUInt16(buf, index):
        return int.from_bytes(buf[index:index+2], 'big')

    @staticmethod
    def ToUInt32(buf, index):
        return int.from_bytes(buf[index:index+4], 'big')


# ============================
# RARC 이름 해시 / 정렬
# ============================

# h = h * 3 + byte (u16), 첫 NULL 바이트에서 중단
def name_hash(name: str | bytes) -> int:
    if isinstance(name, str):
        name = name.encode(SHIFT_JIS)
    h = 0
    for c in name:
        if c == 0:
            break
        h = (h * 3 + c) & 0xFFFF
    return h


def align(offset: int, alignment: int) -> int:
    return (offset + alignment - 1) & ~(alignment - 1)


# alignment 배수가 되도록 0 패딩을 붙인 bytes 반환
def pad_to(data: bytes, alignment: int) -> bytes:
    remain = len(data) % alignment
    if remain == 0:
        return bytes(data)
    return bytes(data) + b'\x00' * (alignment - remain)


# ============================
# 메타데이터 저장 및 출력. 언팩 결과 확인용
# ============================
class EntryMetadataManager:
    def __init__(self, json_path: str):
        self.json_path = json_path
        self.meta_list = []
        if os.path.isfile(self.json_path):
            self.meta_list = self.load_metadata()

    def load_metadata(self):
        with open(self.json_path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def build_metadata(archive) -> list:
        def get_hex(val):
            return f"0x{val:X}" if isinstance(val, int) else val

        meta_list = []
        for index, entry in enumerate(archive.entries):
            meta = {
                "name": entry.name,
                "path": archive.entry_path(index),
                "entry_index": index,
                "id": get_hex(entry.id),
                "flags": get_hex(entry.flags),
                "type": "dir" if entry.is_directory() else "file",
            }
            if entry.is_directory():
                meta["node_index"] = entry.node_index
            else:
                meta.update({
                    "offset": get_hex(entry.data_offset),
                    "size": get_hex(entry.size),
                    "tier": entry.tier.name if entry.tier else None,
                    "compressed": entry.is_compressed(),
                    "codec": "szs" if entry.is_szs() else ("szp" if entry.is_szp() else None),
                    "marked_compressed": entry.is_marked_compressed,
                })
            meta_list.append(meta)
        return meta_list

    def save_metadata(self, archive, output_path=None):
        if output_path is None:
            output_path = self.json_path

        self.meta_list = self.build_metadata(archive)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.meta_list, f, ensure_ascii=False, indent=2)

        logging.info(f"[EntryMetadataManager] {len(self.meta_list)}개 엔트리에 메타데이터 저장 완료 → {output_path}")
        return output_path
