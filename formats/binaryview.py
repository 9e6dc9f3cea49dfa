# binaryview.py - RARC / Yaz0 / Yay0 공용 빅엔디안 바이너리 뷰
#
# Licensed under the MIT License.

# 게임큐브 포맷은 전부 빅엔디안. 읽기는 BinaryView/Reader, 쓰기는 Writer를 사용함.

import os
import struct
import logging

from gcnres.gameres import BoundsError

CP932 = 'cp932'  # Shift-JIS 호환 (ASCII 포함)


# BinaryView: 바이트 버퍼 위에서 범위 검사를 하며 읽는 뷰
class BinaryView:
    def __init__(self, data, name: str = "<memory>"):
        if isinstance(data, BinaryView):
            data = data.data
        self.data = bytes(data)
        self.size = len(self.data)
        self.name = name
        logging.debug(f"[binaryview] '{self.name}' 생성됨 (크기: {self.size} bytes)")

    def __len__(self):
        return self.size

    @classmethod
    def from_file(cls, filepath: str) -> "BinaryView":
        with open(filepath, "rb") as f:
            data = f.read()
        return cls(data, name=os.path.basename(filepath))

    def get_max_offset(self) -> int:
        return self.size

    # offset ~ offset+length 가 버퍼 안에 있는지 확인
    def reserve(self, offset: int, length: int):
        if offset < 0 or length < 0 or offset + length > self.size:
            raise BoundsError(
                f"{self.name}: read of {length} bytes at 0x{offset:X} exceeds buffer size 0x{self.size:X}"
            )

    def read(self, offset: int, length: int) -> bytes:
        self.reserve(offset, length)
        return self.data[offset:offset + length]

    def read_u8(self, offset: int) -> int:
        self.reserve(offset, 1)
        return self.data[offset]

    def read_u16(self, offset: int) -> int:
        self.reserve(offset, 2)
        return struct.unpack_from('>H', self.data, offset)[0]

    def read_u32(self, offset: int) -> int:
        self.reserve(offset, 4)
        return struct.unpack_from('>I', self.data, offset)[0]

    def ascii_equal(self, offset: int, s) -> bool:
        if isinstance(s, str):
            s = s.encode('ascii')
        if offset < 0 or offset + len(s) > self.size:
            return False
        return self.data[offset:offset + len(s)] == s

    # NULL 종료 문자열. limit 안에 NULL이 없으면 limit 끝까지 사용
    def read_cstring(self, offset: int, limit: int = None, encoding: str = CP932) -> str:
        end_limit = self.size if limit is None else min(self.size, offset + limit)
        if offset < 0 or offset >= end_limit:
            raise BoundsError(f"{self.name}: string offset 0x{offset:X} out of range")
        end = self.data.find(b'\x00', offset, end_limit)
        if end < 0:
            end = end_limit
        return self.data[offset:end].decode(encoding, errors='replace')


# Reader: BinaryView 기반 순차 읽기 커서 (C# BinaryReader 대응)
class Reader:
    def __init__(self, view: BinaryView, offset: int = 0):
        self.view = view
        self.offset = offset

    def read_u8(self) -> int:
        result = self.view.read_u8(self.offset)
        self.offset += 1
        return result

    def read_u16(self) -> int:
        result = self.view.read_u16(self.offset)
        self.offset += 2
        return result

    def read_u32(self) -> int:
        result = self.view.read_u32(self.offset)
        self.offset += 4
        return result

    def read_bytes(self, size: int) -> bytes:
        result = self.view.read(self.offset, size)
        self.offset += size
        return result

    def read_string(self, size: int, encoding: str = 'ascii') -> str:
        raw = self.read_bytes(size)
        return raw.decode(encoding, errors='replace')

    def seek(self, offset: int):
        self.offset = offset

    def tell(self) -> int:
        return self.offset


# Writer: 빅엔디안 bytearray 출력 (C# BinaryWriterX(ByteOrder.BigEndian) 대응)
class Writer:
    def __init__(self):
        self.output = bytearray()

    def __len__(self):
        return len(self.output)

    def tell(self) -> int:
        return len(self.output)

    def write_u8(self, val: int):
        self.output += struct.pack('>B', val)

    def write_u16(self, val: int):
        self.output += struct.pack('>H', val)

    def write_u32(self, val: int):
        self.output += struct.pack('>I', val)

    def write_bytes(self, data):
        self.output += data

    # 현재 길이를 alignment 배수로 0 패딩
    def align(self, alignment: int):
        remain = len(self.output) % alignment
        if remain:
            self.output += b'\x00' * (alignment - remain)

    def patch_u32(self, offset: int, val: int):
        if offset < 0 or offset + 4 > len(self.output):
            raise BoundsError(f"patch at 0x{offset:X} exceeds written size 0x{len(self.output):X}")
        struct.pack_into('>I', self.output, offset, val)

    def getvalue(self) -> bytes:
        return bytes(self.output)


__all__ = ["BinaryView", "Reader", "Writer", "CP932"]
