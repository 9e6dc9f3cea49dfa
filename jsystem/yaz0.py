# yaz0.py - SZS (Yaz0) 압축 / 해제
#
# Licensed under the MIT License.

# 헤더: "Yaz0" + 해제 크기(u32 BE) + 예약 8바이트
# 본문: 제어 바이트 1개 + 토큰 최대 8개가 반복됨 (비트 1 = 리터럴, 0 = 역참조)

import struct
import logging

import numpy as np
from numba import njit

from gcnres.gameres import CompressionFormat, FormatCatalog, FormatError, BoundsError
from gcnres.utility import BigEndian
from jsystem.lzcommon import (
    as_array, encode_tokens, MAX_EXPANSION, MAX_SHORT_MATCH,
    DECODE_OK, DECODE_READ_OVERFLOW, DECODE_BAD_DISTANCE, DECODE_WRITE_OVERFLOW,
)

MAGIC = b"Yaz0"
HEADER_SIZE = 0x10


def is_yaz0(data) -> bool:
    try:
        return len(data) >= HEADER_SIZE and bytes(data[:4]) == MAGIC
    except TypeError:
        return False


# 스트림 위치는 그대로 복구함
def is_yaz0_stream(stream) -> bool:
    try:
        pos = stream.tell()
        header = stream.read(HEADER_SIZE)
        stream.seek(pos)
    except (OSError, ValueError, AttributeError):
        return False
    return is_yaz0(header)


def decoded_size(data) -> int:
    if not is_yaz0(data):
        raise FormatError("The supplied data does not appear to be Yaz0 compressed!")
    return BigEndian.ToUInt32(data, 4)


@njit(cache=True)
def _decode(src, out):
    size = out.shape[0]
    src_size = src.shape[0]
    r = HEADER_SIZE
    w = 0

    while w < size:
        if r >= src_size:
            return DECODE_READ_OVERFLOW
        ctrl = int(src[r])
        r += 1
        for bit in range(8):
            if w >= size:
                break
            if ctrl & (0x80 >> bit):
                if r >= src_size:
                    return DECODE_READ_OVERFLOW
                out[w] = src[r]
                w += 1
                r += 1
            else:
                if r + 1 >= src_size:
                    return DECODE_READ_OVERFLOW
                b1 = int(src[r])
                b2 = int(src[r + 1])
                r += 2
                dist = (((b1 & 0xF) << 8) | b2) + 1
                length = b1 >> 4
                if length == 0:
                    if r >= src_size:
                        return DECODE_READ_OVERFLOW
                    length = int(src[r]) + 0x12
                    r += 1
                else:
                    length += 2

                copy_src = w - dist
                if copy_src < 0:
                    return DECODE_BAD_DISTANCE
                if w + length > size:
                    return DECODE_WRITE_OVERFLOW
                # 겹치는 복사: 방금 쓴 바이트를 다시 읽음
                for k in range(length):
                    out[w] = out[copy_src + k]
                    w += 1
    return DECODE_OK


@njit(cache=True)
def _pack(src, lengths, distances, out):
    w = HEADER_SIZE
    r = 0
    t = 0
    count = lengths.shape[0]

    while t < count:
        ctrl_pos = w
        w += 1
        ctrl = 0
        for bit in range(8):
            if t >= count:
                break
            length = lengths[t]
            if length == 1:
                ctrl |= 0x80 >> bit
                out[w] = src[r]
                w += 1
                r += 1
            else:
                dist = distances[t] - 1
                if length > MAX_SHORT_MATCH:
                    out[w] = dist >> 8
                    out[w + 1] = dist & 0xFF
                    out[w + 2] = length - 0x12
                    w += 3
                else:
                    out[w] = ((length - 2) << 4) | (dist >> 8)
                    out[w + 1] = dist & 0xFF
                    w += 2
                r += length
            t += 1
        out[ctrl_pos] = ctrl
    return w


_STATUS_MESSAGES = {
    DECODE_READ_OVERFLOW: "compressed stream ends before the declared size was produced",
    DECODE_BAD_DISTANCE: "back-reference points before the start of the output",
    DECODE_WRITE_OVERFLOW: "back-reference writes past the declared size",
}


def decompress(data) -> bytes:
    size = decoded_size(data)
    if size > len(data) * MAX_EXPANSION:
        raise FormatError(f"Yaz0 declared size {size} is not sane for {len(data)} input bytes")
    if size == 0:
        return b""

    out = np.zeros(size, dtype=np.uint8)
    status = _decode(as_array(data), out)
    if status != DECODE_OK:
        raise BoundsError(f"Yaz0: {_STATUS_MESSAGES[status]}")

    logging.debug(f"[yaz0] 압축 해제 완료: {len(data)} → {size} bytes")
    return out.tobytes()


def compress(data) -> bytes:
    src = as_array(data)
    lengths, distances = encode_tokens(src)

    # 최악의 경우: 입력 1바이트당 1바이트 + 토큰 8개당 제어 바이트 1개
    size = src.shape[0]
    out = np.zeros(HEADER_SIZE + size + (size + 7) // 8, dtype=np.uint8)
    end = _pack(src, lengths, distances, out)

    header = MAGIC + struct.pack(">I", size) + b"\x00" * 8
    result = header + out[HEADER_SIZE:end].tobytes()
    logging.debug(f"[yaz0] 압축 완료: {size} → {len(result)} bytes (토큰 {len(lengths)}개)")
    return result


# FormatCatalog 등록용
class Yaz0Format(CompressionFormat):
    def __init__(self):
        super().__init__()
        self.name = "Yaz0"
        self.extensions = ["szs"]
        self.signatures = [MAGIC]

    def is_format(self, data) -> bool:
        return is_yaz0(data)

    def compress(self, data) -> bytes:
        return compress(data)

    def decompress(self, data) -> bytes:
        return decompress(data)


FormatCatalog.add_format(Yaz0Format())
