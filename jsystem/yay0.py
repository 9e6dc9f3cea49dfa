# yay0.py - SZP (Yay0) 압축 / 해제
#
# Licensed under the MIT License.

# 헤더: "Yay0" + 해제 크기 + 링크 테이블 오프셋 + 청크 테이블 오프셋 (전부 u32 BE)
# 0x10 ~ 링크 오프셋  : 마스크 (32비트 워드, MSB부터 1 = 리터럴)
# 링크 ~ 청크 오프셋  : 역참조 16비트 워드 (상위 니블 = 길이-2, 0이면 청크에서 추가 길이)
# 청크 ~ 끝           : 리터럴 바이트와 추가 길이 바이트

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

MAGIC = b"Yay0"
HEADER_SIZE = 0x10


def is_yay0(data) -> bool:
    try:
        return len(data) >= HEADER_SIZE and bytes(data[:4]) == MAGIC
    except TypeError:
        return False


def is_yay0_stream(stream) -> bool:
    try:
        pos = stream.tell()
        header = stream.read(HEADER_SIZE)
        stream.seek(pos)
    except (OSError, ValueError, AttributeError):
        return False
    return is_yay0(header)


# (해제 크기, 링크 오프셋, 청크 오프셋)
def read_header(data):
    if not is_yay0(data):
        raise FormatError("The supplied data does not appear to be Yay0 compressed!")
    return BigEndian.ToUInt32(data, 4), BigEndian.ToUInt32(data, 8), BigEndian.ToUInt32(data, 12)


def decoded_size(data) -> int:
    return read_header(data)[0]


@njit(cache=True)
def _decode(src, out, link_offset, chunk_offset):
    size = out.shape[0]
    src_size = src.shape[0]
    code = HEADER_SIZE
    link = link_offset
    chunk = chunk_offset
    ctrl = 0
    bits = 0
    w = 0

    while w < size:
        if bits == 0:
            if code >= link_offset:
                return DECODE_READ_OVERFLOW
            ctrl = int(src[code])
            code += 1
            bits = 8

        if ctrl & 0x80:
            if chunk >= src_size:
                return DECODE_READ_OVERFLOW
            out[w] = src[chunk]
            chunk += 1
            w += 1
        else:
            if link + 2 > chunk_offset:
                return DECODE_READ_OVERFLOW
            b1 = int(src[link])
            b2 = int(src[link + 1])
            link += 2
            dist = (((b1 & 0xF) << 8) | b2) + 1
            length = b1 >> 4
            if length == 0:
                if chunk >= src_size:
                    return DECODE_READ_OVERFLOW
                length = int(src[chunk]) + 0x12
                chunk += 1
            else:
                length += 2

            copy_src = w - dist
            if copy_src < 0:
                return DECODE_BAD_DISTANCE
            if w + length > size:
                return DECODE_WRITE_OVERFLOW
            for k in range(length):
                out[w] = out[copy_src + k]
                w += 1

        ctrl = (ctrl << 1) & 0xFF
        bits -= 1
    return DECODE_OK


# 마스크/링크/청크 세 버퍼를 따로 채우고 각각의 사용 길이를 반환
@njit(cache=True)
def _pack(src, lengths, distances, masks, links, chunks):
    count = lengths.shape[0]
    r = 0
    link_len = 0
    chunk_len = 0

    for t in range(count):
        length = lengths[t]
        if length == 1:
            masks[t >> 3] |= 0x80 >> (t & 7)
            chunks[chunk_len] = src[r]
            chunk_len += 1
            r += 1
        else:
            link = (distances[t] - 1) & 0x0FFF
            if length > MAX_SHORT_MATCH:
                chunks[chunk_len] = length - 0x12
                chunk_len += 1
            else:
                link |= (length - 2) << 12
            links[link_len] = link >> 8
            links[link_len + 1] = link & 0xFF
            link_len += 2
            r += length

    # 마스크는 32비트 워드 단위로 저장
    mask_len = ((count + 31) // 32) * 4
    return mask_len, link_len, chunk_len


_STATUS_MESSAGES = {
    DECODE_READ_OVERFLOW: "compressed tables end before the declared size was produced",
    DECODE_BAD_DISTANCE: "back-reference points before the start of the output",
    DECODE_WRITE_OVERFLOW: "back-reference writes past the declared size",
}


def decompress(data) -> bytes:
    size, link_offset, chunk_offset = read_header(data)
    if not HEADER_SIZE <= link_offset <= chunk_offset <= len(data):
        raise FormatError(
            f"Yay0 table offsets out of order (link=0x{link_offset:X}, chunk=0x{chunk_offset:X}, size=0x{len(data):X})"
        )
    if size > len(data) * MAX_EXPANSION:
        raise FormatError(f"Yay0 declared size {size} is not sane for {len(data)} input bytes")
    if size == 0:
        return b""

    out = np.zeros(size, dtype=np.uint8)
    status = _decode(as_array(data), out, link_offset, chunk_offset)
    if status != DECODE_OK:
        raise BoundsError(f"Yay0: {_STATUS_MESSAGES[status]}")

    logging.debug(f"[yay0] 압축 해제 완료: {len(data)} → {size} bytes")
    return out.tobytes()


def compress(data) -> bytes:
    src = as_array(data)
    lengths, distances = encode_tokens(src)
    count = lengths.shape[0]
    size = src.shape[0]

    masks = np.zeros(((count + 31) // 32) * 4, dtype=np.uint8)
    links = np.zeros(count * 2, dtype=np.uint8)
    chunks = np.zeros(size, dtype=np.uint8)
    mask_len, link_len, chunk_len = _pack(src, lengths, distances, masks, links, chunks)

    link_offset = HEADER_SIZE + mask_len
    chunk_offset = link_offset + link_len
    header = MAGIC + struct.pack(">III", size, link_offset, chunk_offset)
    result = b"".join([
        header,
        masks[:mask_len].tobytes(),
        links[:link_len].tobytes(),
        chunks[:chunk_len].tobytes(),
    ])
    logging.debug(f"[yay0] 압축 완료: {size} → {len(result)} bytes (토큰 {count}개)")
    return result


# FormatCatalog 등록용
class Yay0Format(CompressionFormat):
    def __init__(self):
        super().__init__()
        self.name = "Yay0"
        self.extensions = ["szp"]
        self.signatures = [MAGIC]

    def is_format(self, data) -> bool:
        return is_yay0(data)

    def compress(self, data) -> bytes:
        return compress(data)

    def decompress(self, data) -> bytes:
        return decompress(data)


FormatCatalog.add_format(Yay0Format())
