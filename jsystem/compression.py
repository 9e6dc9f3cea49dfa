# compression.py - Yaz0 / Yay0 판별과 공통 진입점
#
# Licensed under the MIT License.

# SZP = Yay0 (테이블 분리형, short-form), SZS = Yaz0 (제어 바이트 인터리브형, long-form)

import logging
from enum import Enum
from dataclasses import dataclass

from gcnres.gameres import FormatError
from jsystem import yaz0, yay0


class CompressionType(Enum):
    NONE = 0
    SZP = 1     # Yay0
    SZS = 2     # Yaz0

    @property
    def extension(self) -> str:
        return {CompressionType.NONE: "", CompressionType.SZP: ".szp", CompressionType.SZS: ".szs"}[self]


is_short_form = yay0.is_yay0
is_long_form = yaz0.is_yaz0


def detect(data) -> CompressionType:
    if yay0.is_yay0(data):
        return CompressionType.SZP
    if yaz0.is_yaz0(data):
        return CompressionType.SZS
    return CompressionType.NONE


def detect_stream(stream) -> CompressionType:
    if yay0.is_yay0_stream(stream):
        return CompressionType.SZP
    if yaz0.is_yaz0_stream(stream):
        return CompressionType.SZS
    return CompressionType.NONE


def encode(data, kind: CompressionType = CompressionType.SZS) -> bytes:
    if kind == CompressionType.SZP:
        return yay0.compress(data)
    if kind == CompressionType.SZS:
        return yaz0.compress(data)
    return bytes(data)


def decode(data) -> bytes:
    kind = detect(data)
    if kind == CompressionType.SZP:
        return yay0.decompress(data)
    if kind == CompressionType.SZS:
        return yaz0.decompress(data)
    raise FormatError("The supplied data is neither Yay0 nor Yaz0 compressed!")


# 압축 결과가 원본보다 작을 때만 사용. (결과, 실제 적용된 종류) 반환
def compress_if_smaller(data, kind: CompressionType, label: str = "") -> tuple[bytes, CompressionType]:
    if kind == CompressionType.NONE:
        return bytes(data), CompressionType.NONE
    packed = encode(data, kind)
    if len(packed) < len(data):
        return packed, kind
    logging.info(f"[compression] {label} 압축 결과가 더 큼 ({len(packed)} >= {len(data)}) → 원본 유지")
    return bytes(data), CompressionType.NONE


# 태그 + 해제 크기 + 압축 본문. NONE이면 payload 자체가 원본
@dataclass(frozen=True)
class CompressedStream:
    kind: CompressionType
    decoded_size: int
    payload: bytes

    @classmethod
    def from_bytes(cls, data) -> "CompressedStream":
        data = bytes(data)
        kind = detect(data)
        if kind == CompressionType.SZP:
            size = yay0.decoded_size(data)
        elif kind == CompressionType.SZS:
            size = yaz0.decoded_size(data)
        else:
            size = len(data)
        return cls(kind, size, data)

    @classmethod
    def encode(cls, data, kind: CompressionType) -> "CompressedStream":
        return cls(kind, len(data), encode(data, kind))

    def decode(self) -> bytes:
        if self.kind == CompressionType.NONE:
            return self.payload
        result = decode(self.payload)
        if len(result) != self.decoded_size:
            raise FormatError(f"decoded {len(result)} bytes, header declares {self.decoded_size}")
        return result

    def to_bytes(self) -> bytes:
        return self.payload

    def __len__(self):
        return len(self.payload)
