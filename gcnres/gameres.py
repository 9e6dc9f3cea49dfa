# gameres.py - 포맷 공통 기반 (예외, 아카이브 포맷 베이스, 포맷 카탈로그)
#
# Licensed under the MIT License.

# GARbro의 GameRes.cs 구조(ArchiveFormat / FormatCatalog)를 참고해서
# RARC, Yaz0, Yay0 처리에 맞게 다시 작성함.

import os
import logging
from abc import ABC, abstractmethod
from typing import Optional
from collections import defaultdict


# ============================
# 예외 처리
# ============================
class GameResError(Exception):
    pass


# 매직/헤더/테이블이 잘못된 경우
class FormatError(GameResError):
    pass


# 계산된 읽기/쓰기 위치가 버퍼를 넘어가는 경우
class BoundsError(FormatError):
    pass


# 호출 조건 위반 (존재하지 않는 폴더 등). 파일시스템 변경 전에 발생해야 함
class PolicyError(GameResError):
    pass


# GARbro의 garStrings.Designer.cs의 해당.
class GarStrings:
    MsgInvalidFileName = "Invalid file name"
    MsgInvalidFormat = "Invalid file format"
    MsgNotADirectory = "Path must be an existing folder"


# 리소스 기능
class IResource(ABC):
    def __init__(self):
        self._name = getattr(self, "__class__").__name__  # 기본값 설정
        self.extensions = []
        self.signatures = []

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str):
        self._name = value

    @property
    @abstractmethod
    def type(self) -> str:
        pass


# 아카이브 포맷
class ArchiveFormat(IResource):
    @property
    def type(self) -> str:
        return "archive"

    # 실패 시 None 반환 (예외를 밖으로 던지지 않음)
    def try_open(self, view):
        raise NotImplementedError("포맷 오프너 구현 필요")

    # 유효한 항목 수 검사
    @staticmethod
    def is_sane_count(count: int, max_reasonable: int = 0x10000) -> bool:
        if count <= 0 or count > max_reasonable:
            logging.warning(f"[gameres] 항목 수 비정상: {count} (최대 허용: {max_reasonable})")
            return False
        return True


# 압축 포맷 (Yaz0 / Yay0)
class CompressionFormat(IResource):
    @property
    def type(self) -> str:
        return "compression"

    @abstractmethod
    def is_format(self, data) -> bool:
        pass

    @abstractmethod
    def compress(self, data) -> bytes:
        pass

    @abstractmethod
    def decompress(self, data) -> bytes:
        pass


# GARbro의 MultiDict.cs의 해당.
class MultiValueDict:
    def __init__(self):
        self._store = defaultdict(list)

    def add(self, key, value):
        if value not in self._store[key]:
            self._store[key].append(value)

    def get(self, key, return_empty_list=False):
        if key in self._store:
            return self._store[key]
        if return_empty_list:
            return []
        return None


# FormatCatalog - 포맷 레지스트리 (시그니처 / 확장자 기반)
class FormatCatalog:
    _formats_by_ext = MultiValueDict()
    _formats_by_sig = []
    formats = []

    @classmethod
    def add_format(cls, fmt: IResource):
        if fmt in cls.formats:
            return
        cls.formats.append(fmt)
        for ext in fmt.extensions:
            cls._formats_by_ext.add(ext.lower(), fmt)
            logging.debug(f"[gameres] 확장자 등록: {ext.lower()} → {fmt.name}")
        for sig in fmt.signatures:
            cls._formats_by_sig.append((sig, fmt))

    @classmethod
    def lookup_signature(cls, data: bytes) -> Optional[IResource]:
        if not isinstance(data, (bytes, bytearray)) or len(data) < 4:
            return None
        for sig, fmt in cls._formats_by_sig:
            if bytes(data[:len(sig)]) == sig:
                return fmt
        return None

    @classmethod
    def from_extension(cls, ext: str, expected_type: Optional[str] = None) -> Optional[IResource]:
        ext = ext.lower().lstrip(".")
        for fmt in cls._formats_by_ext.get(ext, return_empty_list=True):
            if expected_type is None or fmt.type == expected_type:
                return fmt
        return None

    # 시그니처 우선, 실패 시 확장자로 탐지
    @classmethod
    def detect_format(cls, filename: str, data: bytes) -> Optional[IResource]:
        fmt = cls.lookup_signature(data[:16])
        if fmt:
            logging.debug(f"[gameres] 시그니처 기반 포맷 감지 성공: {fmt.name}")
            return fmt
        fmt = cls.from_extension(os.path.splitext(filename)[1])
        if fmt:
            logging.debug(f"[gameres] 확장자 기반 포맷 감지 성공: {fmt.name}")
        else:
            logging.debug("[gameres] 포맷 감지 실패")
        return fmt

    @classmethod
    def open_archive(cls, filename: str):
        from formats.binaryview import BinaryView

        logging.debug(f"[gameres] 아카이브 열기 시도: {filename}")
        view = BinaryView.from_file(filename)
        data = view.data

        # 압축된 아카이브면 먼저 풀고, 안쪽은 바깥 확장자를 뗀 이름으로 다시 탐지 (foo.arc.szs → foo.arc)
        fmt = cls.detect_format(filename, data)
        if fmt is not None and fmt.type == "compression":
            data = fmt.decompress(data)
            fmt = cls.detect_format(os.path.splitext(filename)[0], data)

        if fmt is None or fmt.type != "archive":
            logging.error("[gameres] 포맷 감지 실패")
            raise FormatError(f"{GarStrings.MsgInvalidFormat}: {filename}")

        name = os.path.basename(filename).split(".")[0]
        arc = fmt.try_open(BinaryView(data, name=name))
        if arc is None:
            logging.error("[gameres] 포맷 감지 성공했지만 아카이브 열기 실패")
            raise FormatError(f"{GarStrings.MsgInvalidFormat}: {filename}")

        logging.debug(f"[gameres] 아카이브 열기 성공: {fmt.name}, 항목 수: {len(arc.entries)}")
        return arc
