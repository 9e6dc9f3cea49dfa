# lzcommon.py - Yaz0 / Yay0 공용 LZ 매치 탐색 + 1단계 선행 탐색 인코더
#
# Licensed under the MIT License.

# 두 포맷은 토큰 배치만 다르고 매치 선택 방식은 동일하다.
# 결과 바이트가 기존 툴(yaz0enc 계열)과 같아야 하므로 탐색 순서/동점 처리를 바꾸지 말 것.

import numpy as np
from numba import njit

WINDOW_SIZE = 0x1000        # 4096 바이트 뒤까지
MIN_MATCH = 3               # 2바이트 매치는 리터럴 2개와 비용이 같음
MAX_SHORT_MATCH = 0x11      # 니블로 표현 가능한 최대 길이 (2..17)
MAX_MATCH = 0xFF + 0x12     # 273
LOOKAHEAD_GAIN = 2          # 다음 위치 매치가 이만큼 이상 길면 현재 매치를 버림
MAX_EXPANSION = 1000        # 선언된 해제 크기 상한 = 입력 크기 * MAX_EXPANSION

# 압축 해제 상태 코드 (njit 함수는 예외 대신 음수 반환)
DECODE_OK = 0
DECODE_READ_OVERFLOW = -1
DECODE_BAD_DISTANCE = -2
DECODE_WRITE_OVERFLOW = -3


def as_array(data) -> np.ndarray:
    return np.frombuffer(bytes(data), dtype=np.uint8)


# pos 위치에서 가장 긴 매치 탐색. 먼 후보부터 훑고, 더 길 때만 교체
# 비교 길이는 제한하지 않음 (MAX_MATCH 제한은 토큰 기록 시에만)
@njit(cache=True)
def search_match(src, pos, size):
    start = pos - WINDOW_SIZE
    if start < 0:
        start = 0
    limit = size - pos

    best_len = 1
    best_pos = 0
    for i in range(start, pos):
        j = 0
        while j < limit and src[i + j] == src[pos + j]:
            j += 1
        if j > best_len:
            best_len = j
            best_pos = i

    if best_len == 2:
        best_len = 1
    return best_len, best_pos


# 입력 전체를 (길이, 거리) 토큰 열로 변환. 길이 1 = 리터럴
# pending_* 는 한 번의 호출 안에서만 쓰이는 선행 탐색 상태
@njit(cache=True)
def encode_tokens(src):
    size = src.shape[0]
    lengths = np.zeros(size, dtype=np.int32)
    distances = np.zeros(size, dtype=np.int32)
    count = 0

    has_pending = False
    pending_len = 0
    pending_pos = 0

    pos = 0
    while pos < size:
        if has_pending:
            length = pending_len
            match_pos = pending_pos
            has_pending = False
        else:
            length, match_pos = search_match(src, pos, size)
            if length >= MIN_MATCH:
                next_len, next_pos = search_match(src, pos + 1, size)
                if next_len >= length + LOOKAHEAD_GAIN:
                    length = 1
                    has_pending = True
                    pending_len = next_len
                    pending_pos = next_pos

        if length < MIN_MATCH:
            lengths[count] = 1
            distances[count] = 0
            pos += 1
        else:
            if length > MAX_MATCH:
                length = MAX_MATCH
            lengths[count] = length
            distances[count] = pos - match_pos
            pos += length
        count += 1

    return lengths[:count], distances[:count]
