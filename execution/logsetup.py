# logsetup.py - 실행 모듈 공용 로거 설정 (파일 = DEBUG, 콘솔 = WARNING)
#
# Licensed under the MIT License.

import logging
from logging.handlers import RotatingFileHandler

DEFAULT_LOG_FILE = "debug_log.txt"

_installed = []


class SafeRotatingFileHandler(RotatingFileHandler):
    def doRollover(self):
        try:
            super().doRollover()
        except PermissionError as e:
            logging.warning(f"[SafeRotatingFileHandler] 롤오버 실패 (무시됨): {e}")
        except OSError as e:
            logging.warning(f"[SafeRotatingFileHandler] 예상치 못한 오류 (무시됨): {e}")


def setup_logging(log_file: str = DEFAULT_LOG_FILE, verbose: bool = False,
                  max_bytes: int = 100_000_000, backup_count: int = 5) -> logging.Logger:
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    teardown_logging()

    formatter = logging.Formatter("[%(levelname)s] %(message)s")

    if log_file:
        file_handler = SafeRotatingFileHandler(
            log_file,
            mode='a',
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8',
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        _installed.append(file_handler)

    # 콘솔 로그도 병렬 출력
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    _installed.append(console_handler)

    return logger


# setup_logging이 붙인 핸들러만 떼어내고 닫음
def teardown_logging():
    logger = logging.getLogger()
    for handler in _installed:
        logger.removeHandler(handler)
        handler.close()
    _installed.clear()
