# repack_rarc.py - 폴더 → RARC 아카이브 리팩 (<폴더>.arc[.szs|.szp])

import sys
import time
import logging
import argparse

from jsystem.compression import CompressionType
from jsystem.rarcrepack import ArchiveType, build_to_file
from execution.logsetup import setup_logging, teardown_logging, DEFAULT_LOG_FILE

ARCHIVE_TYPES = {t.name.lower(): t for t in ArchiveType}
COMPRESSION_TYPES = {"none": CompressionType.NONE, "szs": CompressionType.SZS, "szp": CompressionType.SZP}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repack_rarc", description="Build a RARC archive from a folder.")
    parser.add_argument("input_dir", help="Folder to pack; its name becomes the root node")
    parser.add_argument("--type", choices=sorted(ARCHIVE_TYPES), default="dvd",
                        help="Memory region for file payloads (compressed = ARAM for compressed files, DVD for the rest)")
    parser.add_argument("--compress", choices=list(COMPRESSION_TYPES), default="none",
                        help="Compress the whole archive (kept only when smaller)")
    parser.add_argument("--verbose", action="store_true", help="Print debug logging to the console")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help="Debug log file path")
    return parser


def main(args=None) -> int:
    opts = build_parser().parse_args(args)
    setup_logging(opts.log_file, opts.verbose)

    try:
        archive_type = ARCHIVE_TYPES[opts.type]
        archive_compression = COMPRESSION_TYPES[opts.compress]
        logging.debug(f"[main] 입력 폴더: {opts.input_dir}, 타입: {archive_type.name}, 압축: {archive_compression.name}")

        start = time.time()
        out_path = build_to_file(opts.input_dir, archive_type, archive_compression, progress=True)
        elapsed = time.time() - start
        print(f"[완료] 리팩 성공 ({elapsed:.2f}초) → {out_path}")
        return 0

    except KeyboardInterrupt:
        print("\n[취소] 사용자에 의해 중단되었습니다.")
        logging.warning("[main] 사용자 중단 (Ctrl+C)")
        return 1

    except Exception as e:
        logging.exception(f"[오류] 예외 발생: {e}")
        print(f"[오류] 리팩 실패: {e}")
        return 1

    finally:
        teardown_logging()


if __name__ == "__main__":
    sys.exit(main())
