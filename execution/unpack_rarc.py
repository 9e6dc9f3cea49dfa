# unpack_rarc.py - RARC 아카이브 (.arc / .szs / .szp) 추출

import os
import sys
import time
import logging
import argparse

from gcnres.gameres import FormatCatalog
from gcnres.utility import EntryMetadataManager
from execution.logsetup import setup_logging, teardown_logging, DEFAULT_LOG_FILE
import jsystem.rarcunpack  # noqa: F401  (FormatCatalog에 RarcOpener 등록)

META_FILE_NAME = "entry_meta.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="unpack_rarc", description="Extract a RARC archive (.arc / .szs / .szp).")
    parser.add_argument("input", help="Archive file to extract")
    parser.add_argument("output_dir", nargs="?", default=None,
                        help="Existing folder to extract into (default: folder of the archive)")
    parser.add_argument("--no-decompress", action="store_true", help="Keep Yaz0/Yay0 compressed entries as stored")
    parser.add_argument("--no-meta", action="store_true", help=f"Do not write {META_FILE_NAME}")
    parser.add_argument("--verbose", action="store_true", help="Print debug logging to the console")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help="Debug log file path")
    return parser


def main(args=None) -> int:
    opts = build_parser().parse_args(args)
    setup_logging(opts.log_file, opts.verbose)

    try:
        if not os.path.isfile(opts.input):
            print(f"[오류] 파일이 존재하지 않습니다: {opts.input}")
            return 1

        out_dir = opts.output_dir or os.path.dirname(os.path.abspath(opts.input))
        logging.debug(f"[main] 입력 파일: {opts.input}, 출력 폴더: {out_dir}")

        start = time.time()
        archive = FormatCatalog.open_archive(opts.input)
        out_root = archive.extract(out_dir, decompress=not opts.no_decompress, progress=True)

        if not opts.no_meta:
            meta_path = os.path.join(out_dir, f"{archive.name}_dir", META_FILE_NAME)
            EntryMetadataManager(meta_path).save_metadata(archive)

        elapsed = time.time() - start
        print(f"[완료] 파일 {archive.file_count}개 추출 ({elapsed:.2f}초) → {out_root}")
        return 0

    except KeyboardInterrupt:
        print("\n[취소] 사용자에 의해 중단되었습니다.")
        logging.warning("[main] 사용자 중단 (Ctrl+C)")
        return 1

    except Exception as e:
        logging.exception(f"[main] 예외 발생: {e}")
        print(f"[오류] 추출 실패: {e}")
        return 1

    finally:
        teardown_logging()


if __name__ == "__main__":
    sys.exit(main())
