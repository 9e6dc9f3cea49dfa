# szs_change.py - 단일 파일 Yaz0(.szs) / Yay0(.szp) 압축 ↔ 해제

import os
import sys
import logging
import argparse

from jsystem import compression
from jsystem.compression import CompressionType
from jsystem.rarcunpack import MAGIC as RARC_MAGIC
from execution.logsetup import setup_logging, teardown_logging, DEFAULT_LOG_FILE

KINDS = {"szs": CompressionType.SZS, "szp": CompressionType.SZP}


# 압축: <입력>.szs / <입력>.szp
def compress_file(input_path: str, kind: CompressionType = CompressionType.SZS, output_path: str = None) -> str:
    with open(input_path, "rb") as f:
        data = f.read()

    if compression.detect(data) != CompressionType.NONE:
        logging.warning(f"[szs_change] 이미 압축된 파일을 다시 압축합니다: {input_path}")

    packed = compression.encode(data, kind)
    if output_path is None:
        output_path = input_path + kind.extension
    with open(output_path, "wb") as f:
        f.write(packed)

    logging.info(f"[szs_change] 압축 완료 ({kind.name}): {len(data)} → {len(packed)} bytes → {output_path}")
    return output_path


# 해제: .szs/.szp 확장자를 떼고, 알맹이가 RARC면 .arc를 붙임. 확장자가 없으면 .dec
def decompress_file(input_path: str, output_path: str = None) -> str:
    with open(input_path, "rb") as f:
        data = f.read()

    result = compression.decode(data)

    if output_path is None:
        base, ext = os.path.splitext(input_path)
        if ext.lower() not in (".szs", ".szp"):
            base = input_path + ".dec"
        if result[:4] == RARC_MAGIC and not base.lower().endswith(".arc"):
            base += ".arc"
        output_path = base
    with open(output_path, "wb") as f:
        f.write(result)

    logging.info(f"[szs_change] 해제 완료: {len(data)} → {len(result)} bytes → {output_path}")
    return output_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="szs_change", description="Compress or decompress a single Yaz0/Yay0 file.")
    parser.add_argument("input", help="Input file")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--compress", choices=list(KINDS), help="Compress with Yaz0 (szs) or Yay0 (szp)")
    mode.add_argument("--decompress", action="store_true", help="Decompress a Yaz0/Yay0 file")
    parser.add_argument("-o", "--output", default=None, help="Output file path")
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

        if opts.decompress:
            out_path = decompress_file(opts.input, opts.output)
        else:
            out_path = compress_file(opts.input, KINDS[opts.compress], opts.output)
        print(f"[완료] {out_path}")
        return 0

    except Exception as e:
        logging.exception(f"[szs_change] 변환 실패: {e}")
        print(f"[오류] 변환 실패: {e}")
        return 1

    finally:
        teardown_logging()


if __name__ == "__main__":
    sys.exit(main())
