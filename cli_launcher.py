import sys
import os
import logging

# Nuitka 대응: 실행 경로 기반으로 base_dir 설정
if getattr(sys, 'frozen', False):
    base_dir = os.path.dirname(sys.executable)
else:
    base_dir = os.path.dirname(os.path.abspath(__file__))

if base_dir not in sys.path:
    sys.path.insert(0, base_dir)

from execution import unpack_rarc, repack_rarc, szs_change  # noqa: E402

CANCEL_WORDS = ["q", "취소"]


# CLI 헤더
def print_banner():
    banner = r"""
   ____    _    ____   ____      _             _____           _
  |  _ \  / \  |  _ \ / ___|    / \   _ __ ___|_   _|__   ___ | |
  | |_) |/ _ \ | |_) | |       / _ \ | '__/ __|| |/ _ \ / _ \| |
  |  _ </ ___ \|  _ <| |___   / ___ \| | | (__ | | (_) | (_) | |
  |_| \_\_/  \_\_| \_\\____| /_/   \_\_|  \___||_|\___/ \___/|_|

  JSystem RARC UnPacker / RePacker + Yaz0 / Yay0 Tool CLI ver.
  -------------------------------
    """
    print(banner)


def ask(prompt: str):
    value = input(prompt).strip('" ')
    if value.lower() in CANCEL_WORDS:
        return None
    return value


def run_unpack():
    arc_path = ask("언팩할 .arc / .szs / .szp 경로 입력 [q = 취소]: ")
    if arc_path is None:
        return
    out_dir = ask("출력 폴더 경로 입력 (비우면 아카이브와 같은 폴더) [q = 취소]: ")
    if out_dir is None:
        return

    keep = input("압축된 내부 파일을 그대로 둘까요? (Y/N, 기본 N): ").strip().lower()
    args = [arc_path]
    if out_dir:
        args.append(out_dir)
    if keep == "y":
        args.append("--no-decompress")

    logging.info(f"[언팩] args: {args}")
    unpack_rarc.main(args)


def run_repack():
    input_dir = ask("리팩할 폴더 경로 입력 [q = 취소]: ")
    if input_dir is None:
        return

    print("  파일 배치 구역: [1] MEMORY  [2] ARAM  [3] DVD (기본)  [4] COMPRESSED")
    type_choice = input("▶ 번호 선택: ").strip()
    arc_type = {"1": "memory", "2": "aram", "3": "dvd", "4": "compressed"}.get(type_choice, "dvd")

    print("  아카이브 전체 압축: [1] 없음 (기본)  [2] SZS (Yaz0)  [3] SZP (Yay0)")
    comp_choice = input("▶ 번호 선택: ").strip()
    comp = {"1": "none", "2": "szs", "3": "szp"}.get(comp_choice, "none")

    args = [input_dir, "--type", arc_type, "--compress", comp]
    logging.info(f"[리팩] args: {args}")
    repack_rarc.main(args)


def run_szs_change():
    file_path = ask("변환할 파일 경로 입력 [q = 취소]: ")
    if file_path is None:
        return

    if not os.path.isfile(file_path):
        print(f"[오류] 파일이 존재하지 않습니다: {file_path}")
        return

    ext = os.path.splitext(file_path)[1].lower()
    if ext in (".szs", ".szp"):
        logging.info(f"[압축 해제] 파일: {file_path}")
        szs_change.main([file_path, "--decompress"])
        return

    print("  압축 방식: [1] SZS (Yaz0, 기본)  [2] SZP (Yay0)")
    kind = "szp" if input("▶ 번호 선택: ").strip() == "2" else "szs"
    logging.info(f"[압축] 파일: {file_path}, 방식: {kind}")
    szs_change.main([file_path, "--compress", kind])


def main():
    # 로그 설정
    log_path = os.path.join(base_dir, "cli_runlog.txt")
    logging.basicConfig(
        filename=log_path,
        level=logging.DEBUG,
        format="%(asctime)s [%(levelname)s] %(message)s"
    )

    actions = {"1": run_unpack, "2": run_repack, "3": run_szs_change}

    while True:
        print_banner()
        print("실행할 작업을 선택하세요 :")
        print("  [1] RARC 언팩 (.arc / .szs / .szp)")
        print("  [2] RARC 리팩 (폴더 → .arc)")
        print("  [3] SZS / SZP 압축 ↔ 해제")
        print("  [Q] 종료")
        print("")

        choice = input("▶ 번호 선택: ").strip().lower()
        logging.info(f"[선택] 사용자 입력: {choice}")

        if choice == "q":
            print("프로그램을 종료합니다.")
            return

        action = actions.get(choice)
        if action is None:
            logging.warning(f"[경고] 잘못된 입력: {choice}")
            print("올바른 번호를 입력하세요.")
            continue

        action()

        # 완료 후 선택
        while True:
            go_back = input("작업이 완료되었습니다. 메인 메뉴로 돌아가시겠습니까? (Y/N): ").strip().lower()
            if go_back == "y":
                break
            elif go_back == "n":
                print("프로그램을 종료합니다.")
                return
            else:
                print("Y 또는 N으로 입력해주세요.")


if __name__ == "__main__":
    try:
        logging.info("==== 실행 시작 ====")
        main()
        logging.info("==== 실행 종료 ====")
    except Exception:
        logging.exception("예외 발생:")
        print("예기치 않은 오류가 발생했습니다. 자세한 내용은 'cli_runlog.txt'를 확인하세요.")
