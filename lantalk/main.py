"""LanTalk - Main Entry Point

같은 LAN의 두 장치가 코드(QR / 붙여넣기)만으로 P2P 음성·영상 통화를 연결한다.

    lantalk host          # offer 코드 표시 → answer 코드 입력
    lantalk join          # offer 코드 입력 → answer 코드 표시
    lantalk encode FILE   # SDP → 토큰
    lantalk decode TOKEN  # 토큰 → SDP
"""

import sys
import argparse
import asyncio
import threading
from pathlib import Path
from typing import Optional

from lantalk.config.config_loader import load_config
from lantalk.config.models import Config
from lantalk.common.logger import setup_logging, get_logger
from lantalk.common.exceptions import LanTalkError, ConfigurationError, ConnectivityLostError
from lantalk.monitoring.metrics import get_metrics
from lantalk.negotiation.controller import NegotiationController
from lantalk.negotiation.enums import NegotiationState
from lantalk.rtc.aiortc_engine import AiortcEngine, AiortcMediaCapture
from lantalk.rtc.network import get_local_ip
from lantalk.signaling.envelope import EnvelopeCodec
from lantalk.signaling.models import SessionKind, SessionDescription
from lantalk.transport.qr import QRTerminalTransport

# 전역 로거 (setup_logging 후에 사용)
logger = None

TERMINAL_STATES = (NegotiationState.CONNECTED, NegotiationState.FAILED)
AWAITING_STATES = (NegotiationState.AWAITING_OFFER, NegotiationState.AWAITING_ANSWER)


def print_immediate(*args, **kwargs):
    """즉시 출력되는 print 함수"""
    kwargs['flush'] = True
    print(*args, **kwargs)


def parse_args(argv=None) -> argparse.Namespace:
    """명령줄 인자 파싱"""
    parser = argparse.ArgumentParser(
        prog="lantalk",
        description="Serverless LAN video calls negotiated with scannable codes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 통화 시작 (offer 코드 표시)
  lantalk host

  # 통화 참여 (offer 코드 붙여넣기)
  lantalk join

  # SDP 파일을 토큰으로 변환
  lantalk encode offer.sdp --type offer
"""
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='설정 파일 경로 (기본: config/config.yaml)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='로그 레벨 (설정 파일 오버라이드)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='%(prog)s 0.1.0'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    host = subparsers.add_parser('host', help='offer 코드를 만들어 통화 시작')
    host.add_argument('--no-qr', action='store_true', help='QR 출력 생략 (토큰만 출력)')

    join = subparsers.add_parser('join', help='offer 코드를 입력해 통화 참여')
    join.add_argument('--no-qr', action='store_true', help='QR 출력 생략 (토큰만 출력)')

    encode = subparsers.add_parser('encode', help='SDP 파일을 토큰으로 변환')
    encode.add_argument('file', help='SDP 파일 경로 (- 이면 stdin)')
    encode.add_argument('--type', choices=['offer', 'answer'], default='offer', help='세션 설명 종류')
    encode.add_argument('--qr', action='store_true', help='QR 함께 출력')

    decode = subparsers.add_parser('decode', help='토큰을 SDP로 변환')
    decode.add_argument('token', nargs='?', default=None, help='토큰 (생략 시 stdin)')

    return parser.parse_args(argv)


def load_configuration(config_path: str = None) -> Config:
    """설정 로드

    Raises:
        ConfigurationError: 설정 로드 실패 시
    """
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        print_immediate(f"❌ 설정 파일을 찾을 수 없습니다: {e}", file=sys.stderr)
        raise ConfigurationError(str(e)) from e
    except Exception as e:
        print_immediate(f"❌ 설정 로드 실패: {e}", file=sys.stderr)
        raise ConfigurationError(str(e)) from e


def initialize_logging(config: Config, log_level: Optional[str] = None) -> None:
    """로깅 초기화"""
    if log_level:
        config.logging.level = log_level

    setup_logging(
        level=config.logging.level,
        format_type=config.logging.format,
        output=config.logging.output,
        file_path=config.logging.file_path
    )

    global logger
    logger = get_logger(__name__)


def build_controller(config: Config) -> NegotiationController:
    """aiortc 어댑터로 컨트롤러 구성"""
    return NegotiationController(
        engine_factory=lambda: AiortcEngine(config.engine),
        capture=AiortcMediaCapture(config.media),
        codec=EnvelopeCodec(
            compression_level=config.codec.compression_level,
            max_token_length=config.codec.max_token_length,
        ),
        config=config.negotiation,
        media_config=config.media,
    )


def show_token(token: str, with_qr: bool) -> None:
    """토큰 표시 (QR + 수동 복사용 문자열)"""
    if with_qr:
        print_immediate(QRTerminalTransport().render(token))
    print_immediate(token)


async def read_line(prompt: str) -> str:
    """이벤트 루프를 막지 않고 stdin 한 줄 읽기

    읽기는 daemon 스레드에서 한다. 호출 태스크가 취소되어도 스레드가
    종료를 막지 않으므로 Enter 입력 없이 프로세스가 끝날 수 있다.
    """
    print_immediate(prompt, end='')
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _settle(line: Optional[str], error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(line)

    def _reader() -> None:
        line, error = None, None
        try:
            line = sys.stdin.readline()
        except (OSError, ValueError) as e:
            error = e
        try:
            loop.call_soon_threadsafe(_settle, line, error)
        except RuntimeError:
            # 이벤트 루프가 이미 닫힘
            pass

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()
    line = await future
    if line == '':
        raise EOFError("stdin closed")
    return line


def raise_failure(controller: NegotiationController) -> None:
    """FAILED 상태면 저장된 치명적 에러를 올린다"""
    if controller.state != NegotiationState.FAILED:
        return
    if controller.error is not None:
        raise controller.error
    raise ConnectivityLostError("Connection lost. Peer disconnected.")


async def read_line_or_fail(controller: NegotiationController, prompt: str) -> str:
    """stdin 한 줄 읽기 (기다리는 중 세션이 FAILED 가 되면 그 에러를 올림)"""
    raise_failure(controller)
    reading = asyncio.create_task(read_line(prompt))
    failed = asyncio.create_task(wait_for_failure(controller))
    try:
        done, _ = await asyncio.wait({reading, failed}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        reading.cancel()
        failed.cancel()
        raise
    failed.cancel()
    if reading in done:
        return reading.result()
    reading.cancel()
    raise controller.error or ConnectivityLostError("Connection lost. Peer disconnected.")


async def read_token(controller: NegotiationController, prompt: str):
    """수동 입력을 받을 때까지 반복 (비치명적 에러는 재입력)

    Raises:
        LanTalkError: 치명적 에러, 또는 대기 중 세션이 FAILED 로 전이한 경우
    """
    while True:
        text = await read_line_or_fail(controller, prompt)
        try:
            result = await controller.submit_manual(text)
        except LanTalkError as e:
            if e.fatal:
                raise
            raise_failure(controller)
            print_immediate(f"⚠️  {e}")
            continue
        if result is None and controller.state in AWAITING_STATES:
            print_immediate("⚠️  Code looks incomplete. Paste the whole code.")
            continue
        return result


async def wait_for_terminal_state(controller: NegotiationController) -> NegotiationState:
    """CONNECTED 또는 FAILED 까지 대기"""
    reached = asyncio.Event()

    def _on_transition(old_state, new_state, session):
        if new_state in TERMINAL_STATES:
            reached.set()

    controller.add_listener(_on_transition)
    try:
        if controller.state not in TERMINAL_STATES:
            await reached.wait()
    finally:
        controller.remove_listener(_on_transition)
    return controller.state


async def hold_call(controller: NegotiationController) -> None:
    """통화 유지 (Enter 입력 또는 연결 실패 시 종료)"""
    session = controller.session
    print_immediate(f"\n✅ Connected (session {session.session_id})"
                    + (" - remote media not yet confirmed" if session.connected_unconfirmed else ""))
    hangup = asyncio.create_task(read_line("Press Enter to hang up.\n"))
    failed = asyncio.create_task(wait_for_failure(controller))
    done, pending = await asyncio.wait({hangup, failed}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    if session.call_duration is not None:
        print_immediate(f"Call duration: {format_duration(session.call_duration)}")
    if failed in done and controller.error is not None:
        print_immediate(f"\n❌ {controller.error}")


def format_duration(seconds: float) -> str:
    """경과 시간 → MM:SS (1시간 이상이면 H:MM:SS)"""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


async def wait_for_failure(controller: NegotiationController) -> None:
    failed = asyncio.Event()

    def _on_transition(old_state, new_state, session):
        if new_state == NegotiationState.FAILED:
            failed.set()

    controller.add_listener(_on_transition)
    try:
        await failed.wait()
    finally:
        controller.remove_listener(_on_transition)


async def run_host(config: Config, with_qr: bool) -> int:
    """Host 흐름: offer 표시 → 상대 스캔 확인 → answer 입력 → 연결"""
    controller = build_controller(config)
    try:
        print_immediate(f"📡 Local address: {get_local_ip()}")
        token = await controller.start_host()
        if token is None:
            return 1
        if controller.warning:
            print_immediate(f"⚠️  {controller.warning}")

        print_immediate("\nShow this code to your guest:\n")
        show_token(token, with_qr)

        await read_line_or_fail(controller, "\nPress Enter once the guest has scanned the code.\n")
        await controller.guest_scanned()

        await read_token(controller, "Paste the guest's answer code: ")
        state = await wait_for_terminal_state(controller)
        if state == NegotiationState.CONNECTED:
            await hold_call(controller)
        return 0 if state == NegotiationState.CONNECTED else 1

    except LanTalkError as e:
        logger.error("host_session_failed", error_type=type(e).__name__, error=str(e))
        print_immediate(f"\n❌ {e}", file=sys.stderr)
        return 1
    except EOFError:
        return 1
    finally:
        await controller.close()


async def run_join(config: Config, with_qr: bool) -> int:
    """Guest 흐름: offer 입력 → answer 표시 → 연결 대기"""
    controller = build_controller(config)
    try:
        print_immediate(f"📡 Local address: {get_local_ip()}")
        await controller.join()

        token = await read_token(controller, "Paste the host's offer code: ")
        if token is None:
            return 1
        if controller.warning:
            print_immediate(f"⚠️  {controller.warning}")

        print_immediate("\nShow this code to the host:\n")
        show_token(token, with_qr)
        print_immediate("\nWaiting for the host to connect...")

        state = await wait_for_terminal_state(controller)
        if state == NegotiationState.CONNECTED:
            await hold_call(controller)
        elif controller.error is not None:
            print_immediate(f"\n❌ {controller.error}", file=sys.stderr)
        return 0 if state == NegotiationState.CONNECTED else 1

    except LanTalkError as e:
        logger.error("join_session_failed", error_type=type(e).__name__, error=str(e))
        print_immediate(f"\n❌ {e}", file=sys.stderr)
        return 1
    except EOFError:
        return 1
    finally:
        await controller.close()


def run_encode(config: Config, args: argparse.Namespace) -> int:
    """SDP 파일 → 토큰"""
    if args.file == '-':
        text = sys.stdin.read()
    else:
        text = Path(args.file).read_text(encoding='utf-8')

    codec = EnvelopeCodec(
        compression_level=config.codec.compression_level,
        max_token_length=config.codec.max_token_length,
    )
    envelope = codec.encode_envelope(SessionDescription(kind=SessionKind(args.type), text=text))
    if not envelope.fits_in_code:
        print_immediate(f"⚠️  Token is {envelope.token_length} characters, "
                        f"larger than a scannable code ({envelope.max_token_length}).",
                        file=sys.stderr)
    show_token(envelope.token, args.qr)
    return 0


def run_decode(config: Config, args: argparse.Namespace) -> int:
    """토큰 → SDP"""
    token = args.token if args.token is not None else sys.stdin.read()
    codec = EnvelopeCodec(
        compression_level=config.codec.compression_level,
        max_token_length=config.codec.max_token_length,
    )
    try:
        description = codec.decode_or_raise(token)
    except LanTalkError as e:
        print_immediate(f"❌ {e}", file=sys.stderr)
        return 1

    print_immediate(f"type: {description.kind.value}")
    print_immediate(description.text, end='')
    return 0


def main(argv=None) -> int:
    """메인 함수

    Returns:
        int: 종료 코드
    """
    try:
        args = parse_args(argv)
        config = load_configuration(args.config)
        initialize_logging(config, args.log_level)

        if config.monitoring.prometheus_enabled:
            get_metrics().serve(config.monitoring.prometheus_port)

        logger.info("lantalk_started", command=args.command)

        if args.command == 'host':
            return asyncio.run(run_host(config, with_qr=not args.no_qr))
        if args.command == 'join':
            return asyncio.run(run_join(config, with_qr=not args.no_qr))
        if args.command == 'encode':
            return run_encode(config, args)
        return run_decode(config, args)

    except ConfigurationError:
        return 1
    except KeyboardInterrupt:
        print_immediate("\n👋 Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
