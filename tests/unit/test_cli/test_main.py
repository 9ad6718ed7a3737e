"""CLI 입력 처리 단위 테스트"""

import asyncio
import io
import threading

import pytest

from lantalk import main as cli
from lantalk.common.exceptions import ConnectivityLostError
from lantalk.negotiation.enums import NegotiationState, ConnectivityState


class BlockingStdin:
    """release 될 때까지 readline 이 돌아오지 않는 stdin"""

    def __init__(self):
        self.release = threading.Event()

    def readline(self):
        self.release.wait(5.0)
        return "\n"


def scripted_lines(lines, calls):
    async def _read_line(prompt):
        calls.append(prompt)
        if not lines:
            await asyncio.Event().wait()
        return lines.pop(0)
    return _read_line


async def reach_awaiting_answer(controller):
    await controller.start_host()
    await controller.guest_scanned()


class TestReadLine:
    """stdin 읽기 테스트"""

    @pytest.mark.asyncio
    async def test_returns_line(self, monkeypatch):
        monkeypatch.setattr(cli.sys, "stdin", io.StringIO("hello\n"))

        assert await cli.read_line("> ") == "hello\n"

    @pytest.mark.asyncio
    async def test_closed_stdin(self, monkeypatch):
        monkeypatch.setattr(cli.sys, "stdin", io.StringIO(""))

        with pytest.raises(EOFError):
            await cli.read_line("> ")

    @pytest.mark.asyncio
    async def test_cancelled_read_leaves_daemon_thread(self, monkeypatch):
        """취소된 읽기는 종료를 막지 않는 daemon 스레드에 남는다"""
        stdin = BlockingStdin()
        monkeypatch.setattr(cli.sys, "stdin", stdin)

        task = asyncio.create_task(cli.read_line("> "))
        await asyncio.sleep(0.02)
        readers = [t for t in threading.enumerate() if t.name == "stdin-reader"]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert readers
        assert all(t.daemon for t in readers)

        stdin.release.set()
        for reader in readers:
            reader.join(timeout=1.0)


class TestReadToken:
    """수동 코드 입력 루프 테스트"""

    @pytest.mark.asyncio
    async def test_reprompts_after_unreadable_code(self, controller, monkeypatch, answer_token):
        """읽을 수 없는 코드 → 재입력 후 연결"""
        calls = []
        lines = ["this is definitely not a code\n", answer_token + "\n"]
        monkeypatch.setattr(cli, "read_line", scripted_lines(lines, calls))
        await reach_awaiting_answer(controller)

        result = await cli.read_token(controller, "code: ")

        assert result == NegotiationState.CONNECTED
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failure_while_waiting_for_input(self, controller, engines, monkeypatch):
        """입력 대기 중 엔진 실패 → 저장된 에러로 종료"""
        monkeypatch.setattr(cli, "read_line", scripted_lines([], []))
        await reach_awaiting_answer(controller)

        task = asyncio.create_task(cli.read_token(controller, "code: "))
        await asyncio.sleep(0.01)
        engines[0].set_connectivity(ConnectivityState.FAILED)

        with pytest.raises(ConnectivityLostError):
            await asyncio.wait_for(task, timeout=1.0)

        assert controller.state == NegotiationState.FAILED

    @pytest.mark.asyncio
    async def test_already_failed_does_not_prompt(self, controller, engines, monkeypatch,
                                                  drain_events, answer_token):
        """이미 FAILED 이면 입력을 받지 않고 에러를 올린다"""
        calls = []
        monkeypatch.setattr(cli, "read_line", scripted_lines([answer_token], calls))
        await reach_awaiting_answer(controller)
        engines[0].set_connectivity(ConnectivityState.DISCONNECTED)
        await drain_events(controller)

        with pytest.raises(ConnectivityLostError):
            await cli.read_token(controller, "code: ")

        assert calls == []


class TestFormatDuration:

    @pytest.mark.parametrize("seconds,expected", [
        (0, "00:00"),
        (59.9, "00:59"),
        (754, "12:34"),
        (3723, "1:02:03"),
    ])
    def test_format_duration(self, seconds, expected):
        assert cli.format_duration(seconds) == expected
