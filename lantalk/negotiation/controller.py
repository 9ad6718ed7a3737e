"""Negotiation Controller

Offer/Answer 코드 교환 상태 머신

Host:  IDLE → CREATING_OFFER → OFFER_READY → AWAITING_ANSWER → CONNECTED
Guest: IDLE → AWAITING_OFFER → CREATING_ANSWER → ANSWER_READY → CONNECTED

- 엔진 알림은 하나의 큐로 들어와 단일 pump 태스크가 순서대로 처리한다
- 모든 알림에는 세션 식별자가 붙어 있어, end() 이후 도착한 이전 세션의 알림은 폐기된다
- 상태가 설정한 타이머는 그 상태를 떠나는 모든 경로에서 취소된다
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Coroutine, Dict, List, Optional

from lantalk.common.exceptions import (
    LanTalkError,
    CaptureError,
    DecodeError,
    TypeMismatchError,
    NegotiationError,
    ConnectivityLostError,
    InvalidTransitionError,
)
from lantalk.common.logger import get_logger, log_with_context
from lantalk.config.models import NegotiationConfig, MediaConfig
from lantalk.monitoring.metrics import get_metrics
from lantalk.negotiation.engine import NegotiationEngine, MediaCapture, CaptureConstraints
from lantalk.negotiation.enums import (
    Role,
    NegotiationState,
    GatheringState,
    SignalingState,
    EngineEventKind,
    CONNECTED_STATES,
    FAILURE_STATES,
    POST_ANSWER_SIGNALING_STATES,
    ACTIVE_STATES,
)
from lantalk.negotiation.session import NegotiationSession, EngineEvent
from lantalk.negotiation.timers import TimerRegistry
from lantalk.signaling.envelope import EnvelopeCodec
from lantalk.signaling.models import SessionKind, SessionDescription

logger = get_logger(__name__)

GATHER_TIMEOUT_TIMER = "gather_timeout"
FALLBACK_CONNECT_TIMER = "fallback_connect"
ANSWER_RETRY_TIMER = "answer_retry"
WARNING_DISMISS_TIMER = "warning_dismiss"

StateListener = Callable[[NegotiationState, NegotiationState, NegotiationSession], None]


class NegotiationController:
    """협상 컨트롤러

    장치당 하나의 활성 세션만 유지한다. 새 세션을 만들기 전에 기존 세션을 정리한다.
    """

    def __init__(
        self,
        engine_factory: Callable[[], NegotiationEngine],
        capture: MediaCapture,
        codec: Optional[EnvelopeCodec] = None,
        config: Optional[NegotiationConfig] = None,
        media_config: Optional[MediaConfig] = None,
    ):
        """초기화

        Args:
            engine_factory: 세션마다 새 엔진을 만드는 팩토리
            capture: 미디어 캡처 협력자
            codec: 엔벨로프 코덱 (None이면 기본값)
            config: 협상 타이머 설정
            media_config: 캡처 제약 조건 설정
        """
        self._engine_factory = engine_factory
        self._capture = capture
        self._codec = codec or EnvelopeCodec()
        self.config = config or NegotiationConfig()
        self.media_config = media_config or MediaConfig()

        self._session: Optional[NegotiationSession] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._listeners: List[StateListener] = []
        self._timers = TimerRegistry(owner="controller")

        self.warning: Optional[str] = None
        self.error: Optional[LanTalkError] = None

        logger.info("negotiation_controller_initialized",
                    gather_timeout=self.config.gather_timeout,
                    fallback_connect_timeout=self.config.fallback_connect_timeout,
                    fallback_connect_enabled=self.config.fallback_connect_enabled)

    # ===== 조회 =====

    @property
    def state(self) -> NegotiationState:
        if self._session is None:
            return NegotiationState.IDLE
        return self._session.state

    @property
    def session(self) -> Optional[NegotiationSession]:
        return self._session

    @property
    def role(self) -> Optional[Role]:
        return self._session.role if self._session else None

    @property
    def local_token(self) -> Optional[str]:
        return self._session.local_token if self._session else None

    def add_listener(self, listener: StateListener) -> None:
        """상태 전이 리스너 등록"""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        """상태 전이 리스너 해제"""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_stats(self) -> Dict:
        """상태 통계 조회 (통화 중이면 연결 시각과 경과 시간 포함)"""
        session = self._session
        connected_at = session.connected_at if session else None
        return {
            "state": self.state.value,
            "role": session.role.value if session else None,
            "session_id": session.session_id if session else None,
            "timers": session.timers.names() if session else [],
            "connected_unconfirmed": session.connected_unconfirmed if session else False,
            "connected_at": connected_at.isoformat() if connected_at else None,
            "call_duration": session.call_duration if session else None,
            "warning": self.warning,
            "error": str(self.error) if self.error else None,
        }

    # ===== 사용자 동작 =====

    async def start_host(self) -> Optional[str]:
        """Host 시작: offer 생성 후 토큰 반환

        Returns:
            offer 토큰 (도중에 end()로 중단되면 None)

        Raises:
            CaptureError: 미디어 장치 사용 불가
            NegotiationError: 엔진이 offer 생성/적용 실패
        """
        await self.end()
        session = self._open_session(Role.HOST)
        self._transition(session, NegotiationState.CREATING_OFFER)
        return await self._run_workflow(session, self._create_offer(session))

    async def join(self) -> None:
        """Guest 시작: offer 코드 수신 대기"""
        await self.end()
        session = self._open_session(Role.GUEST)
        self._transition(session, NegotiationState.AWAITING_OFFER)

    async def offer_received(self, token: str) -> Optional[str]:
        """Guest: offer 토큰 수신 → answer 생성 후 토큰 반환

        Raises:
            DecodeError, TypeMismatchError: 상태 변경 없음 (재입력 요청)
            CaptureError, NegotiationError: FAILED 로 전이
        """
        session = self._require_state("offer_received", NegotiationState.AWAITING_OFFER)
        description = self._decode_expected(token, SessionKind.OFFER)
        self._transition(session, NegotiationState.CREATING_ANSWER)
        return await self._run_workflow(session, self._create_answer(session, description))

    async def guest_scanned(self) -> None:
        """Host: Guest가 offer 코드를 읽었음을 확인 → answer 수신 대기"""
        session = self._require_state("guest_scanned", NegotiationState.OFFER_READY)
        self._transition(session, NegotiationState.AWAITING_ANSWER)

    async def answer_received(self, token: str) -> NegotiationState:
        """Host: answer 토큰 수신 → 원격 설명 적용

        Returns:
            전이 후 상태

        Raises:
            DecodeError, TypeMismatchError: 상태 변경 없음 (재입력 요청)
            NegotiationError: 재시도 후에도 엔진이 거부 (FAILED 로 전이)
        """
        session = self._require_state("answer_received", NegotiationState.AWAITING_ANSWER)
        description = self._decode_expected(token, SessionKind.ANSWER)
        await self._run_workflow(session, self._accept_answer(session, description))
        return self.state

    async def submit_scanned(self, text: str) -> Any:
        """스캔된 코드 처리 (현재 단계에 맞게 분기)"""
        return await self._dispatch_token(text, source="scan")

    async def submit_manual(self, text: Optional[str]) -> Any:
        """수동 붙여넣기 코드 처리

        최소 길이 미만의 입력은 아직 입력 중으로 보고 무시한다 (None 반환).
        """
        cleaned = (text or "").strip()
        if len(cleaned) < self.config.min_manual_input_length:
            logger.debug("manual_input_incomplete", length=len(cleaned))
            return None
        return await self._dispatch_token(cleaned, source="manual")

    async def switch_camera(self) -> bool:
        """전면/후면 카메라 전환

        Returns:
            전환 성공 여부 (오디오 전용이거나 실패하면 경고 후 False)
        """
        session = self._session
        if session is None or session.local_media is None:
            raise InvalidTransitionError("switch_camera", self.state.value)

        media = session.local_media
        if not media.has_video:
            self._raise_warning("Cannot switch camera in audio-only mode.")
            return False

        next_mode = "environment" if media.facing_mode == "user" else "user"
        try:
            track = await self._capture.switch_camera(media, next_mode)
        except Exception as e:
            logger.warning("camera_switch_failed", session_id=session.session_id, error=str(e))
            self._raise_warning("Unable to switch camera.")
            return False

        if not self._is_current(session):
            track.stop()
            return False

        media.replace_video_track(track)
        media.facing_mode = next_mode
        session.engine.replace_video_track(track)
        logger.info("camera_switched", session_id=session.session_id, facing_mode=next_mode)
        return True

    async def end(self) -> None:
        """세션 종료 → IDLE

        로컬 트랙 정지, 엔진 종료, 모든 타이머 취소 후 반환한다.
        IDLE 상태에서 호출하거나 연속 호출해도 아무 일도 일어나지 않는다.
        """
        self._timers.cancel_all()
        self.warning = None
        self.error = None

        session = self._session
        if session is None:
            return

        # 먼저 분리해서 이후 도착하는 알림을 stale 로 만든다
        self._session = None
        old_state = session.state
        cancelled_timers = session.timers.cancel_all()

        workflow = session.workflow
        if workflow is not None and not workflow.done() and workflow is not asyncio.current_task():
            workflow.cancel()
            await asyncio.wait({workflow})

        if session.local_media is not None:
            session.local_media.stop()

        try:
            await session.engine.close()
        except Exception as e:
            logger.warning("engine_close_failed", session_id=session.session_id, error=str(e))

        session.state = NegotiationState.IDLE
        get_metrics().set_active_sessions(0)
        get_metrics().record_transition(old_state.value, NegotiationState.IDLE.value)

        logger.info("session_ended",
                    session_id=session.session_id,
                    role=session.role.value,
                    from_state=old_state.value,
                    call_duration=session.call_duration,
                    cancelled_timers=cancelled_timers)

        self._notify(old_state, NegotiationState.IDLE, session)

    async def retry(self) -> None:
        """치명적 에러 이후 재시도 (end 후 IDLE 로 복귀)"""
        logger.info("retry_requested", state=self.state.value)
        await self.end()

    async def close(self) -> None:
        """컨트롤러 종료 (세션 정리 + 이벤트 pump 중지)"""
        await self.end()
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        self._pump_task = None

    # ===== 세션 / 전이 =====

    def _open_session(self, role: Role) -> NegotiationSession:
        """새 세션 생성 및 엔진 알림 구독"""
        engine = self._engine_factory()
        session = NegotiationSession(role=role, engine=engine)
        session_id = session.session_id

        def _on_engine_event(kind: EngineEventKind, value: Any = None) -> None:
            self._events.put_nowait(EngineEvent(session_id=session_id, kind=kind, value=value))

        engine.subscribe(_on_engine_event)
        self._ensure_pump()

        self._session = session
        get_metrics().set_active_sessions(1)
        logger.info("session_opened", session_id=session_id, role=role.value)
        return session

    def _is_current(self, session: NegotiationSession) -> bool:
        return self._session is session

    def _require_state(self, operation: str, *states: NegotiationState) -> NegotiationSession:
        """현재 상태 검증 (실패 시 InvalidTransitionError, 상태 변경 없음)"""
        session = self._session
        if session is None or session.state not in states or session.is_busy:
            error = InvalidTransitionError(operation, self.state.value)
            self._report_nonfatal(error)
            raise error
        return session

    def _transition(self, session: NegotiationSession, new_state: NegotiationState, **context) -> None:
        """상태 전이 (동기, 리스너 알림 포함)"""
        old_state = session.state
        if old_state == new_state:
            return
        session.state = new_state

        get_metrics().record_transition(old_state.value, new_state.value)
        log_with_context(session_id=session.session_id, role=session.role.value).info(
            "state_transition",
            from_state=old_state.value,
            to_state=new_state.value,
            **context
        )
        self._notify(old_state, new_state, session)

    def _notify(self, old_state: NegotiationState, new_state: NegotiationState,
                session: NegotiationSession) -> None:
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state, session)
            except Exception as e:
                logger.error("state_listener_failed",
                             session_id=session.session_id,
                             error=str(e),
                             exc_info=True)

    def _fail(self, session: NegotiationSession, error: LanTalkError) -> None:
        """치명적 에러 → FAILED (타이머/워크플로 정리)"""
        if not self._is_current(session) or session.state == NegotiationState.FAILED:
            return

        session.timers.cancel_all()
        workflow = session.workflow
        if workflow is not None and not workflow.done() and workflow is not asyncio.current_task():
            workflow.cancel()

        self.error = error
        get_metrics().record_error(type(error).__name__, True)
        logger.error("negotiation_failed",
                     session_id=session.session_id,
                     role=session.role.value,
                     state=session.state.value,
                     error_type=type(error).__name__,
                     error=str(error))
        self._transition(session, NegotiationState.FAILED, reason=type(error).__name__)

    def _report_nonfatal(self, error: LanTalkError) -> None:
        get_metrics().record_error(type(error).__name__, False)
        logger.warning("negotiation_input_rejected",
                       state=self.state.value,
                       error_type=type(error).__name__,
                       error=str(error))

    def _raise_warning(self, message: str) -> None:
        """일시적 경고 표시 (경고 해제 타이머 재설정)"""
        self.warning = message
        logger.warning("user_warning", message=message)
        self._timers.arm(WARNING_DISMISS_TIMER, self.config.warning_dismiss_timeout, self._dismiss_warning)

    def _dismiss_warning(self) -> None:
        self.warning = None

    # ===== 워크플로 =====

    async def _run_workflow(self, session: NegotiationSession, coro: Coroutine) -> Any:
        """세션 워크플로 실행

        end()로 취소되면 None, 치명적 에러는 FAILED 전이 후 다시 raise 한다.
        """
        task = asyncio.create_task(self._guard(session, coro))
        session.workflow = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if session.workflow is task:
                session.workflow = None

        if task.cancelled():
            if session.state == NegotiationState.FAILED and self.error is not None:
                raise self.error
            return None
        return task.result()

    async def _guard(self, session: NegotiationSession, coro: Coroutine) -> Any:
        """워크플로 예외를 에러 분류 체계로 변환"""
        try:
            return await coro
        except LanTalkError as e:
            if e.fatal:
                self._fail(session, e)
            raise
        except Exception as e:
            error = NegotiationError(f"Negotiation engine error: {e}")
            self._fail(session, error)
            raise error from e

    async def _create_offer(self, session: NegotiationSession) -> Optional[str]:
        """CREATING_OFFER → OFFER_READY"""
        await self._acquire_media(session)
        if not self._is_current(session):
            return None

        offer = await session.engine.create_local_offer()
        await session.engine.set_local_description(offer)
        await self._wait_for_gathering(session)
        if not self._is_current(session):
            return None

        token = self._encode_local(session, offer)
        self._transition(session, NegotiationState.OFFER_READY,
                         token_length=len(token),
                         gather_timed_out=session.gather_timed_out)
        return token

    async def _create_answer(self, session: NegotiationSession,
                             offer: SessionDescription) -> Optional[str]:
        """CREATING_ANSWER → ANSWER_READY"""
        await self._acquire_media(session)
        if not self._is_current(session):
            return None

        accepted = await session.engine.set_remote_description(offer)
        if not accepted:
            raise NegotiationError("Connection failed during negotiation. The offer was rejected.")
        session.remote_description = offer

        answer = await session.engine.create_local_answer()
        await session.engine.set_local_description(answer)
        await self._wait_for_gathering(session)
        if not self._is_current(session):
            return None

        token = self._encode_local(session, answer)
        self._transition(session, NegotiationState.ANSWER_READY,
                         token_length=len(token),
                         gather_timed_out=session.gather_timed_out)

        # aiortc 는 setRemoteDescription(offer) 안에서 track 을 알리므로
        # CREATING_ANSWER 중에 받은 트랙도 연결 증거로 본다
        if (session.remote_tracks
                and session.engine.signaling_state() in POST_ANSWER_SIGNALING_STATES):
            self._mark_connected(session, evidence="track")
            return token

        if self.config.fallback_connect_enabled:
            session.timers.arm(FALLBACK_CONNECT_TIMER,
                               self.config.fallback_connect_timeout,
                               lambda: self._on_fallback_connect(session))
        return token

    async def _accept_answer(self, session: NegotiationSession,
                             answer: SessionDescription) -> None:
        """AWAITING_ANSWER → CONNECTED (1회 지연 재시도)"""
        for attempt in (1, 2):
            signaling_state = session.engine.signaling_state()
            if signaling_state == SignalingState.HAVE_LOCAL_OFFER:
                if await session.engine.set_remote_description(answer):
                    if not self._is_current(session):
                        return
                    session.remote_description = answer
                    self._mark_connected(session, evidence="answer_applied")
                    return

            if attempt == 1:
                logger.warning("answer_not_expected_retrying",
                               session_id=session.session_id,
                               signaling_state=signaling_state.value,
                               retry_delay=self.config.answer_retry_delay)
                await session.timers.wait(ANSWER_RETRY_TIMER, self.config.answer_retry_delay)
                if not self._is_current(session):
                    return

        raise NegotiationError("Handshake failed. The answer could not be applied.")

    async def _acquire_media(self, session: NegotiationSession) -> None:
        """로컬 미디어 획득 (실패 시 오디오 전용으로 1회 재시도)"""
        constraints = CaptureConstraints.from_config(self.media_config)
        try:
            media = await self._capture.acquire(constraints)
        except Exception as e:
            logger.warning("media_capture_failed_retrying_audio_only",
                           session_id=session.session_id,
                           error=str(e))
            try:
                media = await self._capture.acquire(constraints.audio_only())
            except Exception as retry_error:
                raise CaptureError(
                    "Could not access microphone or camera. Please check permissions."
                ) from retry_error
            self._raise_warning("Video device failed. Switching to audio-only mode.")

        if not self._is_current(session):
            media.stop()
            return

        session.local_media = media
        await session.engine.add_local_media(media)
        logger.info("local_media_acquired",
                    session_id=session.session_id,
                    audio_tracks=len(media.audio_tracks),
                    video_tracks=len(media.video_tracks))

    async def _wait_for_gathering(self, session: NegotiationSession) -> None:
        """후보 수집 완료 또는 타임아웃까지 대기 (타임아웃이어도 진행)"""
        if session.engine.gathering_state() == GatheringState.COMPLETE:
            return

        session.gathering_done.clear()
        session.timers.arm(GATHER_TIMEOUT_TIMER, self.config.gather_timeout,
                           lambda: self._on_gather_timeout(session))
        try:
            await session.gathering_done.wait()
        finally:
            session.timers.cancel(GATHER_TIMEOUT_TIMER)

    def _on_gather_timeout(self, session: NegotiationSession) -> None:
        if not self._is_current(session):
            return
        session.gather_timed_out = True
        get_metrics().record_gather_timeout()
        logger.warning("ice_gathering_timed_out",
                       session_id=session.session_id,
                       timeout=self.config.gather_timeout)
        self._raise_warning("Network discovery is taking longer than expected...")
        session.gathering_done.set()

    def _encode_local(self, session: NegotiationSession, fallback: SessionDescription) -> str:
        """엔진의 현재 로컬 설명(수집된 후보 포함)을 토큰으로 인코딩"""
        description = session.engine.local_description() or fallback
        session.local_description = description
        session.local_token = self._codec.encode(description)
        return session.local_token

    def _decode_expected(self, token: str, expected: SessionKind) -> SessionDescription:
        """토큰 디코딩 + 종류 검증 (실패 시 비치명적 에러)"""
        try:
            description = self._codec.decode_or_raise(token)
        except DecodeError as error:
            self._report_nonfatal(error)
            raise
        if description.kind != expected:
            error = TypeMismatchError(expected.value, description.kind.value)
            self._report_nonfatal(error)
            raise error
        return description

    async def _dispatch_token(self, text: str, source: str) -> Any:
        """현재 단계에 맞는 수신 동작으로 분기"""
        state = self.state
        logger.debug("token_submitted", source=source, state=state.value, length=len(text or ""))
        if state == NegotiationState.AWAITING_OFFER:
            return await self.offer_received(text)
        if state == NegotiationState.AWAITING_ANSWER:
            return await self.answer_received(text)

        error = InvalidTransitionError(f"submit_{source}", state.value)
        self._report_nonfatal(error)
        raise error

    def _mark_connected(self, session: NegotiationSession, evidence: str) -> None:
        session.timers.cancel(FALLBACK_CONNECT_TIMER)
        session.connected_at = session.connected_at or datetime.now()
        self._transition(session, NegotiationState.CONNECTED,
                         evidence=evidence,
                         unconfirmed=session.connected_unconfirmed)

    def _on_fallback_connect(self, session: NegotiationSession) -> None:
        """Guest fallback 타이머 만료

        시그널링이 stable 이면 원격 미디어 확인 없이 연결로 간주한다.
        원격 미디어가 없는 통화도 연결됨으로 보고될 수 있어 connected_unconfirmed 로 표시한다.
        """
        if not self._is_current(session) or session.state != NegotiationState.ANSWER_READY:
            return

        signaling_state = session.engine.signaling_state()
        if signaling_state != SignalingState.STABLE:
            logger.info("fallback_connect_skipped",
                        session_id=session.session_id,
                        signaling_state=signaling_state.value)
            return

        session.connected_unconfirmed = True
        get_metrics().record_fallback_connect()
        logger.warning("fallback_connect_unconfirmed",
                       session_id=session.session_id,
                       timeout=self.config.fallback_connect_timeout,
                       remote_tracks=len(session.remote_tracks))
        self._mark_connected(session, evidence="fallback_timer")

    # ===== 엔진 알림 처리 =====

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        """엔진 알림 큐 소비 (단일 타임라인, 순차 처리)"""
        while True:
            event = await self._events.get()
            try:
                self._handle_event(event)
            except Exception as e:
                logger.error("engine_event_handling_failed",
                             session_id=event.session_id,
                             kind=event.kind.value,
                             error=str(e),
                             exc_info=True)
            finally:
                self._events.task_done()

    def _handle_event(self, event: EngineEvent) -> None:
        """엔진 알림 → 상태 전이 (유일한 알림 처리 지점)"""
        session = self._session
        if session is None or event.session_id != session.session_id:
            get_metrics().record_stale_event()
            logger.debug("stale_engine_event_discarded",
                         event_session_id=event.session_id,
                         kind=event.kind.value)
            return

        if event.kind == EngineEventKind.CANDIDATE:
            if event.value is None:
                session.gathering_done.set()
            else:
                logger.debug("local_candidate_discovered", session_id=session.session_id)
            return

        if event.kind == EngineEventKind.GATHERING_STATE:
            if event.value == GatheringState.COMPLETE:
                logger.info("ice_gathering_complete", session_id=session.session_id)
                session.gathering_done.set()
            return

        if event.kind == EngineEventKind.CONNECTIVITY_STATE:
            logger.info("connectivity_state_changed",
                        session_id=session.session_id,
                        state=session.state.value,
                        connectivity=getattr(event.value, "value", event.value))
            if event.value in FAILURE_STATES:
                if session.state in ACTIVE_STATES:
                    self._fail(session, ConnectivityLostError("Connection lost. Peer disconnected."))
                return
            if event.value in CONNECTED_STATES and session.state == NegotiationState.ANSWER_READY:
                self._mark_connected(session, evidence="connectivity")
            return

        if event.kind == EngineEventKind.TRACK:
            session.remote_tracks.append(event.value)
            logger.info("remote_track_received",
                        session_id=session.session_id,
                        track_kind=getattr(event.value, "kind", None))
            if (session.state == NegotiationState.ANSWER_READY
                    and session.engine.signaling_state() in POST_ANSWER_SIGNALING_STATES):
                self._mark_connected(session, evidence="track")
