"""FastAPI application — Twilio Voice webhooks for phone appointment booking.

Endpoints:

  POST /twilio/voice            Per-utterance webhook: returns TwiML for the next turn
  POST /twilio/status           Call status callback (session cleanup, call duration)
  GET  /health                  Health check
  GET  /api/sessions            Live call sessions (admin)
  GET  /api/sessions/{call_sid} One session's conversation state (admin)

The Twilio flow:
  1. Incoming call hits POST /twilio/voice with no SpeechResult
  2. We greet and return <Gather input="speech"> posting back to /twilio/voice
  3. Each transcript is one engine turn; the session store carries state
  4. The call ends with <Hangup/> or a <Dial> to the clinic's staff line
  5. Twilio posts CallStatus=completed and the session is dropped
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import asyncio
import contextlib
import logging
import re
import time
from datetime import date
from typing import Callable

# Configure root logger early so all clinic_booking.* loggers have a handler
# when run via `uvicorn clinic_booking.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from twilio.request_validator import RequestValidator

from clinic_booking.auth import make_admin_guard
from clinic_booking.channels import TwiMLRenderer
from clinic_booking.config import Settings, settings
from clinic_booking.engine import CallContext, ConversationEngine
from clinic_booking.providers import ClinicBackend, CollaboratorError, demo_backend
from clinic_booking.session import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
    redact_pii,
)

log = logging.getLogger("clinic_booking.app")

_START_TIME = time.time()

_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

# Twilio CallStatus values after which no more turns arrive
_FINAL_STATUSES = {"completed", "busy", "failed", "no-answer", "canceled"}

UNKNOWN_CLINIC_TEXT = (
    "I'm sorry, this number is not set up for appointment booking. Goodbye."
)
SERVER_ERROR_TEXT = (
    "I'm sorry, something went wrong on our end. Please call back in a few minutes."
)


def _build_store(config: Settings) -> SessionStore:
    if config.session_store == "redis":
        return RedisSessionStore.from_url(config.redis_url, ttl_seconds=config.session_ttl_seconds)
    return InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)


def _build_backend(config: Settings) -> ClinicBackend:
    if config.backend == "supabase":
        from clinic_booking.providers.supabase import SupabaseClinicBackend
        return SupabaseClinicBackend(config.supabase_url, config.supabase_service_role_key)
    return demo_backend(config.twilio_phone_number)


def _twiml(content: str, status_code: int = 200) -> Response:
    return Response(content=content, media_type="application/xml", status_code=status_code)


def _signature_url(request: Request, config: Settings) -> str:
    """URL Twilio signed: the public one when we sit behind a proxy or tunnel."""
    if config.public_base_url:
        url = config.public_base_url.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url
    return str(request.url)


def create_app(
    store: SessionStore | None = None,
    backend: ClinicBackend | None = None,
    config: Settings | None = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or settings
    for warning in config.validate_startup():
        log.warning(warning)

    store = store or _build_store(config)
    backend = backend or _build_backend(config)
    engine = ConversationEngine(
        directory=backend,
        booking=backend,
        timeout=config.collaborator_timeout_seconds,
        today=today,
    )
    renderer = TwiMLRenderer.from_settings(config)
    require_admin = make_admin_guard(config)
    validator = RequestValidator(config.twilio_auth_token)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        evictor = asyncio.create_task(store.run_evictor(config.eviction_interval_seconds))
        log.info(
            "Clinic booking started (backend=%s, session_store=%s)",
            config.backend, config.session_store,
        )
        try:
            yield
        finally:
            evictor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await evictor
            close = getattr(backend, "close", None)
            if close is not None:
                await close()

    app = FastAPI(
        title="Clinic Booking Voice Agent",
        description="Phone appointment booking over Twilio speech webhooks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.backend = backend
    app.state.engine = engine
    app.state.renderer = renderer

    async def _finish_call(call_sid: str) -> None:
        # waits out a turn still in flight for this call
        async with store.lock(call_sid):
            elapsed = await store.complete(call_sid)
        if elapsed is None:
            return
        try:
            await engine.record_duration(call_sid, elapsed)
        except CollaboratorError as e:
            log.warning("Could not record duration for call %s: %s", call_sid, e)

    async def _read_form(request: Request) -> dict[str, str] | None:
        """Parsed webhook form, or None if the Twilio signature is invalid."""
        form = {k: str(v) for k, v in (await request.form()).items()}
        if config.validate_twilio_signature:
            signature = request.headers.get("X-Twilio-Signature", "")
            if not validator.validate(_signature_url(request, config), form, signature):
                log.warning("Rejected webhook with invalid Twilio signature")
                return None
        return form

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check — confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Twilio voice webhook ───────────────────────────────────

    @app.post("/twilio/voice")
    async def twilio_voice(request: Request) -> Response:
        """One caller utterance in, one TwiML document out.

        The per-call lock is held from session load to save, so a retried
        delivery for the same call waits for the first to finish.
        """
        form = await _read_form(request)
        if form is None:
            return _twiml(renderer.render_neutral(), status_code=403)

        call_sid = form.get("CallSid", "").strip()
        if not call_sid:
            log.warning("Voice webhook without CallSid — ignoring")
            return _twiml(renderer.render_neutral(), status_code=400)

        if form.get("CallStatus") == "completed":
            await _finish_call(call_sid)
            return _twiml(renderer.render_neutral())

        caller = form.get("From", "")
        called = form.get("To", "")
        speech = form.get("SpeechResult", "").strip()

        try:
            try:
                clinic = await engine.resolve_clinic(called)
            except CollaboratorError as e:
                log.error("Clinic lookup failed for call %s: %s", call_sid, e)
                return _twiml(renderer.render(engine.fallback().reply))

            if clinic is None:
                log.warning("No clinic configured for number %s", redact_pii(called))
                return _twiml(renderer.render_hangup(UNKNOWN_CLINIC_TEXT))

            ctx = CallContext(call_sid=call_sid, caller_phone=caller, clinic=clinic)

            async with store.lock(call_sid):
                session = await store.get_or_create(call_sid)
                log.info(
                    "Turn for %s from %s at step %s: %r (confidence=%s)",
                    call_sid, redact_pii(caller), session.step, speech,
                    form.get("Confidence", "n/a"),
                )

                result = await engine.handle_turn(session.state, speech, ctx)
                try:
                    await engine.record_turn(ctx, session.step, speech, result.reply)
                except CollaboratorError as e:
                    log.error("Conversation log failed for call %s: %s", call_sid, e)
                    result = engine.fallback(result.state, appointment=result.reply.appointment)

                await store.save(call_sid, result.state)

            log.info("Reply (step=%s, %s): %s", result.state.step, result.reply.action.value, result.reply.text[:100])
            return _twiml(renderer.render(result.reply))

        except Exception:
            log.exception("Unhandled error on voice webhook for call %s", call_sid)
            return _twiml(renderer.render_hangup(SERVER_ERROR_TEXT), status_code=500)

    # ── Twilio status callback ─────────────────────────────────

    @app.post("/twilio/status")
    async def twilio_status(request: Request) -> Response:
        """Drop the session once Twilio reports the call has ended."""
        form = await _read_form(request)
        if form is None:
            return _twiml(renderer.render_neutral(), status_code=403)

        call_sid = form.get("CallSid", "").strip()
        if not call_sid:
            return _twiml(renderer.render_neutral(), status_code=400)

        status = form.get("CallStatus", "")
        log.info("Call %s status: %s", call_sid, status)
        if status in _FINAL_STATUSES:
            await _finish_call(call_sid)
        return _twiml(renderer.render_neutral())

    # ── Admin session API ──────────────────────────────────────

    @app.get("/api/sessions", dependencies=[Depends(require_admin)])
    async def list_sessions():
        """List live call sessions."""
        now = time.time()
        sessions = await store.active_sessions()
        return JSONResponse([
            {
                "call_sid": s.call_sid,
                "step": s.step,
                "attempts": s.state.attempts,
                "started_at": s.started_at,
                "last_seen": s.last_seen,
                "duration": round(now - s.started_at, 1),
            }
            for s in sessions
        ])

    @app.get("/api/sessions/{call_sid}", dependencies=[Depends(require_admin)])
    async def get_session(call_sid: str):
        """Full conversation state for one call."""
        if not _ID_PATTERN.match(call_sid):
            return JSONResponse({"error": "Invalid call id"}, status_code=400)
        for session in await store.active_sessions():
            if session.call_sid == call_sid:
                return JSONResponse(session.model_dump(mode="json"))
        return JSONResponse({"error": "Session not found"}, status_code=404)

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "clinic_booking.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
