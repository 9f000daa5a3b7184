"""
Resale Listing SMS Backend
FastAPI wrapper around the listing conversation workflow

Production Features:
- Per-sender rate limiting & security headers
- Structured logging with sensitive data masking
- Health checks & monitoring
- User-friendly error handling
"""
from xml.sax.saxutils import escape

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field
from typing import List, Optional

from workflow import ConversationEngine, WorkflowInput, WorkflowResult, build_engine, run_workflow
from settings import Settings

# Production utilities
from utils import logger, setup_logging
from utils.error_handling import register_error_handlers
from middleware import SecurityMiddleware, rate_limiter
from routes import health_router
from services.transcriber import is_audio

settings = Settings.from_env()
setup_logging(level=settings.log_level, json_format=settings.log_json, mask_sensitive=True)

app = FastAPI(
    title="Resale Listing SMS Backend",
    version="1.0.0",
    description="Text-message listing intake for a designer resale marketplace"
)

PROD_ALLOWED_ORIGINS: List[str] = []

app.add_middleware(
    CORSMiddleware,
    allow_origins=PROD_ALLOWED_ORIGINS if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,  # Cache preflight for 1 hour
)

app.add_middleware(
    SecurityMiddleware,
    rate_limiter=rate_limiter,
    max_requests=settings.rate_limit_per_minute,
    window=60,
)

register_error_handlers(app)

app.include_router(health_router)

_engine: Optional[ConversationEngine] = None


def get_engine() -> ConversationEngine:
    """Engine singleton, built lazily so importing the app never touches the network."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings)
    return _engine


class InboundMessage(BaseModel):
    """JSON webhook payload"""
    phone: str = Field(..., min_length=3)
    text: str = ""
    media: List[str] = Field(default_factory=list)
    audio: List[str] = Field(default_factory=list)
    message_id: Optional[str] = None


def twiml(reply: str) -> str:
    if not reply:
        return '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
    return f'<?xml version="1.0" encoding="UTF-8"?><Response><Message>{escape(reply)}</Message></Response>'


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "Resale Listing SMS Backend",
        "version": "1.0.0",
        "environment": settings.environment,
        "storage": "supabase" if settings.use_supabase else "in_memory",
        "openai_configured": bool(settings.openai_api_key),
        "endpoints": ["/sms/inbound", "/sms/twilio", "/health"]
    }


@app.post("/sms/inbound", response_model=WorkflowResult)
async def sms_inbound(message: InboundMessage, engine: ConversationEngine = Depends(get_engine)):
    """
    Main webhook

    Flow:
    1. Resolve conversation + seller for the phone
    2. Skip redelivered message ids
    3. Run the state machine, persist, reply
    """
    logger.info(f"📱 Inbound SMS from {message.phone} ({len(message.media)} media)")
    return await run_workflow(
        engine,
        WorkflowInput(
            phone=message.phone,
            text=message.text,
            media=message.media,
            audio=message.audio,
            message_id=message.message_id,
        ),
    )


@app.post("/sms/twilio")
async def sms_twilio(request: Request, engine: ConversationEngine = Depends(get_engine)):
    """Form-encoded gateway webhook; answers with TwiML."""
    form = await request.form()
    try:
        num_media = int(form.get("NumMedia") or 0)
    except ValueError:
        num_media = 0
    media: List[str] = []
    audio: List[str] = []
    for i in range(num_media):
        url = form.get(f"MediaUrl{i}")
        if not url:
            continue
        # voice notes arrive as MMS media with an audio content type
        (audio if is_audio(str(form.get(f"MediaContentType{i}") or "")) else media).append(str(url))

    phone = str(form.get("From") or "")
    if not phone:
        logger.warning("⚠️ Gateway webhook without a sender")
        return Response(content=twiml(""), media_type="application/xml")

    logger.info(f"📱 Gateway SMS from {phone} ({len(media)} media, {len(audio)} voice)")
    result = await run_workflow(
        engine,
        WorkflowInput(
            phone=phone,
            text=str(form.get("Body") or ""),
            media=media,
            audio=audio,
            message_id=str(form.get("MessageSid") or "") or None,
        ),
    )
    return Response(content=twiml(result.reply), media_type="application/xml")


@app.get("/health")
async def health_summary():
    """Configuration summary (the /health/ router runs live checks)"""
    return {
        "status": "healthy",
        "checks": {
            "openai_key": "configured" if settings.openai_api_key else "missing",
            "supabase": "configured" if settings.use_supabase else "in_memory",
            "catalog": "configured" if settings.catalog_api_url else "in_memory",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
