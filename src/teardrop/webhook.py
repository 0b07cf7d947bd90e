# ABOUTME: FastAPI webhook server for Twilio callbacks with the switch running in the background
# ABOUTME: Receives delivery-status and inbound-SMS webhooks and hands them to the Messenger

import json
import logging
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import parse_qs, parse_qsl

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from twilio.request_validator import RequestValidator

from .audit import AuditLog
from .config import Settings
from .switch import DriveClient, HeartbeatCoordinator, ItemReleaseManager, Messenger, TwilioConfig

logger = logging.getLogger(__name__)

# Empty TwiML reply so Twilio does not answer the operator
EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


class StatusCallback(BaseModel):
    """Twilio message status callback payload."""

    model_config = ConfigDict(populate_by_name=True)

    message_sid: str = Field(alias="MessageSid", min_length=1)
    message_status: str = Field(alias="MessageStatus")
    error_code: int | None = Field(default=None, alias="ErrorCode")

    @field_validator("error_code", mode="before")
    @classmethod
    def empty_error_code(cls, v: Any) -> Any:
        if v == "":
            return None
        return v


class InboundMessage(BaseModel):
    """Twilio inbound SMS payload."""

    model_config = ConfigDict(populate_by_name=True)

    from_number: str = Field(alias="From")
    body: str = Field(default="", alias="Body")


def parse_payload(body: bytes, content_type: str | None) -> dict[str, Any]:
    """
    Parse a webhook body.

    Twilio posts form-encoded bodies; JSON is accepted as well.

    Raises:
        ValueError: If the body cannot be parsed
    """
    if content_type and "application/json" in content_type:
        data = json.loads(body or b"null")
        if not isinstance(data, dict):
            raise ValueError("JSON payload must be an object")
        return data

    parsed = parse_qs(body.decode("utf-8"), keep_blank_values=True)
    # Flatten: {'MessageSid': ['SM...']} -> {'MessageSid': 'SM...'}
    data = {k: v[0] for k, v in parsed.items() if v}
    # Twilio also sends the legacy SmsStatus field
    if "MessageStatus" not in data and "SmsStatus" in data:
        data["MessageStatus"] = data["SmsStatus"]
    return data


def webhook_url(config: TwilioConfig, request: Request) -> str:
    """The URL Twilio called, as it signed it. Behind a proxy this is public_url plus the path."""
    if not config.public_url:
        return str(request.url)
    url = f"{config.public_url.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def is_signed_by_twilio(
    auth_token: str,
    url: str,
    body: bytes,
    content_type: str | None,
    signature: str | None,
) -> bool:
    """
    Check the X-Twilio-Signature of a webhook request.

    Form posts are signed over their parameters. JSON posts carry a
    bodySHA256 query parameter and are signed over the raw body.
    """
    if not signature:
        return False

    validator = RequestValidator(auth_token)
    if content_type and "application/json" in content_type:
        if "bodySHA256" not in parse_qs(url.partition("?")[2]):
            return False
        return validator.validate(url, body.decode("utf-8"), signature)

    params = dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    return validator.validate(url, params, signature)


class WebhookHandler:
    """Routes Twilio webhooks to the Messenger."""

    def __init__(self, messenger: Messenger):
        self.messenger = messenger

    def handle_status(self, payload: dict[str, Any]) -> None:
        """
        Handle a delivery-status callback.

        Raises:
            ValidationError: If the payload is missing required fields
        """
        callback = StatusCallback(**payload)
        try:
            self.messenger.on_delivery_status(
                callback.message_sid,
                callback.message_status,
                callback.error_code,
            )
        except Exception as e:
            # Twilio gets a success response anyway; the payload itself was fine
            logger.exception(f"Error handling status for {callback.message_sid}: {e}")

    def handle_inbound(self, payload: dict[str, Any]) -> None:
        """Handle an inbound SMS. Never raises."""
        try:
            message = InboundMessage(**payload)
            self.messenger.on_operator_response(message.from_number, message.body)
        except Exception as e:
            logger.exception(f"Error handling inbound message: {e}")


def create_app(settings: Settings) -> FastAPI:
    """Create and configure the FastAPI application."""
    handler: WebhookHandler | None = None
    coordinator: HeartbeatCoordinator | None = None
    release_manager: ItemReleaseManager | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal handler, coordinator, release_manager
        # Startup
        audit = AuditLog(settings.audit_path) if settings.audit_path else None

        messenger = Messenger(
            settings.twilio,
            message=settings.switch.check_in_message,
            queue_size=settings.switch.event_queue_size,
        )
        drive = DriveClient(settings.drive)
        release_manager = ItemReleaseManager(
            items=settings.items,
            drive=drive,
            max_attempts=settings.drive.grant_max_attempts,
            retry_delay=settings.drive.grant_retry_delay,
            audit=audit,
        )

        if not settings.twilio.status_callback_url:
            logger.warning("twilio.public_url not set, delivery status callbacks are disabled")
        if not settings.twilio.validate_signatures:
            logger.warning("Twilio signature validation is disabled, webhooks are not authenticated")

        await messenger.start()
        await drive.start()

        coordinator = HeartbeatCoordinator(
            config=settings.switch,
            messenger=messenger,
            release_manager=release_manager,
            audit=audit,
        )
        handler = WebhookHandler(messenger)

        coordinator.start()
        logger.info(f"Teardrop started, guarding {len(settings.items)} item(s)")
        yield
        # Shutdown
        await coordinator.stop()
        await release_manager.stop()
        await drive.stop()
        await messenger.stop()
        logger.info("Teardrop stopped")

    app = FastAPI(
        title="Teardrop",
        description="Dead man's switch releasing Drive items over SMS check-ins",
        version="0.1.0",
        lifespan=lifespan,
    )

    async def read_signed_payload(request: Request) -> dict[str, Any]:
        """
        Read a webhook body, rejecting requests Twilio did not sign.

        Raises:
            HTTPException: 403 if the signature is missing or wrong
            ValueError: If the body cannot be parsed
        """
        body = await request.body()
        content_type = request.headers.get("content-type")
        if settings.twilio.validate_signatures and not is_signed_by_twilio(
            settings.twilio.auth_token,
            webhook_url(settings.twilio, request),
            body,
            content_type,
            request.headers.get("X-Twilio-Signature"),
        ):
            logger.warning(f"Rejecting unsigned request to {request.url.path} from {request.client}")
            raise HTTPException(status_code=403, detail="Invalid Twilio signature")
        return parse_payload(body, content_type)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        result: dict[str, Any] = {"status": "healthy", "service": "teardrop"}
        if coordinator is not None:
            result["switch"] = coordinator.status()
        return result

    @app.post("/releases/retry")
    async def retry_releases():
        """Re-run grants for items whose release failed, e.g. after fixing sharing rights."""
        if release_manager is None:
            raise HTTPException(status_code=503, detail="Service not ready")

        retried = await release_manager.retry_failed()
        logger.info(f"Retried release of {len(retried)} item(s)")
        return {
            "retried": retried,
            "items": {file_id: timer.state.value for file_id, timer in release_manager.timers.items()},
        }

    @app.post(settings.twilio.callback_uri)
    async def delivery_status(request: Request):
        """Handle Twilio message status callbacks."""
        if handler is None:
            raise HTTPException(status_code=503, detail="Service not ready")

        try:
            payload = await read_signed_payload(request)
            handler.handle_status(payload)
        except (ValueError, ValidationError) as e:
            # Error status so Twilio retries the callback
            logger.error(f"Unparsable status callback: {e}")
            return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
        return {"ok": True}

    @app.post(settings.twilio.response_uri)
    async def inbound_message(request: Request):
        """Handle inbound SMS from the operator."""
        if handler is None:
            raise HTTPException(status_code=503, detail="Service not ready")

        try:
            payload = await read_signed_payload(request)
            handler.handle_inbound(payload)
        except ValueError as e:
            logger.error(f"Unparsable inbound message: {e}")
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    return app
