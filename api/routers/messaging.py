"""
Messaging router.

SMS, WhatsApp and voice through the deployment's Twilio account:
- POST /messaging/sms: Send an SMS (optionally MMS with media URLs)
- POST /messaging/whatsapp: Send a WhatsApp message
- GET  /messaging/messages/{message_sid}: Delivery status of a message
- POST /messaging/calls: Start an outbound call
- GET  /messaging/calls/{call_sid}/recording: Recording of a call

Twilio credentials missing from the environment surface as 503.
"""

import logging

from fastapi import APIRouter, Depends

from api.deps import get_current_user, get_twilio_service
from api.schemas.messaging import SendTextRequest, StartCallRequest
from application.models.crm import CallInfo, CallRecording, TextMessage
from backend.services.twilio_service import TwilioService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/messaging",
    tags=["Messaging"],
)


@router.post("/sms", response_model=TextMessage, status_code=201)
async def send_sms(
    body: SendTextRequest,
    user_id: str = Depends(get_current_user),
    twilio: TwilioService = Depends(get_twilio_service),
):
    logger.info("User %s sending SMS", user_id)
    return await twilio.send_sms(body.to, body.body, media_urls=body.media_urls)


@router.post("/whatsapp", response_model=TextMessage, status_code=201)
async def send_whatsapp(
    body: SendTextRequest,
    user_id: str = Depends(get_current_user),
    twilio: TwilioService = Depends(get_twilio_service),
):
    logger.info("User %s sending WhatsApp message", user_id)
    return await twilio.send_whatsapp(body.to, body.body, media_urls=body.media_urls)


@router.get("/messages/{message_sid}", response_model=TextMessage)
async def get_message_status(
    message_sid: str,
    user_id: str = Depends(get_current_user),
    twilio: TwilioService = Depends(get_twilio_service),
):
    return await twilio.get_message_status(message_sid)


@router.post("/calls", response_model=CallInfo, status_code=201)
async def start_call(
    body: StartCallRequest,
    user_id: str = Depends(get_current_user),
    twilio: TwilioService = Depends(get_twilio_service),
):
    logger.info("User %s starting a call", user_id)
    return await twilio.make_call(body.to, body.callback_url)


@router.get("/calls/{call_sid}/recording", response_model=CallRecording)
async def get_call_recording(
    call_sid: str,
    user_id: str = Depends(get_current_user),
    twilio: TwilioService = Depends(get_twilio_service),
):
    return await twilio.get_call_recording(call_sid)
