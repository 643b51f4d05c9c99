from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID
import logging

from app.core.background import BackgroundDispatcher
from app.core.database import get_db
from app.core.dependencies import (
    get_current_phone, get_field_cipher, get_crm_client, get_dispatcher, get_locks
)
from app.core.encryption import FieldCipher
from app.core.locks import KeyedLocks
from app.integrations.crm import CRMClient
from app.modules.loans import schemas
from app.modules.loans.services import ApplicationStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/kredo-ms/loan-application", tags=["loan-application"])


def get_state_machine(
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_field_cipher),
    crm_client: CRMClient = Depends(get_crm_client),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_locks)
) -> ApplicationStateMachine:
    return ApplicationStateMachine(db, cipher, crm_client, dispatcher, locks)


@router.post("/apply-to-loan", response_model=schemas.ApplyToLoanResponse)
async def apply_to_loan(
    request: schemas.ApplyToLoanRequest,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    """
    Submit personal and financial information.

    - Phone number must match the verified token
    - Only one application per phone until it is COMPLETED
    - FIN and address are encrypted at rest
    """
    return await machine.submit_info(request, phone)


@router.post("/{application_id}/submit-requested-amount", response_model=schemas.SubmitAmountResponse)
async def submit_requested_amount(
    application_id: UUID,
    request: schemas.SubmitAmountRequest,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    """Submit amount and term; the application is scored before responding"""
    return await machine.submit_amount(application_id, request, phone)


@router.post("/{application_id}/accept-offer", response_model=schemas.ApplicationActionResponse)
async def accept_offer(
    application_id: UUID,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    return await machine.accept_offer(application_id, phone)


@router.post("/{application_id}/reject-offer", response_model=schemas.ApplicationActionResponse)
async def reject_offer(
    application_id: UUID,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    return await machine.reject_offer(application_id, phone)


@router.post("/{application_id}/finalize", response_model=schemas.ApplicationActionResponse)
async def finalize(
    application_id: UUID,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    return await machine.finalize(application_id, phone)


@router.get("/my-applications", response_model=List[schemas.ApplicationSummary])
async def my_applications(
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    """Applications owned by the authenticated phone, newest first"""
    return await machine.list_applications(phone)


@router.get("/{application_id}/result", response_model=schemas.LoanResultResponse)
async def get_result(
    application_id: UUID,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    """Current status, decision, score, amount, APR and reason codes"""
    return await machine.get_result(application_id, phone)


@router.get("/{application_id}", response_model=schemas.ApplicationDetailResponse)
async def get_application(
    application_id: UUID,
    phone: str = Depends(get_current_phone),
    machine: ApplicationStateMachine = Depends(get_state_machine)
):
    """Application details; FIN is masked, address is decrypted for the owner"""
    return await machine.get_application(application_id, phone)
