"""
Custody - Item & Evidence Routes
================================
Tenant-scoped item and evidence access. Every request goes through the
access guard so that both denials and successful accesses land in the
audit trail (chain of custody).

A record that does not exist is treated as a platform-level resource, so
ordinary users get the same 403 they would get for another tenant's record.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.api.deps import get_access_guard, get_audit_logger, get_current_identity
from custody.db.database import get_db
from custody.db.models import Evidence, StolenItem
from custody.schemas.items import EvidenceResponse, ItemResponse
from custody.services.audit import AuditAction, AuditLogger
from custody.services.authorization import AccessGuard, Resource, ResourceAction
from custody.services.permissions import Identity

router = APIRouter(prefix="/items", tags=["Items"])


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def _item_resource(item_id: str, item: Optional[StolenItem]) -> Resource:
    if item is None:
        return Resource("item", item_id)
    return Resource("item", item.id, tenant_id=item.tenant_id, owner_id=item.created_by)


def _evidence_resource(evidence_id: str, evidence: Optional[Evidence]) -> Resource:
    if evidence is None:
        return Resource("evidence", evidence_id)
    return Resource(
        "evidence", evidence.id, tenant_id=evidence.tenant_id, owner_id=evidence.uploaded_by
    )


async def _find_evidence(
    db: AsyncSession, item_id: str, evidence_id: str
) -> Optional[Evidence]:
    result = await db.execute(
        select(Evidence).where(Evidence.id == evidence_id, Evidence.item_id == item_id)
    )
    return result.scalar_one_or_none()


# ============== ITEMS ==============

@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(
    request: Request,
    item_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    db: AsyncSession = Depends(get_db),
):
    """View an item."""
    item = await db.get(StolenItem, item_id)

    async with guard.check(
        identity,
        ResourceAction.READ,
        _item_resource(item_id, item),
        AuditAction.ITEM_VIEWED,
        request=request,
    ):
        if item is None:
            raise _not_found("Item")
        return ItemResponse.model_validate(item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    request: Request,
    item_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
):
    """Delete an item and its evidence records."""
    item = await db.get(StolenItem, item_id)

    async with guard.check(
        identity,
        ResourceAction.DELETE,
        _item_resource(item_id, item),
        AuditAction.ITEM_DELETED,
        request=request,
        record_success=False,
    ):
        if item is None:
            raise _not_found("Item")
        before = {
            "name": item.name,
            "description": item.description,
            "tenantId": item.tenant_id,
            "createdBy": item.created_by,
        }
        await db.delete(item)
        await db.commit()

    await audit.record_resource_mutation(
        identity, AuditAction.ITEM_DELETED, item_id, before=before, request=request
    )


# ============== EVIDENCE ==============

@router.get("/{item_id}/evidence/{evidence_id}", response_model=EvidenceResponse)
async def get_evidence(
    request: Request,
    item_id: str,
    evidence_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
):
    """View evidence metadata."""
    evidence = await _find_evidence(db, item_id, evidence_id)

    async with guard.check(
        identity,
        ResourceAction.READ,
        _evidence_resource(evidence_id, evidence),
        AuditAction.EVIDENCE_VIEWED,
        request=request,
        record_success=False,
    ):
        if evidence is None:
            raise _not_found("Evidence")
        body = EvidenceResponse.model_validate(evidence)

    await audit.record_evidence_access(
        identity,
        AuditAction.EVIDENCE_VIEWED,
        evidence_id=evidence_id,
        item_id=item_id,
        request=request,
    )
    return body


@router.delete("/{item_id}/evidence/{evidence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_evidence(
    request: Request,
    item_id: str,
    evidence_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
):
    """Delete an evidence record."""
    evidence = await _find_evidence(db, item_id, evidence_id)

    async with guard.check(
        identity,
        ResourceAction.DELETE,
        _evidence_resource(evidence_id, evidence),
        AuditAction.EVIDENCE_DELETED,
        request=request,
        record_success=False,
    ):
        if evidence is None:
            raise _not_found("Evidence")
        details = {"fileName": evidence.file_name, "contentHash": evidence.content_hash}
        await db.delete(evidence)
        await db.commit()

    await audit.record_evidence_access(
        identity,
        AuditAction.EVIDENCE_DELETED,
        evidence_id=evidence_id,
        item_id=item_id,
        details=details,
        request=request,
    )
